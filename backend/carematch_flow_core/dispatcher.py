from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from .errors import ToolNotDeclared
from .hooks import HookRunner
from .models import ExecutionContext, ToolInvocation, ToolResult
from .policy import PolicyEngine
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

RESULT_STATES = {"succeeded", "failed", "blocked"}


def _failed(call: ToolInvocation, code: str, message: str, *, status: str = "failed") -> ToolResult:
    return ToolResult(
        name=call.name,
        status=status,
        data=None,
        errors=[{"code": code, "message": message}],
        call_id=call.call_id,
    )


class ToolDispatcher:
    """Validates, gates and runs one model-requested tool call.

    Every outcome, including undeclared tools and handler crashes, comes back as a
    ``ToolResult`` so it can be fed to the model as a function response.
    """

    def __init__(self, *, policy: PolicyEngine, hooks: HookRunner) -> None:
        self.policy = policy
        self.hooks = hooks

    def dispatch(self, ctx: ExecutionContext, registry: ToolRegistry, call: ToolInvocation) -> ToolResult:
        try:
            tool = registry.resolve(call.name)
        except ToolNotDeclared as exc:
            logger.warning("flow=%s requested undeclared tool %s", ctx.flow, call.name)
            return _failed(call, "tool_not_declared", str(exc))

        args: dict[str, Any] = dict(call.args or {})
        decision = self.policy.evaluate(ctx, tool, args)
        if not decision.allowed:
            logger.info("flow=%s tool=%s blocked by policy: %s", ctx.flow, tool.name, decision.code)
            result = _failed(call, decision.code, decision.message, status="blocked")
            self.hooks.run_after(ctx, tool, args, result)
            return result

        hook_decision = self.hooks.run_before(ctx, tool, args)
        if not hook_decision.allowed:
            result = _failed(call, hook_decision.code, hook_decision.message, status="blocked")
            self.hooks.run_after(ctx, tool, args, result)
            return result

        try:
            payload = tool.parse_input(args)
        except ValidationError as exc:
            result = _failed(call, "bad_request", f"Invalid arguments for {tool.name}: {exc.error_count()} error(s).")
            self.hooks.run_after(ctx, tool, args, result)
            return result

        try:
            tool_output = tool.handler(ctx, payload)
        except Exception as exc:
            logger.exception("flow=%s tool=%s raised", ctx.flow, tool.name)
            result = _failed(call, "tool_exception", str(exc))
            self.hooks.run_after(ctx, tool, args, result)
            return result

        status = tool_output.get("status", "succeeded")
        if status not in RESULT_STATES:
            status = "succeeded"
        try:
            data = tool.parse_output(tool_output.get("data"))
        except ValidationError:
            logger.error("flow=%s tool=%s returned data outside its declared output type", ctx.flow, tool.name)
            result = _failed(call, "bad_tool_output", f"{tool.name} returned an unexpected result shape.")
            self.hooks.run_after(ctx, tool, args, result)
            return result

        result = ToolResult(
            name=tool.name,
            status=status,
            data=data,
            errors=list(tool_output.get("errors", [])),
            call_id=call.call_id,
        )
        self.hooks.run_after(ctx, tool, args, result)
        return result
