from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .models import ExecutionContext, ToolResult
from .registry import ToolSpec

logger = logging.getLogger(__name__)

BeforeHook = Callable[[ExecutionContext, ToolSpec, dict[str, Any]], "HookDecision"]
AfterHook = Callable[[ExecutionContext, ToolSpec, dict[str, Any], ToolResult], None]


@dataclass(frozen=True)
class HookDecision:
    allowed: bool
    code: str = "ok"
    message: str = "allowed"


class HookRunner:
    def __init__(self) -> None:
        self._before_hooks: list[BeforeHook] = []
        self._after_hooks: list[AfterHook] = []

    def add_before(self, hook: BeforeHook) -> None:
        self._before_hooks.append(hook)

    def add_after(self, hook: AfterHook) -> None:
        self._after_hooks.append(hook)

    def run_before(self, ctx: ExecutionContext, tool: ToolSpec, args: dict[str, Any]) -> HookDecision:
        for hook in self._before_hooks:
            decision = hook(ctx, tool, args)
            if not decision.allowed:
                return decision
        return HookDecision(allowed=True)

    def run_after(self, ctx: ExecutionContext, tool: ToolSpec, args: dict[str, Any], result: ToolResult) -> None:
        """After-hooks only observe; a failing hook is logged and the rest still run."""
        for hook in self._after_hooks:
            try:
                hook(ctx, tool, args, result)
            except Exception:
                logger.exception("after-hook for flow=%s tool=%s failed", ctx.flow, tool.name)
