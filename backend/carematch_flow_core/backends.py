from __future__ import annotations

import logging
from typing import Any, Protocol

from .composer import Instruction
from .contracts import OutputContract
from .dispatcher import ToolDispatcher
from .errors import BackendUnavailable
from .fallback import FallbackGenerationClient, normalize_freeform
from .generation import DEFAULT_SAFETY, PrimaryGenerationClient, SafetyConfig, ToolRound
from .models import ExecutionContext, FlowTrace
from .registry import ToolRegistry

logger = logging.getLogger(__name__)


class FlowBackend(Protocol):
    name: str
    freeform: bool

    def answer(
        self,
        instruction: Instruction,
        contract: OutputContract,
        *,
        ctx: ExecutionContext,
        trace: FlowTrace,
        tools: ToolRegistry | None = None,
        safety: SafetyConfig = DEFAULT_SAFETY,
    ) -> dict[str, Any] | None:
        """Return the raw contract-shaped dict, or None when the backend produced no usable output."""


class SchemaToolBackend:
    name = "primary"
    freeform = False

    def __init__(self, client: PrimaryGenerationClient, dispatcher: ToolDispatcher) -> None:
        self.client = client
        self.dispatcher = dispatcher

    def answer(
        self,
        instruction: Instruction,
        contract: OutputContract,
        *,
        ctx: ExecutionContext,
        trace: FlowTrace,
        tools: ToolRegistry | None = None,
        safety: SafetyConfig = DEFAULT_SAFETY,
    ) -> dict[str, Any] | None:
        trace.backend = self.name
        specs = tools.specs() if tools else []
        try:
            result = self.client.generate(instruction, contract, specs, safety)
            if result.kind == "tool_calls" and tools is not None:
                trace.invocations.extend(result.tool_calls)
                results = [self.dispatcher.dispatch(ctx, tools, call) for call in result.tool_calls]
                trace.results.extend(results)
                for call_result in results:
                    logger.info("flow=%s tool=%s status=%s", ctx.flow, call_result.name, call_result.status)
                tool_round = ToolRound(model_turn=result.model_turn or {}, calls=result.tool_calls, results=results)
                result = self.client.generate(instruction, contract, specs, safety, tool_round=tool_round)
                if result.kind == "tool_calls":
                    result.kind = "malformed"
                    result.detail = "tool calls requested after the tool round"
        except BackendUnavailable as exc:
            logger.warning("flow=%s primary backend unavailable: %s", ctx.flow, exc.message)
            trace.outcome = "backend_unavailable"
            return None

        if result.kind != "final":
            logger.warning("flow=%s primary backend returned %s: %s", ctx.flow, result.kind, result.detail)
            trace.outcome = result.kind
            return None
        trace.outcome = "final"
        return result.data


class FreeformBackend:
    name = "fallback"
    freeform = True

    def __init__(self, client: FallbackGenerationClient) -> None:
        self.client = client

    def answer(
        self,
        instruction: Instruction,
        contract: OutputContract,
        *,
        ctx: ExecutionContext,
        trace: FlowTrace,
        tools: ToolRegistry | None = None,
        safety: SafetyConfig = DEFAULT_SAFETY,
    ) -> dict[str, Any] | None:
        trace.backend = self.name
        try:
            raw_text = self.client.generate_freeform(instruction)
        except BackendUnavailable as exc:
            logger.warning("flow=%s fallback backend unavailable: %s", ctx.flow, exc.message)
            trace.outcome = "backend_unavailable"
            degraded = contract.blank()
            degraded[contract.primary_field] = f"Fallback provider error: {exc.message}"
            return degraded
        trace.outcome = "final"
        return normalize_freeform(contract, raw_text)
