from __future__ import annotations

import logging
import uuid
from typing import Any, ClassVar, Generic, Mapping, TypeVar

from pydantic import BaseModel

from .backends import FlowBackend
from .composer import ContextComposer, Instruction
from .contracts import OutputContract
from .enforcer import PolicyContext
from .generation import DEFAULT_SAFETY, SafetyConfig
from .models import ExecutionContext, FlowRequest, FlowTrace
from .registry import ToolRegistry
from .severity import KeywordSeverityClassifier, Severity, SeverityClassifier
from .side_effects import ANONYMOUS_USER, SideEffectCoordinator

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=FlowRequest)
OutputT = TypeVar("OutputT", bound=BaseModel)


class Flow(Generic[RequestT, OutputT]):
    """One assistant feature: compose, generate, enforce, then fire side effects.

    Subclasses set ``name``, ``contract`` and ``composer`` and may override the
    ``prepare`` / ``tools_for`` / ``finish`` hooks.
    """

    name: ClassVar[str] = "flow"
    contract: ClassVar[OutputContract]
    composer: ClassVar[ContextComposer]
    safety: ClassVar[SafetyConfig] = DEFAULT_SAFETY

    def __init__(
        self,
        *,
        backends: Mapping[str, FlowBackend],
        tools: ToolRegistry | None = None,
        coordinator: SideEffectCoordinator | None = None,
        classifier: SeverityClassifier | None = None,
        default_provider: str = "primary",
    ) -> None:
        self.backends = dict(backends)
        self.tools = tools
        self.coordinator = coordinator
        self.classifier = classifier or KeywordSeverityClassifier()
        self.default_provider = default_provider

    def prepare(self, request: RequestT, ctx: PolicyContext) -> None:
        """Populate ``ctx.sources`` with deterministic lookups made before generation."""

    def tools_for(self, request: RequestT, ctx: PolicyContext) -> ToolRegistry | None:
        return self.tools

    def context_blocks(self, request: RequestT, ctx: PolicyContext) -> list[str]:
        return []

    def compose(self, request: RequestT, ctx: PolicyContext, *, freeform: bool) -> Instruction:
        return self.composer.compose(request, freeform=freeform, extra=self.context_blocks(request, ctx))

    def finish(self, request: RequestT, response: OutputT, ctx: PolicyContext) -> OutputT:
        return response

    def _backend(self, request: RequestT) -> FlowBackend:
        provider = request.provider or self.default_provider
        backend = self.backends.get(provider)
        if backend is None:
            raise KeyError(f"No backend configured for provider '{provider}'")
        return backend

    def run(self, request: RequestT, *, user_id: str = ANONYMOUS_USER) -> OutputT:
        severity = self.classifier.classify(request.query)
        exec_ctx = ExecutionContext(
            user_id=user_id,
            flow=self.name,
            request_id=f"req_{uuid.uuid4().hex[:12]}",
            message_text=request.query,
            emergency=severity is Severity.URGENT,
        )
        policy_ctx = PolicyContext(request=request, trace=FlowTrace(), severity=severity)
        self.prepare(request, policy_ctx)

        backend = self._backend(request)
        instruction = self.compose(request, policy_ctx, freeform=backend.freeform)
        raw: dict[str, Any] | None = backend.answer(
            instruction,
            self.contract,
            ctx=exec_ctx,
            trace=policy_ctx.trace,
            tools=None if backend.freeform else self.tools_for(request, policy_ctx),
            safety=self.safety,
        )
        if raw is None:
            raw = self.contract.apology()

        response, violations = self.contract.finalize(raw, policy_ctx)
        response = self.finish(request, response, policy_ctx)
        logger.info(
            "flow=%s request=%s backend=%s outcome=%s severity=%s repairs=%s",
            self.name,
            exec_ctx.request_id,
            policy_ctx.trace.backend,
            policy_ctx.trace.outcome,
            severity.value,
            len(violations),
        )
        if self.coordinator is not None:
            self.coordinator.handle(self.name, user_id, response, request, self.contract.primary_field)
        return response
