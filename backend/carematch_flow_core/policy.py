from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import ExecutionContext
from .registry import ToolSpec


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    code: str
    message: str


class PolicyEngine:
    """Gatekeeper applied to every tool call before its handler runs."""

    def __init__(self, denylist: set[str] | None = None) -> None:
        self.denylist = set(denylist or ())

    def evaluate(self, ctx: ExecutionContext, tool: ToolSpec, args: dict[str, Any]) -> PolicyDecision:
        if tool.name in self.denylist:
            return PolicyDecision(False, "tool_disabled", f"Tool '{tool.name}' is disabled.")
        if tool.transactional and ctx.emergency:
            return PolicyDecision(
                False,
                "emergency_transaction_block",
                "Transactional actions are blocked in an emergency context.",
            )
        return PolicyDecision(True, "ok", "allowed")
