from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from .enforcer import PolicyContext, PolicyRule, PolicyViolation, enforce
from .schema import gemini_schema

logger = logging.getLogger(__name__)

APOLOGY_TEXT = (
    "I'm sorry, I encountered an issue processing your request in the expected format. "
    "Could you please try rephrasing or asking again later?"
)

OutputT = TypeVar("OutputT", bound=BaseModel)


@dataclass
class OutputContract(Generic[OutputT]):
    name: str
    model: type[OutputT]
    primary_field: str
    rules: tuple[PolicyRule, ...] = ()
    apology_text: str = APOLOGY_TEXT
    _schema: dict[str, Any] | None = field(default=None, init=False, repr=False)

    def blank(self) -> dict[str, Any]:
        """Every field at its empty value: defaults where declared, "" for required strings."""
        values: dict[str, Any] = {}
        for name, info in self.model.model_fields.items():
            if info.is_required():
                values[name] = ""
            else:
                default = info.get_default(call_default_factory=True)
                values[name] = default.model_dump() if isinstance(default, BaseModel) else default
        return values

    def apology(self) -> dict[str, Any]:
        values = self.blank()
        values[self.primary_field] = self.apology_text
        return values

    def response_schema(self) -> dict[str, Any]:
        if self._schema is None:
            self._schema = gemini_schema(self.model)
        return self._schema

    def schema_instruction(self) -> str:
        return (
            "Respond only with a single JSON object (no prose, no code fences) that matches this schema:\n"
            f"{json.dumps(self.model.model_json_schema(), ensure_ascii=True)}"
        )

    def finalize(self, raw: dict[str, Any], ctx: PolicyContext) -> tuple[OutputT, list[PolicyViolation]]:
        result = enforce(raw, self.rules, ctx)
        try:
            return self.model.model_validate(result.output), result.violations
        except ValidationError as exc:
            logger.warning("%s output failed validation after repair (%s errors)", self.name, exc.error_count())
        fallback = enforce(self.apology(), self.rules, ctx)
        return self.model.model_validate(fallback.output), result.violations + fallback.violations
