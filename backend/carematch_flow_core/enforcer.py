from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .models import FlowRequest, FlowTrace
from .severity import Severity

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "English"


@dataclass
class PolicyContext:
    request: FlowRequest
    trace: FlowTrace = field(default_factory=FlowTrace)
    severity: Severity = Severity.LOW
    sources: dict[str, Any] = field(default_factory=dict)

    @property
    def locale(self) -> str:
        return (self.request.locale or DEFAULT_LOCALE).strip() or DEFAULT_LOCALE


@dataclass(frozen=True)
class PolicyViolation:
    rule: str
    field: str
    detail: str


class PolicyRule:
    """A predicate over an output dict plus the repair that makes it hold."""

    name = "rule"
    field = ""

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        raise NotImplementedError

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class CanonicalText:
    prefix: str
    text: str


class RequiredDisclaimer(PolicyRule):
    name = "required_disclaimer"

    def __init__(self, field: str, canonical: dict[str, CanonicalText], *, default_locale: str = DEFAULT_LOCALE) -> None:
        self.field = field
        self.canonical = canonical
        self.default_locale = default_locale

    def _expected(self, locale: str) -> CanonicalText:
        return self.canonical.get(locale) or self.canonical[self.default_locale]

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        value = output.get(self.field)
        if not isinstance(value, str) or not value.strip():
            return "missing"
        expected = self._expected(ctx.locale)
        if not value.strip().lower().startswith(expected.prefix.lower()):
            return f"does not start with the {ctx.locale} canonical prefix"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = self._expected(ctx.locale).text


class MaxItems(PolicyRule):
    name = "max_items"

    def __init__(self, field: str, limit: int) -> None:
        self.field = field
        self.limit = limit

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        value = output.get(self.field)
        if isinstance(value, list) and len(value) > self.limit:
            return f"{len(value)} items exceeds {self.limit}"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = list(output[self.field])[: self.limit]


class ListDefault(PolicyRule):
    """Coerces a present non-list value to ``[]``; an absent key is left to the model default."""

    name = "list_default"

    def __init__(self, field: str) -> None:
        self.field = field

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        if self.field in output and not isinstance(output[self.field], list):
            return "not a list"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = []


class RequiredText(PolicyRule):
    name = "required_text"

    def __init__(self, field: str, fallback: str) -> None:
        self.field = field
        self.fallback = fallback

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        value = output.get(self.field)
        if not isinstance(value, str) or not value.strip():
            return "empty"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = self.fallback


class DoctorConsultation(PolicyRule):
    """Medical result documents must point the user back to their doctor."""

    name = "doctor_consultation"
    ADVICE = (
        "It's very important to discuss these results and what they mean for your health with your doctor. "
        "They have your full medical history and can provide an accurate interpretation and any necessary "
        "next steps."
    )
    MEDICAL_TYPE_PATTERN = re.compile(r"\b(?:labs?|laboratory|radiology|test results?)\b", re.IGNORECASE)
    EXPLANATION_MARKERS = ("discuss these results", "consult your doctor")

    def __init__(self, *, type_field: str, explanation_field: str, next_step_field: str) -> None:
        self.type_field = type_field
        self.field = explanation_field
        self.next_step_field = next_step_field

    def _applies(self, output: dict[str, Any]) -> bool:
        return bool(self.MEDICAL_TYPE_PATTERN.search(str(output.get(self.type_field) or "")))

    def _explanation_ok(self, output: dict[str, Any]) -> bool:
        explanation = str(output.get(self.field) or "")
        return any(marker in explanation for marker in self.EXPLANATION_MARKERS)

    def _next_step_ok(self, output: dict[str, Any]) -> bool:
        return "discuss these results" in str(output.get(self.next_step_field) or "").lower()

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        if not self._applies(output):
            return None
        if not self._explanation_ok(output) or not self._next_step_ok(output):
            return "medical result without doctor consultation advice"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        if not self._explanation_ok(output):
            explanation = str(output.get(self.field) or "").strip()
            output[self.field] = f"{explanation} {self.ADVICE}".strip()
        if not self._next_step_ok(output):
            output[self.next_step_field] = self.ADVICE


class SourcedField(PolicyRule):
    """Field value is owned by a deterministic source (tool result or directory), never by the model."""

    name = "sourced_field"

    def __init__(self, field: str, resolve: Callable[[PolicyContext], Any]) -> None:
        self.field = field
        self.resolve = resolve

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        if output.get(self.field) != self.resolve(ctx):
            return "value not backed by a tool result"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = self.resolve(ctx)


class EmergencyFlag(PolicyRule):
    name = "emergency_flag"

    def __init__(self, *, flag_field: str, advice_field: str, advice: str) -> None:
        self.field = flag_field
        self.advice_field = advice_field
        self.advice = advice

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        if ctx.severity is not Severity.URGENT:
            return None
        if output.get(self.field) is not True:
            return "urgent query without emergency flag"
        advice = output.get(self.advice_field)
        if not isinstance(advice, str) or not advice.strip():
            return "urgent query without emergency advice"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = True
        advice = output.get(self.advice_field)
        if not isinstance(advice, str) or not advice.strip():
            output[self.advice_field] = self.advice


class AllowedLinks(PolicyRule):
    """Drops links whose url is not in ``allowed``; optionally guarantees one when urgent."""

    name = "allowed_links"

    def __init__(self, field: str, allowed: Sequence[dict[str, str]], *, urgent_link: dict[str, str] | None = None) -> None:
        self.field = field
        self.allowed = {item["url"]: item for item in allowed}
        self.urgent_link = urgent_link

    def _filtered(self, output: dict[str, Any], ctx: PolicyContext) -> list[dict[str, str]]:
        links = output.get(self.field) if isinstance(output.get(self.field), list) else []
        kept = [
            self.allowed[link["url"]]
            for link in links
            if isinstance(link, dict) and link.get("url") in self.allowed
        ]
        if self.urgent_link and ctx.severity is Severity.URGENT:
            if not any(link["url"] == self.urgent_link["url"] for link in kept):
                kept.insert(0, self.urgent_link)
        return kept

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        if output.get(self.field) != self._filtered(output, ctx):
            return "links outside the vetted resource list"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = self._filtered(output, ctx)


@dataclass
class EnforcementResult:
    output: dict[str, Any]
    violations: list[PolicyViolation] = field(default_factory=list)


def enforce(raw_output: dict[str, Any], rules: Sequence[PolicyRule], ctx: PolicyContext) -> EnforcementResult:
    """Apply every rule in order; the input dict is never mutated."""
    output = copy.deepcopy(raw_output) if isinstance(raw_output, dict) else {}
    violations: list[PolicyViolation] = []
    for rule in rules:
        detail = rule.check(output, ctx)
        if detail is None:
            continue
        rule.repair(output, ctx)
        violation = PolicyViolation(rule=rule.name, field=rule.field, detail=detail)
        violations.append(violation)
        logger.info("policy repair rule=%s field=%s: %s", violation.rule, violation.field, violation.detail)
    return EnforcementResult(output=output, violations=violations)
