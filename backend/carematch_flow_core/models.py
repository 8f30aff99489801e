from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PROFILE_SCHEMA_VERSION = 1
ANALYTICS_SCHEMA_VERSION = 1

Provider = Literal["primary", "fallback"]


class _Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)


class ProfileSnapshot(_Snapshot):
    """Read-only projection of the user's health profile."""

    schema_version: int = PROFILE_SCHEMA_VERSION
    preferred_name: str | None = None
    age: int | None = None
    gender_identity: str | None = None
    weight: float | None = None
    known_diseases: str | None = None
    allergies: str | None = None
    current_medications: str | None = None
    dietary_habits: str | None = None
    sleep_hours: float | None = None
    exercise_frequency: str | None = None
    immunizations: tuple[str, ...] = ()
    location: str | None = None


class RiskFlag(_Snapshot):
    level: str | None = None
    message: str | None = None


class RiskAlerts(_Snapshot):
    upcoming_screenings: tuple[str, ...] = ()
    adherence_percent: float | None = None
    missed_doses: int | None = None
    chronic_condition_risks: tuple[str, ...] = ()


class LifestyleSignals(_Snapshot):
    diet_quality_score: float | None = None
    hydration_status: str | None = None
    hydration_avg_ml: float | None = None
    stress_level: str | None = None


class SocialSignals(_Snapshot):
    loneliness: str | None = None
    environmental_risk: str | None = None


class PreventiveSignals(_Snapshot):
    missing_vaccines: tuple[str, ...] = ()
    reminders: tuple[str, ...] = ()


class MentalHealthSignals(_Snapshot):
    mood_pattern: str | None = None
    burnout_risk: str | None = None


class EngagementSignals(_Snapshot):
    app_engagement: str | None = None
    recommendation_follow_rate: float | None = None


class AnalyticsSnapshot(_Snapshot):
    """Derived analytics computed by the dashboard; never mutated here."""

    schema_version: int = ANALYTICS_SCHEMA_VERSION
    health_score: float | None = None
    risk_flag: RiskFlag | None = None
    recommendations: tuple[str, ...] = ()
    action_plans: tuple[str, ...] = ()
    motivational_feedback: str | None = None
    risk_alerts: RiskAlerts | None = None
    lifestyle: LifestyleSignals | None = None
    social: SocialSignals | None = None
    preventive: PreventiveSignals | None = None
    mental_health: MentalHealthSignals | None = None
    engagement: EngagementSignals | None = None


class EscalationMetrics(_Snapshot):
    total: int = 0
    pending: int = 0
    avg_resolution_ms: float = 0.0


class FlowRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1)
    locale: str = "English"
    profile: ProfileSnapshot | None = None
    analytics: AnalyticsSnapshot | None = None
    image_data_uri: str | None = None
    escalation_metrics: EscalationMetrics | None = None
    provider: Provider | None = None


@dataclass
class ExecutionContext:
    user_id: str
    flow: str
    request_id: str
    message_text: str = ""
    emergency: bool = False


@dataclass
class ToolInvocation:
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass
class ToolResult:
    name: str
    status: str
    data: Any = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    call_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "succeeded"

    def as_function_response(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "result": self.data,
            "errors": self.errors,
        }


@dataclass
class FlowTrace:
    """Tool traffic observed during one flow invocation."""

    invocations: list[ToolInvocation] = field(default_factory=list)
    results: list[ToolResult] = field(default_factory=list)
    backend: str = ""
    outcome: str = ""

    def results_for(self, name: str) -> list[ToolResult]:
        return [result for result in self.results if result.name == name]

    def last_success(self, name: str) -> ToolResult | None:
        successes = [result for result in self.results_for(name) if result.ok]
        return successes[-1] if successes else None


@dataclass
class SideEffectIntent:
    kind: str
    user_id: str
    payload: dict[str, Any] = field(default_factory=dict)
