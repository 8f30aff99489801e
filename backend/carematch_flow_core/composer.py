from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .models import AnalyticsSnapshot, FlowRequest, ProfileSnapshot

NOT_PROVIDED = "Not provided"
NONE_REPORTED = "None reported"

STYLE_RULES = (
    "You are a helpful, articulate, and engaging AI assistant. Your responses should be clear, concise, "
    "and tailored to the user's needs. Prioritize accuracy, relevance, and natural language. Avoid robotic "
    "or overly technical phrasing unless requested, and keep a polite, professional tone.\n\n"
    "Answer questions thoroughly, offer insights when useful, and avoid unnecessary repetition. If "
    "clarification is needed, ask follow-up questions politely. Never produce harmful, biased, or "
    "misleading content.\n\n"
    "When listing information, use bullet points or numbers and bold headings (with <b> tags, not "
    "markdown). Do not use *, **, or ##."
)

FREEFORM_STYLE_RULES = (
    "You are a helpful, articulate, and engaging AI assistant. Your responses should be clear, concise, "
    "and tailored to the user's needs. Keep a polite, professional tone and never produce harmful, "
    "biased, or misleading content.\n\n"
    "When listing information, use bullet points or numbers and clear section headings. Never use *, **, "
    "##, ###, or any markdown/HTML formatting. Use only plain text for headings and lists. Calming emojis "
    "are fine in moderation."
)

RESOURCE_LINK_POLICY = (
    "If the user would benefit from a trusted resource, you may recommend up to 3 relevant resources. "
    "These can be external reputable health sites (CDC, WHO, Mayo Clinic, MedlinePlus) or internal app "
    "pages (/care-navigator, /document-parser, /my-health-record, /reminders, /onboarding, "
    "/notifications). Give each a clear title and a direct link (full URL for external, app route for "
    "internal). Only include resource links if they truly help with the user's query."
)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w=.+-]+)*;base64,(?P<data>.+)$", re.DOTALL)


@dataclass(frozen=True)
class MediaPart:
    url: str

    @property
    def mime_type(self) -> str:
        match = _DATA_URI_RE.match(self.url)
        return match.group("mime") if match else "application/octet-stream"

    @property
    def base64_data(self) -> str:
        match = _DATA_URI_RE.match(self.url)
        return match.group("data") if match else ""


@dataclass(frozen=True)
class Instruction:
    """Composed prompt. ``context`` excludes the raw query so freeform backends can send it as a user turn."""

    context: str
    query_block: str
    query: str
    media: tuple[MediaPart, ...] = ()

    @property
    def text(self) -> str:
        return f"{self.context}\n\n{self.query_block}".strip()


Section = Callable[[FlowRequest], "str | None"]


def display(value: Any, absent: str = NOT_PROVIDED) -> str:
    if value is None:
        return absent
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if str(item).strip()]
        return ", ".join(items) if items else absent
    text = str(value).strip()
    return text or absent


def block(title: str, lines: Sequence[tuple[str, Any] | tuple[str, Any, str]]) -> str:
    rendered = [f"{title}:"]
    for line in lines:
        label, value = line[0], line[1]
        absent = line[2] if len(line) > 2 else NOT_PROVIDED
        rendered.append(f"- {label}: {display(value, absent)}")
    return "\n".join(rendered)


def profile_section(request: FlowRequest) -> str:
    profile = request.profile or ProfileSnapshot()
    return block(
        "User Profile",
        [
            ("Name", profile.preferred_name),
            ("Age", profile.age),
            ("Gender", profile.gender_identity),
            ("Known Diseases", profile.known_diseases, NONE_REPORTED),
            ("Allergies", profile.allergies, NONE_REPORTED),
            ("Current Medications", profile.current_medications, NONE_REPORTED),
            ("Weight", profile.weight),
            ("Dietary Habits", profile.dietary_habits),
            ("Sleep Hours", profile.sleep_hours),
            ("Exercise Frequency", profile.exercise_frequency),
            ("Immunizations", profile.immunizations),
            ("Location", profile.location),
        ],
    )


def _analytics(request: FlowRequest) -> AnalyticsSnapshot:
    return request.analytics or AnalyticsSnapshot()


def analytics_section(request: FlowRequest) -> str:
    analytics = _analytics(request)
    score = f"{display(analytics.health_score)} / 100" if analytics.health_score is not None else None
    risk = None
    if analytics.risk_flag and analytics.risk_flag.level:
        risk = analytics.risk_flag.level
        if analytics.risk_flag.message:
            risk = f"{risk} ({analytics.risk_flag.message})"
    return block(
        "Health Analytics",
        [
            ("AI Health Score", score),
            ("Risk Level", risk),
            ("AI Recommendations", analytics.recommendations, NONE_REPORTED),
        ],
    )


def risk_alerts_section(request: FlowRequest) -> str:
    alerts = _analytics(request).risk_alerts
    adherence = None
    missed = None
    screenings: tuple[str, ...] = ()
    chronic: tuple[str, ...] = ()
    if alerts:
        adherence = f"{display(alerts.adherence_percent)}%" if alerts.adherence_percent is not None else None
        missed = alerts.missed_doses
        screenings = alerts.upcoming_screenings
        chronic = alerts.chronic_condition_risks
    return block(
        "Risk & Alerts",
        [
            ("Upcoming screenings", screenings, NONE_REPORTED),
            ("Medication adherence", adherence),
            ("Missed doses", missed),
            ("Chronic condition risks", chronic, NONE_REPORTED),
        ],
    )


def lifestyle_section(request: FlowRequest) -> str:
    lifestyle = _analytics(request).lifestyle
    diet = hydration = stress = None
    if lifestyle:
        if lifestyle.diet_quality_score is not None:
            diet = f"{display(lifestyle.diet_quality_score)}/100"
        if lifestyle.hydration_status:
            hydration = lifestyle.hydration_status
            if lifestyle.hydration_avg_ml is not None:
                hydration = f"{hydration} (avg: {display(lifestyle.hydration_avg_ml)} ml/day)"
        stress = lifestyle.stress_level
    return block(
        "Lifestyle & Behavior",
        [("Diet quality score", diet), ("Hydration", hydration), ("Stress level", stress)],
    )


def social_section(request: FlowRequest) -> str:
    social = _analytics(request).social
    return block(
        "Social & Environmental",
        [
            ("Loneliness status", social.loneliness if social else None),
            ("Environmental risk", social.environmental_risk if social else None),
        ],
    )


def preventive_section(request: FlowRequest) -> str:
    preventive = _analytics(request).preventive
    return block(
        "Preventive Health",
        [
            ("Missing vaccines", preventive.missing_vaccines if preventive else (), NONE_REPORTED),
            ("Upcoming preventive reminders", preventive.reminders if preventive else (), NONE_REPORTED),
        ],
    )


def recommendations_section(request: FlowRequest) -> str:
    analytics = _analytics(request)
    return block(
        "AI Recommendations",
        [
            ("Action plans", "; ".join(analytics.action_plans) or None, NONE_REPORTED),
            ("Motivational feedback", analytics.motivational_feedback),
        ],
    )


def mental_health_section(request: FlowRequest) -> str:
    mental = _analytics(request).mental_health
    return block(
        "Mental Health Insights",
        [
            ("Mood pattern", mental.mood_pattern if mental else None),
            ("Burnout risk", mental.burnout_risk if mental else None),
        ],
    )


def engagement_section(request: FlowRequest) -> str:
    engagement = _analytics(request).engagement
    follow_rate = None
    if engagement and engagement.recommendation_follow_rate is not None:
        follow_rate = f"{display(engagement.recommendation_follow_rate)}%"
    return block(
        "Engagement Analytics",
        [
            ("App engagement", engagement.app_engagement if engagement else None),
            ("Recommendation follow rate", follow_rate),
        ],
    )


def format_resolution_time(avg_resolution_ms: float) -> str:
    if avg_resolution_ms <= 0:
        return "N/A"
    return f"{round(avg_resolution_ms / 60000)} min"


def escalation_section(request: FlowRequest) -> str:
    metrics = request.escalation_metrics
    return block(
        "Escalation Metrics",
        [
            ("Total Escalated Cases", metrics.total if metrics else None),
            ("Pending Escalations", metrics.pending if metrics else None),
            ("Avg. Resolution Time", format_resolution_time(metrics.avg_resolution_ms) if metrics else None),
        ],
    )


STANDARD_CONTEXT_SECTIONS: tuple[Section, ...] = (
    profile_section,
    analytics_section,
    risk_alerts_section,
    lifestyle_section,
    social_section,
    preventive_section,
    recommendations_section,
    mental_health_section,
    engagement_section,
)


class ContextComposer:
    """Builds the instruction for one flow from a fixed preamble plus labeled sections.

    Sections always render; missing data shows up as explicit "Not provided" /
    "None reported" tokens so prompts have the same shape for every user.
    """

    def __init__(
        self,
        *,
        preamble: str,
        sections: Sequence[Section] = (),
        task: Callable[[FlowRequest], str] | str = "",
        query_label: str = "User's query",
        image_directive: str = "",
        resource_links: bool = True,
    ) -> None:
        self.preamble = preamble
        self.sections = tuple(sections)
        self.task = task
        self.query_label = query_label
        self.image_directive = image_directive
        self.resource_links = resource_links

    def compose(self, request: FlowRequest, *, freeform: bool = False, extra: Sequence[str] = ()) -> Instruction:
        blocks: list[str] = [FREEFORM_STYLE_RULES if freeform else STYLE_RULES]
        if self.resource_links and not freeform:
            blocks.append(RESOURCE_LINK_POLICY)
        blocks.append(self.preamble)
        for section in self.sections:
            rendered = section(request)
            if rendered:
                blocks.append(rendered)
        blocks.extend(part for part in extra if part)
        blocks.append(f"Preferred language for the response: {request.locale}")
        task = self.task(request) if callable(self.task) else self.task
        if task and not freeform:
            blocks.append(task)

        query_block = f'{self.query_label}: "{request.query.strip()}"'
        media: tuple[MediaPart, ...] = ()
        if request.image_data_uri:
            media = (MediaPart(url=request.image_data_uri),)
            if self.image_directive:
                query_block = f"{query_block}\n\n{self.image_directive}"
        context = "\n\n".join(part.strip() for part in blocks if part and part.strip())
        return Instruction(context=context, query_block=query_block, query=request.query.strip(), media=media)
