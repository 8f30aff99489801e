from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from carematch_flow_core.composer import NONE_REPORTED, ContextComposer, block
from carematch_flow_core.contracts import OutputContract
from carematch_flow_core.enforcer import (
    CanonicalText,
    ListDefault,
    MaxItems,
    PolicyContext,
    PolicyRule,
    RequiredDisclaimer,
)
from carematch_flow_core.flow import Flow
from carematch_flow_core.models import FlowRequest, ProfileSnapshot

from .common import ResourceLink

COACH_DISCLAIMER = (
    "This information is for educational purposes only and is not a substitute for professional medical advice, "
    "diagnosis, or treatment. Always seek the advice of your physician or other qualified health provider with any "
    "questions you may have regarding a medical condition. Never disregard professional medical advice or delay in "
    "seeking it because of something you have read here."
)
_ENGLISH_FALLBACK = f"{COACH_DISCLAIMER} (Disclaimer provided in English due to translation issue)."


def _localized(prefix: str) -> CanonicalText:
    # Translations are checked by prefix only; the repair text stays English.
    return CanonicalText(prefix=prefix[:20], text=_ENGLISH_FALLBACK)


COACH_DISCLAIMERS = {
    "English": CanonicalText(prefix="This information is for educational purposes only"[:20], text=COACH_DISCLAIMER),
    "Spanish": _localized("Esta información es solo para fines educativos"),
    "French": _localized("Ces informations sont fournies à des fins éducatives uniquement"),
    "Hindi": _localized("यह जानकारी केवल शैक्षिक उद्देश्यों के लिए है"),
    "Swahili": _localized("Habari hii ni kwa madhumuni ya kielimu pekee"),
}


class TimetableEntry(BaseModel):
    day: str
    time: str
    activity: str


class CoachOutput(BaseModel):
    personalized_summary: str = Field(description="How the advice is tailored to the user's profile and goals.")
    diet_advice: str = Field(default="", description="Dietary recommendations respecting conditions and allergies.")
    exercise_advice: str = Field(default="", description="Suitable activity types with frequency and duration.")
    sleep_advice: str = Field(default="", description="Sleep hygiene tips linked to the goals where relevant.")
    stress_management_advice: str = Field(default="", description="Safe, general stress reduction techniques.")
    disclaimer: str = Field(description="The standard educational-purposes disclaimer, in the user's language.")
    timetable: list[TimetableEntry] = Field(
        default_factory=list,
        description="A sample weekly timetable for exercise or nutrition, one entry per day/time slot.",
    )
    resource_links: list[ResourceLink] = Field(default_factory=list, description="Up to 3 helpful resources.")


class CoachRequest(FlowRequest):
    query: str = Field(min_length=5, description="The user's stated health goals.")
    specific_query: str | None = None


class TimetableShape(PolicyRule):
    """Drops timetable rows that are not day/time/activity objects."""

    name = "timetable_shape"
    field = "timetable"

    @staticmethod
    def _valid(entry: Any) -> bool:
        return isinstance(entry, dict) and all(isinstance(entry.get(key), str) for key in ("day", "time", "activity"))

    def check(self, output: dict[str, Any], ctx: PolicyContext) -> str | None:
        rows = output.get(self.field)
        if isinstance(rows, list) and not all(self._valid(row) for row in rows):
            return "timetable rows missing day, time or activity"
        return None

    def repair(self, output: dict[str, Any], ctx: PolicyContext) -> None:
        output[self.field] = [
            {"day": row["day"], "time": row["time"], "activity": row["activity"]}
            for row in output[self.field]
            if self._valid(row)
        ]


COACH_CONTRACT: OutputContract[CoachOutput] = OutputContract(
    name="coach",
    model=CoachOutput,
    primary_field="personalized_summary",
    rules=(
        RequiredDisclaimer("disclaimer", COACH_DISCLAIMERS),
        ListDefault("timetable"),
        TimetableShape(),
        ListDefault("resource_links"),
        MaxItems("resource_links", 3),
    ),
)


def coach_profile_section(request: FlowRequest) -> str:
    profile = request.profile or ProfileSnapshot()
    weight = None
    if profile.weight is not None:
        weight = f"{profile.weight:g} (unit assumed from input, e.g. kg or lbs)"
    return block(
        "User's Health Profile",
        [
            ("Age", profile.age),
            ("Gender Identity", profile.gender_identity),
            ("Weight", weight),
            ("Known Diseases/Conditions", profile.known_diseases, NONE_REPORTED),
            ("Allergies", profile.allergies, NONE_REPORTED),
            ("Current Medications", profile.current_medications, NONE_REPORTED),
        ],
    )


def weight_note(profile: ProfileSnapshot | None) -> str | None:
    """Context-only note for notable adult weights; never shown to the user."""
    if profile is None or profile.weight is None or profile.age is None or profile.age <= 18:
        return None
    if "eating disorder" in (profile.known_diseases or "").lower():
        return None
    if profile.weight > 100:
        return (
            "Note: User's weight is over 100 (unit not specified, but notable if kg). Consider this in energy "
            "balance discussions for weight management if it is a goal. (This note is for AI context, not for "
            "user output.)"
        )
    if profile.weight < 40:
        return (
            "Note: User's weight is under 40 (unit not specified, but notable if kg). If the user's goals are not "
            "about gaining weight, keep advice sensitive and do not promote further loss. (This note is for AI "
            "context, not for user output.)"
        )
    return None


COACH_PREAMBLE = "You are CareMatch AI's health coach. Generate a safe, personalized plan from the profile and goals below."


def coach_task(request: FlowRequest) -> str:
    language = request.locale
    return f"""Your task, with the entire response in {language}:
1. personalized_summary: acknowledge the key profile points and goals and how the advice connects to them.
2. diet_advice: specific, actionable recommendations. Tailor to known diseases (e.g. low-GI foods for diabetes, DASH principles for hypertension). Never recommend foods the user is allergic to. Suggest food types rather than strict meal plans.
3. exercise_advice: suitable activity types, low-impact if conditions affect mobility, with a general frequency and duration.
4. sleep_advice: sleep hygiene tips, connected to goals such as "more energy".
5. stress_management_advice: general, safe techniques such as mindfulness or deep breathing.
6. timetable: a sample weekly timetable as a list of {{"day", "time", "activity"}} objects, about workouts, meals or a mix depending on the goals.
7. disclaimer: always include this text translated accurately into {language}: "{COACH_DISCLAIMER}"

Be empathetic and encouraging, avoid extreme recommendations, and acknowledge missing information (e.g. height for BMI) instead of guessing."""


class CoachFlow(Flow[CoachRequest, CoachOutput]):
    name = "coach"
    contract = COACH_CONTRACT
    composer = ContextComposer(
        preamble=COACH_PREAMBLE,
        sections=(coach_profile_section,),
        task=coach_task,
        query_label="User's Stated Goals",
    )

    def context_blocks(self, request: CoachRequest, ctx: PolicyContext) -> list[str]:
        blocks: list[str] = []
        if request.specific_query:
            blocks.append(f'User\'s Specific Question: "{request.specific_query.strip()}"')
        note = weight_note(request.profile)
        if note:
            blocks.append(note)
        return blocks
