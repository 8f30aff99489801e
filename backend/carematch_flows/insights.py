from __future__ import annotations

from pydantic import BaseModel, Field

from carematch_flow_core.composer import NONE_REPORTED, ContextComposer, block
from carematch_flow_core.contracts import APOLOGY_TEXT, OutputContract
from carematch_flow_core.enforcer import CanonicalText, RequiredDisclaimer, RequiredText
from carematch_flow_core.flow import Flow
from carematch_flow_core.generation import RELAXED_SAFETY
from carematch_flow_core.models import FlowRequest, ProfileSnapshot

INSIGHTS_DISCLAIMER = (
    "This information is for educational purposes only and is not a substitute for professional medical advice. "
    "Always consult with a qualified healthcare provider for any health concerns."
)


class InsightsOutput(BaseModel):
    diet_insight: str = Field(default="", description="One key suggestion based on dietary habits.")
    sleep_insight: str = Field(default="", description="A recommendation based on average sleep hours.")
    exercise_insight: str = Field(default="", description="An encouraging tip based on exercise frequency.")
    overall_summary: str = Field(description="A brief, encouraging summary of the insights.")
    disclaimer: str = Field(description="The standard disclaimer stating this is not medical advice.")


class InsightsRequest(FlowRequest):
    query: str = Field(default="General improvement", min_length=1, description="The user's health goals.")


INSIGHTS_CONTRACT: OutputContract[InsightsOutput] = OutputContract(
    name="insights",
    model=InsightsOutput,
    primary_field="overall_summary",
    rules=(
        RequiredText("overall_summary", APOLOGY_TEXT),
        RequiredDisclaimer(
            "disclaimer",
            {"English": CanonicalText(prefix="This information is for educational purposes only", text=INSIGHTS_DISCLAIMER)},
        ),
    ),
)


def _humanize(value: str | None) -> str | None:
    return value.replace("_", " ") if value else value


def lifestyle_data_section(request: FlowRequest) -> str:
    profile = request.profile or ProfileSnapshot()
    sleep = f"{profile.sleep_hours:g} hours" if profile.sleep_hours is not None else None
    return block(
        "User's Health Data",
        [
            ("Dietary Habits", _humanize(profile.dietary_habits)),
            ("Average Sleep per Night", sleep),
            ("Exercise Frequency", _humanize(profile.exercise_frequency)),
            ("Known Conditions", profile.known_diseases, NONE_REPORTED),
        ],
    )


INSIGHTS_PREAMBLE = (
    "You are an AI Health Advisor. Provide personalized, supportive and actionable insights from the user's diet, "
    "sleep and exercise data, taking known conditions into account for safety."
)

INSIGHTS_TASK = f"""Your task:
1. diet_insight: one key suggestion for their dietary style (e.g. plant protein for vegetarians, healthy fats for low-carb), or a balanced-diet tip when unknown.
2. sleep_insight: a sleep hygiene tip when under 6 hours, praise plus a consistency tip for 7-9 hours, or a general tip when unknown.
3. exercise_insight: a simple way to start (like a 10-minute walk) if they never exercise, adding a day if 1-2 times a week, or listening to their body if frequent.
4. overall_summary: a brief, positive summary encouraging them on their health journey.
5. disclaimer: always exactly "{INSIGHTS_DISCLAIMER}\""""


class InsightsFlow(Flow[InsightsRequest, InsightsOutput]):
    name = "insights"
    contract = INSIGHTS_CONTRACT
    safety = RELAXED_SAFETY
    composer = ContextComposer(
        preamble=INSIGHTS_PREAMBLE,
        sections=(lifestyle_data_section,),
        task=INSIGHTS_TASK,
        query_label="User Goals",
        resource_links=False,
    )
