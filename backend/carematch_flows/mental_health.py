from __future__ import annotations

from pydantic import BaseModel, Field

from carematch_flow_core.composer import ContextComposer
from carematch_flow_core.contracts import OutputContract
from carematch_flow_core.enforcer import (
    AllowedLinks,
    CanonicalText,
    ListDefault,
    MaxItems,
    RequiredDisclaimer,
    SourcedField,
)
from carematch_flow_core.flow import Flow
from carematch_flow_core.models import FlowRequest
from carematch_tools.schemas import MentalHealthProfessional

from .common import ResourceLink, tool_data

MENTAL_HEALTH_DISCLAIMER = (
    "Please remember, I am an AI companion and not a substitute for professional medical advice, diagnosis, or "
    "treatment. If you are experiencing significant distress or a mental health crisis, please consult with a "
    "qualified healthcare professional or a crisis support service immediately."
)

PREDEFINED_RESOURCES = (
    {"title": "National Alliance on Mental Illness (NAMI)", "url": "https://www.nami.org"},
    {"title": "MentalHealth.gov", "url": "https://www.mentalhealth.gov"},
    {"title": "Crisis Text Line (Text HOME to 741741)", "url": "https://www.crisistextline.org"},
    {"title": "The Trevor Project (for LGBTQ youth)", "url": "https://www.thetrevorproject.org"},
    {"title": "Veterans Crisis Line", "url": "https://www.veteranscrisisline.net"},
)
CRISIS_RESOURCE = PREDEFINED_RESOURCES[2]


class MentalHealthOutput(BaseModel):
    response: str = Field(description="An empathetic, supportive reply.")
    detected_sentiment: str | None = Field(
        default=None,
        description='A high-level read of the user\'s sentiment, e.g. "anxious undertones".',
    )
    gentle_suggestions: list[str] = Field(default_factory=list, description="At most 3 gentle, non-clinical suggestions.")
    resource_links: list[ResourceLink] = Field(default_factory=list, description="At most 2 links from the predefined list.")
    suggested_professionals: list[MentalHealthProfessional] = Field(
        default_factory=list,
        description="Results of find_mental_health_professionals, only when professional help was requested.",
    )
    disclaimer: str = Field(description="The mandatory companion disclaimer, verbatim.")


class MentalHealthRequest(FlowRequest):
    query: str = Field(min_length=5, description="How the user is feeling.")
    location: str | None = None
    specialization_keyword: str | None = None


MENTAL_HEALTH_CONTRACT: OutputContract[MentalHealthOutput] = OutputContract(
    name="mental_health",
    model=MentalHealthOutput,
    primary_field="response",
    rules=(
        RequiredDisclaimer(
            "disclaimer",
            {"English": CanonicalText(prefix="Please remember, I am an AI companion", text=MENTAL_HEALTH_DISCLAIMER)},
        ),
        ListDefault("gentle_suggestions"),
        MaxItems("gentle_suggestions", 3),
        ListDefault("resource_links"),
        AllowedLinks("resource_links", PREDEFINED_RESOURCES, urgent_link=CRISIS_RESOURCE),
        MaxItems("resource_links", 2),
        SourcedField("suggested_professionals", tool_data("find_mental_health_professionals", limit=3, default=[])),
        MaxItems("suggested_professionals", 3),
    ),
)

_RESOURCE_LIST = "\n".join(f"- {item['title']}: {item['url']}" for item in PREDEFINED_RESOURCES)

MENTAL_HEALTH_PREAMBLE = f"""You are CareMatch AI's mental health companion. Your tasks:
1. Acknowledge and validate the user's feelings with empathy, then offer comfort and encouragement.
2. Describe the general sentiment you detect in detected_sentiment.
3. Offer at most 3 gentle, optional, non-clinical self-care or reflection ideas in gentle_suggestions. Never phrase them as orders.
4. Only if the user asks for a therapist, counselor or psychiatrist, or clearly wants professional help, call find_mental_health_professionals with their location and specialization. Say that the list comes from a simulated search, is informational only and is not an endorsement.
5. If appropriate and the user is not in crisis, include 1 or 2 resource_links, chosen only from this list:
{_RESOURCE_LIST}
6. Always include this disclaimer verbatim: "{MENTAL_HEALTH_DISCLAIMER}"

If the user expresses thoughts of self-harm, harming others or a severe crisis, your response must strongly encourage them to contact emergency services or a crisis line (such as texting HOME to 741741 in the US) right away, and other suggestions should be minimal. Never diagnose."""


def search_context_section(request: FlowRequest) -> str | None:
    if not isinstance(request, MentalHealthRequest):
        return None
    lines = []
    if request.location:
        lines.append(f'User\'s location context: "{request.location}" (use for professional search if requested).')
    if request.specialization_keyword:
        lines.append(
            f'User\'s specialization interest: "{request.specialization_keyword}" '
            "(use for professional search if requested)."
        )
    return "\n".join(lines) or None


class MentalHealthFlow(Flow[MentalHealthRequest, MentalHealthOutput]):
    name = "mental_health"
    contract = MENTAL_HEALTH_CONTRACT
    composer = ContextComposer(
        preamble=MENTAL_HEALTH_PREAMBLE,
        sections=(search_context_section,),
        query_label="User's input",
        resource_links=False,
    )
