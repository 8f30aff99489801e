from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from carematch_flow_core.composer import ContextComposer
from carematch_flow_core.contracts import APOLOGY_TEXT, OutputContract
from carematch_flow_core.enforcer import ListDefault, MaxItems, PolicyContext, RequiredText, SourcedField
from carematch_flow_core.flow import Flow
from carematch_flow_core.models import FlowRequest
from carematch_flow_core.registry import ToolRegistry
from carematch_tools.directory import HealthcareDirectory, as_clinic
from carematch_tools.schemas import Clinic, HealthfinderItem, HealthListItem, HealthTopic

from .common import tool_data

DIRECTORY_SOURCE = "directory_clinics"


class CareNavigationOutput(BaseModel):
    summary: str = Field(description="Your understanding of the user's situation and the referral reasoning.")
    suggested_steps: list[str] = Field(
        default_factory=list,
        description="Clear, actionable referral steps that name specific clinics or hospitals when found.",
    )
    relevant_clinics: list[Clinic] = Field(default_factory=list, description="Clinics from the directory or get_nearby_clinics.")
    health_information: list[HealthTopic] = Field(default_factory=list, description="Results of search_health_topics.")
    personalized_recommendations: list[HealthfinderItem] = Field(
        default_factory=list,
        description="Results of get_myhealthfinder_data.",
    )
    general_resources: list[HealthListItem] = Field(default_factory=list, description="Results of get_health_items_list.")


class CareNavigationRequest(FlowRequest):
    location: str | None = None
    age: int | None = Field(default=None, ge=0, le=130)
    sex: str | None = None

    def effective_location(self) -> str | None:
        return self.location or (self.profile.location if self.profile else None)

    def effective_age(self) -> int | None:
        return self.age if self.age is not None else (self.profile.age if self.profile else None)

    def effective_sex(self) -> str | None:
        return self.sex or (self.profile.gender_identity if self.profile else None)


def relevant_clinics(ctx: PolicyContext) -> list[dict[str, Any]]:
    directory_matches = ctx.sources.get(DIRECTORY_SOURCE) or []
    if directory_matches:
        return directory_matches
    return tool_data("get_nearby_clinics", default=[])(ctx)


CARE_NAVIGATION_CONTRACT: OutputContract[CareNavigationOutput] = OutputContract(
    name="care_navigation",
    model=CareNavigationOutput,
    primary_field="summary",
    rules=(
        RequiredText("summary", APOLOGY_TEXT),
        ListDefault("suggested_steps"),
        SourcedField("relevant_clinics", relevant_clinics),
        SourcedField("health_information", tool_data("search_health_topics", limit=3, default=[])),
        SourcedField("personalized_recommendations", tool_data("get_myhealthfinder_data", limit=3, default=[])),
        SourcedField("general_resources", tool_data("get_health_items_list", limit=5, default=[])),
        MaxItems("health_information", 3),
        MaxItems("personalized_recommendations", 3),
        MaxItems("general_resources", 5),
    ),
)

CARE_NAVIGATION_PREAMBLE = """You are CareMatch AI, a compassionate and effective care navigator and referral assistant. Act as an intelligent matchmaker connecting the user to the most appropriate care options and information.

Tool use:
- If the user's input contains a URL, call read_web_page on it and base the summary and steps on its content.
- Otherwise use search_health_topics for specific conditions, symptoms or topics.
- Use get_nearby_clinics when the user needs in-person care or gives a location with a health query.
- Use get_myhealthfinder_data when age or sex is known and preventive tips would help.
- Use get_health_items_list for general resource lists or broad topics.

Write a concise summary and actionable suggested_steps framed as referrals. If a clinic list is available, name the clinics (name, address, services, walk-in policy) in the steps. If tools return nothing, say so and suggest broadening the search or contacting local health authorities."""


def user_details_section(request: FlowRequest) -> str | None:
    if not isinstance(request, CareNavigationRequest):
        return None
    lines = []
    location = request.effective_location()
    age = request.effective_age()
    sex = request.effective_sex()
    if location:
        lines.append(f'User\'s reported location: "{location}"')
    if age is not None:
        lines.append(f"User's age: {age}")
    if sex:
        lines.append(f"User's sex: {sex}")
    return "\n".join(lines) or None


class CareNavigationFlow(Flow[CareNavigationRequest, CareNavigationOutput]):
    name = "care_navigation"
    contract = CARE_NAVIGATION_CONTRACT
    composer = ContextComposer(
        preamble=CARE_NAVIGATION_PREAMBLE,
        sections=(user_details_section,),
        resource_links=False,
    )

    def __init__(self, *, directory: HealthcareDirectory | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.directory = directory or HealthcareDirectory()

    def prepare(self, request: CareNavigationRequest, ctx: PolicyContext) -> None:
        location = request.effective_location()
        search = " ".join(part for part in (request.query.strip(), location or "") if part)
        matches = self.directory.search(search)
        if not matches and location:
            matches = self.directory.search(location)
        ctx.sources[DIRECTORY_SOURCE] = [as_clinic(centre).model_dump(mode="json") for centre in matches]

    def tools_for(self, request: CareNavigationRequest, ctx: PolicyContext) -> ToolRegistry | None:
        if self.tools is not None and ctx.sources.get(DIRECTORY_SOURCE):
            return self.tools.without("get_nearby_clinics")
        return self.tools

    def context_blocks(self, request: CareNavigationRequest, ctx: PolicyContext) -> list[str]:
        matches = ctx.sources.get(DIRECTORY_SOURCE) or []
        if not matches:
            return ["No local directory results were found. You may use get_nearby_clinics as a fallback."]
        listing = "\n".join(
            f"- {clinic['name']}, {clinic['address']} (services: {', '.join(clinic['services']) or 'not listed'}; "
            f"walk-in: {'yes' if clinic['accepts_walk_in'] else 'no'})"
            for clinic in matches[:10]
        )
        return [
            "IMPORTANT: These clinics and hospitals come from the local CareMatch directory. Use them as the primary "
            "source for the summary and suggested_steps, and do not look up other clinics.\n" + listing
        ]
