from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from carematch_flow_core.composer import STANDARD_CONTEXT_SECTIONS, ContextComposer, escalation_section
from carematch_flow_core.contracts import APOLOGY_TEXT, OutputContract
from carematch_flow_core.enforcer import (
    EmergencyFlag,
    ListDefault,
    MaxItems,
    PolicyContext,
    RequiredText,
    SourcedField,
)
from carematch_flow_core.flow import Flow
from carematch_flow_core.models import FlowRequest
from carematch_flow_core.severity import Severity, classify_severity
from carematch_tools.directory import HealthcareDirectory, is_direct_centre_request
from carematch_tools.schemas import HealthcareCentre

from .common import ResourceLink

EMERGENCY_ADVICE = (
    "Your message may describe a medical emergency. Call your local emergency number (for example 911 or 112) "
    "or go to the nearest emergency department right away. Do not wait for an appointment."
)


class AppointmentOffer(BaseModel):
    type: Literal["booking", "reminder"] = Field(description="The type of action being offered.")
    message: str = Field(description="A message offering to help with booking or a reminder.")
    required_details: list[str] = Field(
        default_factory=list,
        description='Details still needed from the user to proceed (e.g. "doctor name", "date and time").',
    )


class DraftVisitSummary(BaseModel):
    clinic_name: str
    doctor_name: str | None = None
    reason_for_visit: str
    visit_date_string: str


class FollowUp(BaseModel):
    delay_hours: float = Field(ge=0, description="Hours to wait before sending the check-in.")
    check_in_message: str = Field(description="The content of the check-in message.")


class AssistantOutput(BaseModel):
    response: str = Field(description="The assistant's textual answer, with empathetic check-in questions if relevant.")
    appointment_offer: AppointmentOffer | None = Field(
        default=None,
        description="Set when offering to book an appointment or set a reminder; otherwise null.",
    )
    booking_confirmation: str | None = Field(
        default=None,
        description="Confirmation message if an appointment was successfully booked via a tool.",
    )
    draft_visit_summary: DraftVisitSummary | None = Field(
        default=None,
        description="Data to pre-fill a draft visit summary after a successful booking; otherwise null.",
    )
    reminder_confirmation: str | None = Field(
        default=None,
        description="Confirmation message if a reminder was successfully set via a tool.",
    )
    emergency_detected: bool = Field(default=False, description="True if an emergency is suspected.")
    emergency_advice: str | None = Field(default=None, description="Direct advice when an emergency is suspected.")
    information_summary_for_emergency: str | None = Field(
        default=None,
        description="A brief summary the user can relay to emergency personnel.",
    )
    clarifying_questions: list[str] = Field(
        default_factory=list,
        description="One or two concise clarifying questions, mainly in non-emergency situations.",
    )
    offer_to_summarize_and_translate_for_doctor: bool = False
    summarized_user_query_for_doctor: str | None = None
    offer_to_translate_doctor_notes: bool = False
    translated_doctor_notes: str | None = None
    drug_herb_interaction_warning: str | None = Field(
        default=None,
        description="A general warning when a possible drug-herb interaction is mentioned.",
    )
    follow_up: FollowUp | None = Field(default=None, description="Set when a later check-in is warranted.")
    resource_links: list[ResourceLink] = Field(default_factory=list, description="Up to 3 helpful resources.")
    suggested_centres: list[HealthcareCentre] = Field(
        default_factory=list,
        description="Filled in by the application from the local directory. Leave empty.",
    )


class AssistantRequest(FlowRequest):
    pass


def _successful_booking(ctx: PolicyContext) -> dict[str, Any] | None:
    result = ctx.trace.last_success("book_appointment")
    if result is None or not isinstance(result.data, dict) or not result.data.get("success"):
        return None
    return result.data


def booking_confirmation(ctx: PolicyContext) -> str | None:
    booking = _successful_booking(ctx)
    return booking["confirmation_message"] if booking else None


def draft_visit_summary(ctx: PolicyContext) -> dict[str, Any] | None:
    booking = _successful_booking(ctx)
    if booking is None:
        return None
    return {
        "clinic_name": booking.get("booked_clinic_name") or "",
        "doctor_name": booking.get("booked_doctor_name"),
        "reason_for_visit": booking.get("booked_reason") or "",
        "visit_date_string": booking.get("booked_date_time_string") or "",
    }


def reminder_confirmation(ctx: PolicyContext) -> str | None:
    result = ctx.trace.last_success("set_reminder")
    if result is None or not isinstance(result.data, dict):
        return None
    return result.data.get("confirmation_message")


ASSISTANT_CONTRACT: OutputContract[AssistantOutput] = OutputContract(
    name="assistant",
    model=AssistantOutput,
    primary_field="response",
    rules=(
        RequiredText("response", APOLOGY_TEXT),
        SourcedField("booking_confirmation", booking_confirmation),
        SourcedField("draft_visit_summary", draft_visit_summary),
        SourcedField("reminder_confirmation", reminder_confirmation),
        EmergencyFlag(flag_field="emergency_detected", advice_field="emergency_advice", advice=EMERGENCY_ADVICE),
        ListDefault("clarifying_questions"),
        MaxItems("clarifying_questions", 2),
        ListDefault("resource_links"),
        MaxItems("resource_links", 3),
        SourcedField("suggested_centres", lambda ctx: []),
    ),
)

ASSISTANT_PREAMBLE = """You are CareMatch AI, a health companion. Your responsibilities:
1. Help the user understand their symptoms: explain, clarify and put them in context.
2. Suggest when to seek care, distinguishing emergencies, urgent care and routine visits.
3. Provide general health education about prevention and chronic care.
4. Route the user to app features such as /care-navigator or /document-parser when they fit.
5. Mention conditions that could be considered, but never diagnose.

If the user describes a possible emergency, set emergency_detected to true, give direct emergency_advice and a short information_summary_for_emergency, and do not offer bookings or reminders.
Only call book_appointment after the user has clearly asked to book and given enough detail. Only call set_reminder when asked. If a tool reports a failure, explain it kindly and do not claim success.
If a follow-up check-in would help, fill follow_up with delay_hours and a check_in_message.
If the user mentions herbal or traditional remedies alongside medications, add a general drug_herb_interaction_warning."""

ASSISTANT_TASK = (
    "When discussing escalation, care quality or user support, reference the latest escalation metrics to give "
    'context and reassurance (e.g. "Currently, there are X total escalated cases, Y pending, and the average '
    'resolution time is Z minutes.").'
)

IMAGE_DIRECTIVE = (
    "Analyze the attached image for visible symptoms (e.g. rashes, wounds, swelling, discoloration) and include "
    "your findings in the possible outcomes."
)


class AssistantFlow(Flow[AssistantRequest, AssistantOutput]):
    name = "assistant"
    contract = ASSISTANT_CONTRACT
    composer = ContextComposer(
        preamble=ASSISTANT_PREAMBLE,
        sections=(*STANDARD_CONTEXT_SECTIONS, escalation_section),
        task=ASSISTANT_TASK,
        image_directive=IMAGE_DIRECTIVE,
    )

    def __init__(self, *, directory: HealthcareDirectory | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.directory = directory or HealthcareDirectory()

    def finish(self, request: AssistantRequest, response: AssistantOutput, ctx: PolicyContext) -> AssistantOutput:
        severity = classify_severity(response.response, self.classifier)
        centres: list[HealthcareCentre] = []
        if severity is not Severity.LOW or is_direct_centre_request(request.query):
            location = request.profile.location if request.profile else None
            centres = self.directory.suggest(request.query, location=location, limit=3)
        return response.model_copy(update={"suggested_centres": centres})
