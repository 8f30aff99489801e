from __future__ import annotations

from datetime import timedelta

import pytest

from carematch_flow_core import (
    APOLOGY_TEXT,
    BackendUnavailable,
    FreeformBackend,
    RELAXED_SAFETY,
    SchemaToolBackend,
)
from carematch_flow_core.models import EscalationMetrics, ProfileSnapshot
from carematch_flow_core.side_effects import CHECK_IN_TITLE, FOLLOW_UP_JOB
from carematch_flow_core.scheduler import FollowUpWorker
from carematch_flows import (
    AssistantFlow,
    AssistantRequest,
    CareNavigationFlow,
    CareNavigationRequest,
    DocumentFlow,
    DocumentRequest,
    InsightsFlow,
    InsightsRequest,
    MentalHealthFlow,
    MentalHealthRequest,
)
from carematch_flows.assistant import EMERGENCY_ADVICE
from carematch_flows.mental_health import MENTAL_HEALTH_DISCLAIMER
from carematch_tools import build_assistant_tools, build_care_navigation_tools, build_mental_health_tools
from storage.time_utils import utc_now

from flow_fakes import ScriptedFallbackClient, ScriptedPrimaryClient, final, tool_calls

USER = "user-123"


def _backends(dispatcher, primary=None, fallback=None):
    return {
        "primary": SchemaToolBackend(primary or ScriptedPrimaryClient(), dispatcher),
        "fallback": FreeformBackend(fallback or ScriptedFallbackClient("Fallback reply.")),
    }


@pytest.fixture
def assistant_for(toolset, directory, dispatcher, coordinator):
    def _make(primary=None, fallback=None) -> AssistantFlow:
        return AssistantFlow(
            directory=directory,
            tools=build_assistant_tools(toolset),
            backends=_backends(dispatcher, primary, fallback),
            coordinator=coordinator,
        )

    return _make


def test_successful_booking_fills_confirmation_and_notifies(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        tool_calls(
            (
                "bookAppointmentTool",
                {
                    "appointment_details": "Dr. Bello, eye exam, Friday 3pm",
                    "clinic_name": "National Eye Centre, Kaduna",
                    "reason_for_visit": "Eye exam",
                    "date_time_string": "Friday 3pm",
                },
            )
        ),
        final({"response": "Your appointment request is in.", "booking_confirmation": "Invented confirmation"}),
    )
    flow = assistant_for(primary)

    response = flow.run(AssistantRequest(query="Please book an eye exam with Dr. Bello on Friday at 3pm"), user_id=USER)

    assert response.booking_confirmation.startswith('Appointment for "Dr. Bello, eye exam, Friday 3pm"')
    assert response.draft_visit_summary.clinic_name == "National Eye Centre, Kaduna"
    assert response.draft_visit_summary.reason_for_visit == "Eye exam"
    assert primary.calls[0]["tool_round"] is None
    assert primary.calls[1]["tool_round"].results[0].status == "succeeded"
    notifications = stores["notifications"].list_for_user(USER)
    assert [(item["title"], item["category"]) for item in notifications] == [("Appointment Update", "appointment")]


def test_failed_booking_leaves_confirmation_empty(assistant_for, toolset, stores):
    toolset.scheduler.failure_rate = 1.0
    primary = ScriptedPrimaryClient(
        tool_calls(("book_appointment", {"appointment_details": "Dr. Bello, Friday 3pm"})),
        final(
            {
                "response": "I couldn't book that, sorry.",
                "booking_confirmation": "Booked!",
                "draft_visit_summary": {"clinic_name": "X", "reason_for_visit": "Y", "visit_date_string": "Z"},
            }
        ),
    )

    response = assistant_for(primary).run(AssistantRequest(query="Book Dr. Bello for Friday 3pm"), user_id=USER)

    assert response.booking_confirmation is None
    assert response.draft_visit_summary is None
    assert primary.calls[1]["tool_round"].results[0].errors[0]["code"] == "booking_unavailable"
    assert stores["notifications"].list_for_user(USER) == []


def test_reminder_confirmation_notification_links_to_reminders(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        tool_calls(("set_reminder", {"reminder_details": "Dentist visit", "remind_at_description": "Monday 8am"})),
        final({"response": "Reminder is set."}),
    )

    response = assistant_for(primary).run(AssistantRequest(query="Remind me about the dentist on Monday"), user_id=USER)

    assert response.reminder_confirmation.startswith('Reminder set for "Dentist visit" around Monday 8am.')
    [notification] = stores["notifications"].list_for_user(USER)
    assert notification["title"] == "Reminder Update"
    assert notification["link_to"] == "/reminders"


def test_urgent_query_on_primary_flags_emergency_and_blocks_booking(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        tool_calls(("book_appointment", {"appointment_details": "Cardiology, today"})),
        final({"response": "Please get help now.", "emergency_detected": False}),
    )

    response = assistant_for(primary).run(
        AssistantRequest(query="I have crushing chest pain and I can't breathe"),
        user_id=USER,
    )

    assert response.emergency_detected is True
    assert response.emergency_advice == EMERGENCY_ADVICE
    assert response.booking_confirmation is None
    blocked = primary.calls[1]["tool_round"].results[0]
    assert blocked.status == "blocked"
    assert blocked.errors[0]["code"] == "emergency_transaction_block"
    [alert] = stores["alerts"].list_for_user(USER)
    assert alert["flow"] == "assistant"
    assert alert["advice"] == EMERGENCY_ADVICE
    assert alert["dismissible"] is False
    assert stores["notifications"].list_for_user(USER) == []


def test_urgent_query_on_fallback_still_flags_emergency(assistant_for, stores):
    fallback = ScriptedFallbackClient("**Please** call emergency services.")
    flow = assistant_for(fallback=fallback)

    response = flow.run(
        AssistantRequest(query="My father has chest pain and shortness of breath", provider="fallback"),
        user_id=USER,
    )

    assert response.response == "Please call emergency services."
    assert response.emergency_detected is True
    assert response.emergency_advice == EMERGENCY_ADVICE
    assert fallback.instructions[0].query == "My father has chest pain and shortness of breath"
    assert len(stores["alerts"].list_for_user(USER)) == 1


def test_primary_unavailable_returns_apology(assistant_for, stores):
    primary = ScriptedPrimaryClient(BackendUnavailable("gemini", "GEMINI_API_KEY is not configured."))

    response = assistant_for(primary).run(AssistantRequest(query="How can I sleep better?"), user_id=USER)

    assert response.response == APOLOGY_TEXT
    assert response.clarifying_questions == []
    assert response.emergency_detected is False


def test_second_tool_request_is_treated_as_malformed(assistant_for):
    primary = ScriptedPrimaryClient(
        tool_calls(("search_healthcare_centres", {"query": "Lagos"})),
        tool_calls(("search_healthcare_centres", {"query": "Abuja"})),
    )

    response = assistant_for(primary).run(AssistantRequest(query="Find a hospital in Lagos"), user_id=USER)

    assert response.response == APOLOGY_TEXT
    assert len(primary.calls) == 2


def test_direct_centre_request_gets_directory_suggestions(assistant_for):
    primary = ScriptedPrimaryClient(final({"response": "An eye specialist can help with that.", "suggested_centres": [{"bogus": 1}]}))
    request = AssistantRequest(
        query="Which hospital can check my eye?",
        profile=ProfileSnapshot(location="Kaduna"),
    )

    response = assistant_for(primary).run(request, user_id=USER)

    assert [centre.name for centre in response.suggested_centres] == ["National Eye Centre, Kaduna"]


def test_low_severity_small_talk_gets_no_centres(assistant_for):
    primary = ScriptedPrimaryClient(final({"response": "Staying hydrated is a great habit."}))

    response = assistant_for(primary).run(AssistantRequest(query="How much water should I drink?"), user_id=USER)

    assert response.suggested_centres == []


def test_follow_up_is_persisted_and_delivered_by_worker(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        final(
            {
                "response": "Rest today and let me know how you feel.",
                "follow_up": {"delay_hours": 4, "check_in_message": "How is your headache now?"},
            }
        )
    )

    assistant_for(primary).run(AssistantRequest(query="I have a mild headache"), user_id=USER)

    [job] = stores["jobs"].list_for_user(USER)
    assert job["job_type"] == FOLLOW_UP_JOB
    assert job["status"] == "scheduled"
    assert job["payload"]["title"] == CHECK_IN_TITLE
    assert job["payload"]["link_to"] == "/health-assistant?checkInMessage=How%20is%20your%20headache%20now%3F"

    worker = FollowUpWorker(jobs=stores["jobs"], notifications=stores["notifications"])
    assert worker.run_due() == 0
    assert worker.run_due(now=utc_now() + timedelta(hours=5)) == 1
    assert worker.run_due(now=utc_now() + timedelta(hours=5)) == 0

    [notification] = stores["notifications"].list_for_user(USER)
    assert notification["category"] == "check-in"
    assert notification["message"] == "How is your headache now?"
    assert stores["jobs"].get(job["id"])["status"] == "done"


def test_anonymous_users_get_no_side_effects(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        final(
            {
                "response": "Please seek help.",
                "follow_up": {"delay_hours": 1, "check_in_message": "Checking in."},
            }
        )
    )

    response = assistant_for(primary).run(AssistantRequest(query="I think I'm having a stroke"))

    assert response.emergency_detected is True
    assert stores["alerts"].list_for_user("anonymous") == []
    assert stores["jobs"].list_for_user("anonymous") == []


def test_escalation_reference_is_audited(assistant_for, stores):
    primary = ScriptedPrimaryClient(
        final({"response": "Currently there are 4 Pending Escalations and support is on it."})
    )
    request = AssistantRequest(
        query="How fast does support respond?",
        escalation_metrics=EscalationMetrics(total=10, pending=4, avg_resolution_ms=600000),
    )

    assistant_for(primary).run(request, user_id=USER)

    [event] = stores["audit"].list_events(event_type="escalation_metrics_referenced")
    assert event["user_id"] == USER
    assert event["details"]["metrics"]["pending"] == 4


@pytest.mark.parametrize(
    ("text", "audited"),
    [
        (
            "Currently, there are 10 total escalated cases, 4 pending, and the average resolution time is 10 minutes.",
            True,
        ),
        ("Our team has two escalations pending right now.", True),
        ("Please drink water and rest.", False),
    ],
)
def test_escalation_phrasing_from_assistant_prompt_is_audited(assistant_for, stores, text, audited):
    primary = ScriptedPrimaryClient(final({"response": text}))
    request = AssistantRequest(
        query="Is the support team busy?",
        escalation_metrics=EscalationMetrics(total=10, pending=4, avg_resolution_ms=600000),
    )

    assistant_for(primary).run(request, user_id=USER)

    events = stores["audit"].list_events(event_type="escalation_metrics_referenced")
    assert len(events) == (1 if audited else 0)


def test_care_navigation_uses_directory_matches_instead_of_nearby_tool(toolset, directory, dispatcher):
    primary = ScriptedPrimaryClient(
        final(
            {
                "summary": "Kaduna has several specialist centres.",
                "suggested_steps": ["Visit the National Eye Centre."],
                "relevant_clinics": [{"id": "made-up", "name": "Imaginary Clinic", "address": "Nowhere"}],
            }
        )
    )
    flow = CareNavigationFlow(
        directory=directory,
        tools=build_care_navigation_tools(toolset),
        backends=_backends(dispatcher, primary),
    )

    response = flow.run(CareNavigationRequest(query="eye doctor", location="Kaduna"), user_id=USER)

    expected = [centre.name for centre in directory.search("Kaduna")]
    assert [clinic.name for clinic in response.relevant_clinics] == expected
    assert "get_nearby_clinics" not in primary.calls[0]["tools"]
    assert "IMPORTANT: These clinics and hospitals come from the local CareMatch directory" in primary.calls[0]["instruction"].context
    assert response.health_information == []


def test_care_navigation_falls_back_to_nearby_clinics_tool(toolset, directory, dispatcher):
    primary = ScriptedPrimaryClient(
        tool_calls(("getNearbyClinicsTool", {"location_query": "Abeokuta"}), ("search_health_topics", {"keyword": "flu"})),
        final({"summary": "Here is where to get a flu shot.", "suggested_steps": ["Call ahead."]}),
    )
    flow = CareNavigationFlow(
        directory=directory,
        tools=build_care_navigation_tools(toolset),
        backends=_backends(dispatcher, primary),
    )

    response = flow.run(CareNavigationRequest(query="flu shots"), user_id=USER)

    assert "get_nearby_clinics" in primary.calls[0]["tools"]
    assert [clinic.name for clinic in response.relevant_clinics] == ["Federal Medical Centre, Abeokuta, Ogun State"]
    assert response.relevant_clinics[0].distance_km is None
    assert response.health_information == []
    assert response.suggested_steps == ["Call ahead."]


def test_mental_health_professionals_come_from_tool(toolset, dispatcher):
    primary = ScriptedPrimaryClient(
        tool_calls(("findMentalHealthProfessionalsTool", {"location": "Denver", "specialization_keyword": "anxiety"})),
        final({"response": "Here are a few options from a simulated search.", "disclaimer": MENTAL_HEALTH_DISCLAIMER}),
    )
    flow = MentalHealthFlow(tools=build_mental_health_tools(toolset), backends=_backends(dispatcher, primary))

    response = flow.run(
        MentalHealthRequest(query="I'd like to talk to a therapist about my anxiety", location="Denver"),
        user_id=USER,
    )

    assert len(response.suggested_professionals) == 3
    assert response.suggested_professionals[0].name == "Dr. Emily Carter, PhD"
    assert response.disclaimer == MENTAL_HEALTH_DISCLAIMER
    assert 'User\'s location context: "Denver"' in primary.calls[0]["instruction"].context


def test_insights_flow_uses_relaxed_safety(dispatcher):
    primary = ScriptedPrimaryClient(final({"overall_summary": "You're doing well!"}))
    flow = InsightsFlow(backends=_backends(dispatcher, primary))

    request = InsightsRequest(profile=ProfileSnapshot(dietary_habits="low_carb", sleep_hours=6.5))
    response = flow.run(request, user_id=USER)

    assert primary.calls[0]["safety"] is RELAXED_SAFETY
    assert primary.calls[0]["tools"] == []
    assert "- Dietary Habits: low carb" in primary.calls[0]["instruction"].context
    assert "- Average Sleep per Night: 6.5 hours" in primary.calls[0]["instruction"].context
    assert response.disclaimer.startswith("This information is for educational purposes only")


def test_document_flow_sends_attachment(dispatcher):
    primary = ScriptedPrimaryClient(
        final({"plain_language_explanation": "This is your insurance card.", "document_type_guess": "Insurance Card"})
    )
    flow = DocumentFlow(backends=_backends(dispatcher, primary))

    response = flow.run(DocumentRequest(image_data_uri="data:image/jpeg;base64,/9j/4AAQ"), user_id=USER)

    instruction = primary.calls[0]["instruction"]
    assert instruction.media[0].mime_type == "image/jpeg"
    assert instruction.query_block.endswith("Analyze the document provided in the attached file.")
    assert response.document_type_guess == "Insurance Card"


def test_unknown_provider_backend_raises(dispatcher):
    flow = InsightsFlow(backends={"primary": SchemaToolBackend(ScriptedPrimaryClient(), dispatcher)})

    with pytest.raises(KeyError):
        flow.run(InsightsRequest(provider="fallback"))
