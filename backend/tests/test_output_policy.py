from __future__ import annotations

import pytest

from carematch_flow_core import FlowRequest, FlowTrace, PolicyContext, Severity, classify_severity, enforce
from carematch_flow_core.composer import escalation_section, format_resolution_time, profile_section
from carematch_flow_core.enforcer import DoctorConsultation, ListDefault
from carematch_flow_core.models import EscalationMetrics, ProfileSnapshot, ToolResult
from carematch_flows.assistant import ASSISTANT_CONTRACT, EMERGENCY_ADVICE, AssistantFlow, AssistantRequest
from carematch_flows.coach import COACH_CONTRACT, COACH_DISCLAIMER, CoachFlow, CoachRequest, weight_note
from carematch_flows.document import DOCUMENT_CONTRACT
from carematch_flows.insights import INSIGHTS_CONTRACT, INSIGHTS_DISCLAIMER
from carematch_flows.mental_health import CRISIS_RESOURCE, MENTAL_HEALTH_CONTRACT, MENTAL_HEALTH_DISCLAIMER


def _ctx(query: str = "hello there", *, locale: str = "English", severity: Severity = Severity.LOW, trace=None):
    return PolicyContext(request=FlowRequest(query=query, locale=locale), trace=trace or FlowTrace(), severity=severity)


def _coach_output(disclaimer: str, **extra) -> dict:
    return {"personalized_summary": "Plan", "disclaimer": disclaimer, **extra}


def test_coach_disclaimer_accepts_matching_english_prefix():
    output, violations = COACH_CONTRACT.finalize(_coach_output(COACH_DISCLAIMER), _ctx())

    assert output.disclaimer == COACH_DISCLAIMER
    assert violations == []


def test_coach_disclaimer_missing_is_replaced_with_canonical_text():
    output, violations = COACH_CONTRACT.finalize(_coach_output(""), _ctx())

    assert output.disclaimer == COACH_DISCLAIMER
    assert [violation.rule for violation in violations] == ["required_disclaimer"]


def test_coach_disclaimer_translation_is_checked_by_prefix():
    spanish = "Esta información es solo para fines educativos y no sustituye el consejo médico."
    output, violations = COACH_CONTRACT.finalize(_coach_output(spanish), _ctx(locale="Spanish"))

    assert output.disclaimer == spanish
    assert violations == []


def test_wrong_language_disclaimer_falls_back_to_english_with_note():
    output, _ = COACH_CONTRACT.finalize(_coach_output(COACH_DISCLAIMER), _ctx(locale="French"))

    assert output.disclaimer.startswith(COACH_DISCLAIMER)
    assert output.disclaimer.endswith("(Disclaimer provided in English due to translation issue).")


def test_unknown_locale_uses_english_canonical_text():
    output, violations = COACH_CONTRACT.finalize(_coach_output(COACH_DISCLAIMER), _ctx(locale="Yoruba"))

    assert output.disclaimer == COACH_DISCLAIMER
    assert violations == []


def test_timetable_rows_are_defaulted_and_cleaned():
    raw = _coach_output(
        COACH_DISCLAIMER,
        timetable=[
            {"day": "Monday", "time": "7am", "activity": "Walk"},
            {"day": "Tuesday", "activity": "Swim"},
            "Rest on Sunday",
        ],
    )
    output, _ = COACH_CONTRACT.finalize(raw, _ctx())
    assert [entry.day for entry in output.timetable] == ["Monday"]

    output, _ = COACH_CONTRACT.finalize(_coach_output(COACH_DISCLAIMER, timetable=None), _ctx())
    assert output.timetable == []


def test_insights_disclaimer_is_exact_text_when_wrong():
    raw = {"overall_summary": "Keep going!", "disclaimer": "Not medical advice."}
    output, _ = INSIGHTS_CONTRACT.finalize(raw, _ctx())

    assert output.disclaimer == INSIGHTS_DISCLAIMER
    assert output.diet_insight == ""


def test_mental_health_lists_are_capped_and_links_vetted():
    raw = {
        "response": "That sounds hard.",
        "gentle_suggestions": ["Breathe", "Walk", "Journal", "Call a friend"],
        "resource_links": [
            {"title": "Random blog", "url": "https://example.com/blog"},
            {"title": "NAMI", "url": "https://www.nami.org"},
            {"title": "MentalHealth", "url": "https://www.mentalhealth.gov"},
            {"title": "Trevor", "url": "https://www.thetrevorproject.org"},
        ],
        "suggested_professionals": [],
        "disclaimer": MENTAL_HEALTH_DISCLAIMER,
    }
    output, violations = MENTAL_HEALTH_CONTRACT.finalize(raw, _ctx())

    assert output.gentle_suggestions == ["Breathe", "Walk", "Journal"]
    assert [link.url for link in output.resource_links] == ["https://www.nami.org", "https://www.mentalhealth.gov"]
    assert output.resource_links[0].title == "National Alliance on Mental Illness (NAMI)"
    assert {violation.rule for violation in violations} == {"max_items", "allowed_links"}


def test_mental_health_urgent_request_gets_crisis_line_first():
    raw = {
        "response": "I'm so sorry you're feeling this way.",
        "resource_links": [{"title": "NAMI", "url": "https://www.nami.org"}],
        "disclaimer": "",
    }
    output, _ = MENTAL_HEALTH_CONTRACT.finalize(raw, _ctx("I want to end my life", severity=Severity.URGENT))

    assert output.resource_links[0].url == CRISIS_RESOURCE["url"]
    assert len(output.resource_links) == 2
    assert output.disclaimer == MENTAL_HEALTH_DISCLAIMER


def test_professionals_without_tool_call_are_cleared():
    raw = {
        "response": "Here are some options.",
        "suggested_professionals": [
            {"name": "Dr. Made Up", "specialty": "Therapy", "contact_info": "n/a", "source": "model"}
        ],
        "disclaimer": MENTAL_HEALTH_DISCLAIMER,
    }
    output, _ = MENTAL_HEALTH_CONTRACT.finalize(raw, _ctx())

    assert output.suggested_professionals == []


def test_document_medical_results_always_point_to_doctor():
    raw = {
        "plain_language_explanation": "Your cholesterol is slightly high.",
        "document_type_guess": "Lab Report - Blood Work",
        "next_step_suggestion": "Eat more vegetables.",
    }
    output, _ = DOCUMENT_CONTRACT.finalize(raw, _ctx())

    assert output.plain_language_explanation.startswith("Your cholesterol is slightly high. ")
    assert "discuss these results" in output.plain_language_explanation
    assert output.next_step_suggestion == DoctorConsultation.ADVICE


def test_document_non_medical_types_are_untouched():
    raw = {
        "plain_language_explanation": "Your copay for specialists is $40.",
        "document_type_guess": "Insurance Card",
        "next_step_suggestion": "Keep the card with you.",
    }
    output, violations = DOCUMENT_CONTRACT.finalize(raw, _ctx())

    assert output.next_step_suggestion == "Keep the card with you."
    assert violations == []


@pytest.mark.parametrize(
    ("document_type", "advised"),
    [
        ("Lab Report - Blood Work", True),
        ("Radiology report (chest X-ray)", True),
        ("Blood test results", True),
        ("Prescription Label", False),
        ("Collaboration agreement", False),
    ],
)
def test_doctor_advice_matches_whole_document_type_words(document_type, advised):
    raw = {
        "plain_language_explanation": "Take one tablet twice a day.",
        "document_type_guess": document_type,
        "next_step_suggestion": "Keep this somewhere safe.",
    }
    output, _ = DOCUMENT_CONTRACT.finalize(raw, _ctx())

    assert (output.next_step_suggestion == DoctorConsultation.ADVICE) is advised


def test_list_default_only_flags_values_that_are_not_lists():
    rule = ListDefault("timetable")

    result = enforce({"timetable": "Walk daily"}, [rule], _ctx())
    assert result.output["timetable"] == []
    assert [violation.detail for violation in result.violations] == ["not a list"]

    result = enforce({}, [rule], _ctx())
    assert result.output == {}
    assert result.violations == []


def test_urgent_assistant_output_gets_emergency_flag_and_advice():
    output, _ = ASSISTANT_CONTRACT.finalize(
        {"response": "Please rest.", "emergency_detected": False},
        _ctx("crushing chest pain and short of breath", severity=Severity.URGENT),
    )

    assert output.emergency_detected is True
    assert output.emergency_advice == EMERGENCY_ADVICE


def test_assistant_confirmations_come_only_from_successful_tools():
    trace = FlowTrace()
    raw = {
        "response": "Booked!",
        "booking_confirmation": "Your appointment is confirmed.",
        "draft_visit_summary": {"clinic_name": "X", "reason_for_visit": "Y", "visit_date_string": "Z"},
        "reminder_confirmation": "Reminder set.",
    }
    output, _ = ASSISTANT_CONTRACT.finalize(raw, _ctx(trace=trace))
    assert output.booking_confirmation is None
    assert output.draft_visit_summary is None
    assert output.reminder_confirmation is None

    trace.results.append(
        ToolResult(
            name="book_appointment",
            status="succeeded",
            data={
                "success": True,
                "confirmation_message": "Appointment requested. Confirmation ID: BK-1.",
                "booking_id": "BK-1",
                "booked_clinic_name": "National Eye Centre, Kaduna",
                "booked_doctor_name": None,
                "booked_reason": "Eye exam",
                "booked_date_time_string": "Friday 3pm",
            },
        )
    )
    output, _ = ASSISTANT_CONTRACT.finalize(raw, _ctx(trace=trace))
    assert output.booking_confirmation == "Appointment requested. Confirmation ID: BK-1."
    assert output.draft_visit_summary.clinic_name == "National Eye Centre, Kaduna"
    assert output.draft_visit_summary.visit_date_string == "Friday 3pm"
    assert output.reminder_confirmation is None


def test_invalid_model_output_falls_back_to_apology():
    output, _ = ASSISTANT_CONTRACT.finalize({"response": "Hi", "appointment_offer": {"type": "teleport"}}, _ctx())

    assert output.response == ASSISTANT_CONTRACT.apology_text
    assert output.appointment_offer is None


def test_enforce_never_mutates_input():
    raw = {"response": "", "clarifying_questions": ["a", "b", "c"]}
    result = enforce(raw, ASSISTANT_CONTRACT.rules, _ctx())

    assert raw == {"response": "", "clarifying_questions": ["a", "b", "c"]}
    assert result.output["clarifying_questions"] == ["a", "b"]


def test_profile_section_marks_missing_values():
    rendered = profile_section(FlowRequest(query="hi"))

    assert rendered.startswith("User Profile:")
    assert "- Age: Not provided" in rendered
    assert "- Allergies: None reported" in rendered
    assert "- Immunizations: Not provided" in rendered


CONTEXT_SECTION_TITLES = (
    "User Profile",
    "Health Analytics",
    "Risk & Alerts",
    "Lifestyle & Behavior",
    "Social & Environmental",
    "Preventive Health",
    "AI Recommendations",
    "Mental Health Insights",
    "Engagement Analytics",
    "Escalation Metrics",
)


def test_assistant_instruction_without_profile_or_analytics_is_well_formed():
    request = AssistantRequest(query="I have a mild headache")
    instruction = AssistantFlow(backends={}).compose(request, _ctx(request.query), freeform=False)

    sections = {
        part.splitlines()[0][:-1]: part.splitlines()[1:]
        for part in instruction.context.split("\n\n")
        if part.strip()
        and part.splitlines()[0][:-1] in CONTEXT_SECTION_TITLES
    }
    assert set(sections) == set(CONTEXT_SECTION_TITLES)
    for title, lines in sections.items():
        assert lines, title
        for line in lines:
            assert line.endswith((": Not provided", ": None reported")), line
    assert ": None\n" not in instruction.text
    assert not instruction.text.endswith(": None")
    assert "Preferred language for the response: English" in instruction.context
    assert instruction.query_block == 'User\'s query: "I have a mild headache"'
    assert instruction.media == ()


def test_profile_section_renders_values():
    profile = ProfileSnapshot(preferred_name="Ada", age=34, weight=70.0, immunizations=("Tetanus", "Flu"))
    rendered = profile_section(FlowRequest(query="hi", profile=profile))

    assert "- Name: Ada" in rendered
    assert "- Weight: 70" in rendered
    assert "- Immunizations: Tetanus, Flu" in rendered


def test_escalation_metrics_formatting():
    metrics = EscalationMetrics(total=12, pending=3, avg_resolution_ms=45 * 60000)
    rendered = escalation_section(FlowRequest(query="hi", escalation_metrics=metrics))

    assert "- Total Escalated Cases: 12" in rendered
    assert "- Pending Escalations: 3" in rendered
    assert "- Avg. Resolution Time: 45 min" in rendered
    assert format_resolution_time(0) == "N/A"
    assert "- Pending Escalations: Not provided" in escalation_section(FlowRequest(query="hi"))


def test_coach_composition_includes_question_and_weight_note():
    request = CoachRequest(
        query="I want more energy",
        specific_query="Is coffee okay?",
        profile=ProfileSnapshot(age=40, weight=120),
    )
    flow = CoachFlow(backends={})
    instruction = flow.compose(request, _ctx(request.query), freeform=False)

    assert 'User\'s Specific Question: "Is coffee okay?"' in instruction.context
    assert "over 100" in instruction.context
    assert instruction.query_block == 'User\'s Stated Goals: "I want more energy"'
    assert "entire response in English" in instruction.context


def test_weight_note_skips_minors_and_eating_disorders():
    assert weight_note(ProfileSnapshot(age=16, weight=120)) is None
    assert weight_note(ProfileSnapshot(age=30, weight=35, known_diseases="Eating disorder")) is None
    assert "under 40" in weight_note(ProfileSnapshot(age=30, weight=35))
    assert weight_note(ProfileSnapshot(age=30, weight=70)) is None


@pytest.mark.parametrize(
    ("text", "severity"),
    [
        ("I have chest pain and can't catch my breath", Severity.URGENT),
        ("I think I'm having a stroke", Severity.URGENT),
        ("Should I see a doctor about this rash?", Severity.ELEVATED),
        ("How much water should I drink?", Severity.LOW),
        ("", Severity.LOW),
    ],
)
def test_keyword_severity_classifier(text, severity):
    assert classify_severity(text) is severity
