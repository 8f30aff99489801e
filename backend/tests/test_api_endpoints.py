from __future__ import annotations

import importlib

from fastapi.testclient import TestClient

from carematch_flow_core import APOLOGY_TEXT, SchemaToolBackend
from carematch_flows.assistant import EMERGENCY_ADVICE
from carematch_flows.mental_health import MENTAL_HEALTH_DISCLAIMER

from flow_fakes import ScriptedPrimaryClient, final, tool_calls


def _use_primary(backend_module, *results) -> ScriptedPrimaryClient:
    client = ScriptedPrimaryClient(*results)
    backend = SchemaToolBackend(client, backend_module.container.dispatcher)
    for flow in backend_module.container.flows.values():
        flow.backends["primary"] = backend
    return client


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_unconfigured_primary_backend_returns_apology(client):
    response = client.post("/flows/assistant", json={"query": "How can I sleep better?"})

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == APOLOGY_TEXT
    assert body["emergency_detected"] is False
    assert body["suggested_centres"] == []


def test_unconfigured_fallback_reports_provider_error(client):
    response = client.post(
        "/flows/mental-health",
        json={"query": "I have been feeling low lately", "provider": "fallback"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "Fallback provider error: OPENROUTER_API_KEY is not configured."
    assert body["disclaimer"] == MENTAL_HEALTH_DISCLAIMER
    assert body["resource_links"] == []


def test_invalid_request_bodies_are_rejected(client):
    assert client.post("/flows/coach", json={"query": "hi"}).status_code == 422
    assert client.post("/flows/document", json={"image_data_uri": "https://example.org/scan.png"}).status_code == 422
    assert client.post("/flows/assistant", json={"query": "hello", "provider": "openai"}).status_code == 422
    assert client.post("/flows/care-navigation", json={"query": "flu", "age": 400}).status_code == 422


def test_emergency_alert_is_visible_to_the_user(backend_module, client, auth_headers):
    _use_primary(backend_module, final({"response": "Please call for help right away."}))

    response = client.post(
        "/flows/assistant",
        json={"query": "My friend is unconscious and not breathing"},
        headers=auth_headers("user-a"),
    )

    assert response.status_code == 200
    assert response.json()["emergency_detected"] is True
    alerts = client.get("/alerts/emergency", headers=auth_headers("user-a")).json()["alerts"]
    assert [(alert["flow"], alert["advice"]) for alert in alerts] == [("assistant", EMERGENCY_ADVICE)]
    assert client.get("/alerts/emergency", headers=auth_headers("user-b")).json()["alerts"] == []
    assert client.get("/notifications", headers=auth_headers("user-a")).json()["notifications"] == []


def test_notifications_require_identity(client):
    assert client.get("/notifications").status_code == 401
    assert client.get("/alerts/emergency").status_code == 401
    assert client.get("/notifications", headers={"X-User-Id": "bad id with spaces"}).status_code == 400
    assert client.get("/notifications", headers={"X-User-Id": "patient-42"}).status_code == 200


def test_reminder_notification_round_trip(backend_module, client, auth_headers):
    _use_primary(
        backend_module,
        tool_calls(("setReminderTool", {"reminder_details": "Take vitamins", "remind_at_description": "8am daily"})),
        final({"response": "Done, I set that reminder."}),
    )

    response = client.post("/flows/assistant", json={"query": "Remind me to take vitamins"}, headers=auth_headers("user-a"))

    assert response.json()["reminder_confirmation"].startswith('Reminder set for "Take vitamins"')
    notifications = client.get("/notifications", headers=auth_headers("user-a")).json()["notifications"]
    assert [item["title"] for item in notifications] == ["Reminder Update"]
    assert notifications[0]["is_read"] is False


def test_anonymous_booking_is_blocked_and_audited(backend_module, client):
    primary = _use_primary(
        backend_module,
        tool_calls(("book_appointment", {"appointment_details": "Dr. Ade, Monday 9am"})),
        final({"response": "Please sign in so I can book that."}),
    )

    response = client.post("/flows/assistant", json={"query": "Book me with Dr. Ade on Monday at 9am"})

    assert response.json()["booking_confirmation"] is None
    blocked = primary.calls[1]["tool_round"].results[0]
    assert blocked.status == "blocked"
    assert blocked.errors[0]["code"] == "identity_required"
    [event] = backend_module.container.audit.list_events(event_type="tool_outcome")
    assert event["details"]["tool"] == "book_appointment"
    assert event["details"]["status"] == "blocked"
    assert event["flow"] == "assistant"


def test_identified_booking_succeeds(backend_module, client, auth_headers):
    _use_primary(
        backend_module,
        tool_calls(("book_appointment", {"appointment_details": "Dr. Ade, Monday 9am", "doctor_name": "Dr. Ade"})),
        final({"response": "All set."}),
    )

    body = client.post(
        "/flows/assistant",
        json={"query": "Book me with Dr. Ade on Monday at 9am"},
        headers=auth_headers("user-a"),
    ).json()

    assert "Confirmation ID: BK-" in body["booking_confirmation"]
    assert body["draft_visit_summary"]["doctor_name"] == "Dr. Ade"
    assert body["draft_visit_summary"]["clinic_name"] == "The Clinic (from details)"


def test_follow_up_delivery_endpoint(backend_module, client, auth_headers):
    _use_primary(
        backend_module,
        final({"response": "Feel better soon.", "follow_up": {"delay_hours": 0, "check_in_message": "Ignored"}}),
    )
    client.post("/flows/assistant", json={"query": "I have a cold"}, headers=auth_headers("user-a"))

    assert backend_module.container.jobs.list_for_user("user-a") == []
    assert client.post("/jobs/run-due", headers={"X-Worker-Token": "worker-secret"}).json() == {"delivered": 0}


def test_job_runner_requires_worker_token(backend_module, client, auth_headers, monkeypatch):
    assert client.post("/jobs/run-due").status_code == 401
    assert client.post("/jobs/run-due", headers=auth_headers("user-a")).status_code == 401
    assert client.post("/jobs/run-due", headers={"X-Worker-Token": "guess"}).status_code == 401

    monkeypatch.setenv("CAREMATCH_WORKER_TOKEN", "")
    module = importlib.reload(backend_module)
    with TestClient(module.app) as unconfigured:
        response = unconfigured.post("/jobs/run-due", headers={"X-Worker-Token": ""})
    assert response.status_code == 503


def test_care_navigation_endpoint_returns_directory_clinics(backend_module, client):
    primary = _use_primary(backend_module, final({"summary": "Lagos has several options."}))

    body = client.post("/flows/care-navigation", json={"query": "orthopaedic care", "location": "Lagos"}).json()

    names = [clinic["name"] for clinic in body["relevant_clinics"]]
    assert "National Orthopaedic Hospital, Igbobi, Lagos" in names
    assert "get_nearby_clinics" not in primary.calls[0]["tools"]


def test_disabled_tools_setting_feeds_policy(backend_module, monkeypatch):
    monkeypatch.setenv("CAREMATCH_DISABLED_TOOLS", "read_web_page, set_reminder")
    module = importlib.reload(backend_module)

    assert module.container.policy.denylist == {"read_web_page", "set_reminder"}


def test_user_id_resolution(backend_module):
    assert backend_module.get_user_id(None) == "anonymous"
    assert backend_module.get_user_id("Bearer ") == "anonymous"
    assert backend_module.get_user_id("Bearer user-a") == "user-a"
    hashed = backend_module.get_user_id("Bearer " + "x" * 200)
    assert hashed.startswith("token_")
    assert len(hashed) == len("token_") + 24
    assert backend_module.resolve_user_id("Bearer user-a", "trusted-1") == "trusted-1"
