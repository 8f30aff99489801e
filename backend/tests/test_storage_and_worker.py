from __future__ import annotations

from datetime import timedelta

from carematch_flow_core import FollowUpWorker
from carematch_flow_core.side_effects import FOLLOW_UP_JOB, check_in_payload
from storage.time_utils import parse_iso, to_iso, utc_now


def test_expired_notifications_are_hidden(stores):
    notifications = stores["notifications"]
    past = to_iso(utc_now() - timedelta(minutes=1))
    future = to_iso(utc_now() + timedelta(hours=1))

    notifications.create(user_id="user-a", title="Old", message="gone", category="check-in", expires_at=past)
    fresh_id = notifications.create(user_id="user-a", title="New", message="here", category="check-in", expires_at=future)
    notifications.create(user_id="user-a", title="Odd", message="category", category="promo")

    listed = notifications.list_for_user("user-a")
    assert [item["title"] for item in listed] == ["Odd", "New"]
    assert listed[0]["category"] == "general"

    notifications.mark_read(fresh_id)
    assert {item["id"]: item["is_read"] for item in notifications.list_for_user("user-a")}[fresh_id] is True
    assert notifications.list_for_user("") == []


def test_scheduling_same_job_twice_is_idempotent(stores):
    jobs = stores["jobs"]
    due_at = utc_now() + timedelta(hours=2)
    payload = check_in_payload("How are you feeling?", due_at)

    first = jobs.schedule(user_id="user-a", job_type=FOLLOW_UP_JOB, due_at=due_at, payload=payload)
    second = jobs.schedule(user_id="user-a", job_type=FOLLOW_UP_JOB, due_at=due_at, payload=payload)

    assert first == second
    assert len(jobs.list_for_user("user-a")) == 1
    assert parse_iso(payload["expires_at"]) == due_at + timedelta(hours=24)


def test_worker_fails_unknown_job_types(stores):
    jobs = stores["jobs"]
    job_id = jobs.schedule(user_id="user-a", job_type="weekly_digest", due_at=utc_now(), payload={})
    worker = FollowUpWorker(jobs=jobs, notifications=stores["notifications"])

    assert worker.run_due(now=utc_now() + timedelta(seconds=1)) == 0

    job = jobs.get(job_id)
    assert job["status"] == "failed"
    assert job["last_error"] == "Unsupported job type: weekly_digest"
    assert job["attempts"] == 1


def test_check_in_notification_expires_a_day_after_delivery(stores):
    jobs = stores["jobs"]
    due_at = utc_now() - timedelta(hours=25)
    jobs.schedule(
        user_id="user-a",
        job_type=FOLLOW_UP_JOB,
        due_at=due_at,
        payload=check_in_payload("Checking in on you.", due_at),
    )
    worker = FollowUpWorker(jobs=jobs, notifications=stores["notifications"])

    assert worker.run_due() == 1
    # Delivered late: its 24h window has already passed, so it is not listed.
    assert stores["notifications"].list_for_user("user-a") == []


def test_audit_log_filters(stores):
    audit = stores["audit"]
    audit.append(event_type="tool_outcome", details={"tool": "set_reminder"}, user_id="user-a", flow="assistant")
    audit.append(event_type="tool_outcome", details={"tool": "read_web_page"}, user_id="user-b", flow="care_navigation")

    events = audit.list_events(event_type="tool_outcome", user_id="user-b")

    assert [event["details"]["tool"] for event in events] == ["read_web_page"]
    assert len(audit.list_events()) == 2
