from __future__ import annotations

import logging
import re
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import quote

from pydantic import BaseModel

from storage import AuditLog, EmergencyAlertStore, NotificationStore, ScheduledJobStore
from storage.time_utils import to_iso, utc_now

from .models import FlowRequest, SideEffectIntent

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous"
FOLLOW_UP_JOB = "follow_up_check_in"
CHECK_IN_TITLE = "A Check-in from Your AI Companion"
ESCALATION_PHRASES = re.compile(r"escalated cases?|pending escalations?|escalations? pending|resolution time", re.IGNORECASE)

_DEFAULT_EXECUTOR: Executor | None = None


def default_executor() -> Executor:
    global _DEFAULT_EXECUTOR
    if _DEFAULT_EXECUTOR is None:
        _DEFAULT_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="carematch-side-effects")
    return _DEFAULT_EXECUTOR


def check_in_payload(message: str, due_at: datetime) -> dict[str, Any]:
    return {
        "title": CHECK_IN_TITLE,
        "message": message,
        "category": "check-in",
        "link_to": f"/health-assistant?checkInMessage={quote(message, safe='')}",
        "expires_at": to_iso(due_at + timedelta(hours=24)),
    }


class SideEffectCoordinator:
    """Turns a finalized flow response into notifications, alerts, durable jobs and audit events.

    Follow-up jobs are persisted before ``handle`` returns; everything else is handed to
    ``executor`` and may complete after the response has been sent.
    """

    def __init__(
        self,
        *,
        notifications: NotificationStore,
        alerts: EmergencyAlertStore,
        jobs: ScheduledJobStore,
        audit: AuditLog,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.notifications = notifications
        self.alerts = alerts
        self.jobs = jobs
        self.audit = audit
        self.executor = executor
        self.clock = clock

    def plan(self, flow: str, user_id: str, output: dict[str, Any], request: FlowRequest, primary_text: str) -> list[SideEffectIntent]:
        intents: list[SideEffectIntent] = []
        identified = bool(user_id) and user_id != ANONYMOUS_USER

        if identified and output.get("booking_confirmation"):
            intents.append(
                SideEffectIntent(
                    kind="notify",
                    user_id=user_id,
                    payload={"title": "Appointment Update", "message": output["booking_confirmation"], "category": "appointment"},
                )
            )
        if identified and output.get("reminder_confirmation"):
            intents.append(
                SideEffectIntent(
                    kind="notify",
                    user_id=user_id,
                    payload={
                        "title": "Reminder Update",
                        "message": output["reminder_confirmation"],
                        "category": "reminder",
                        "link_to": "/reminders",
                    },
                )
            )
        if identified and output.get("emergency_detected") is True:
            intents.append(
                SideEffectIntent(
                    kind="emergency_alert",
                    user_id=user_id,
                    payload={
                        "flow": flow,
                        "advice": output.get("emergency_advice") or "",
                        "summary": output.get("information_summary_for_emergency"),
                    },
                )
            )
        follow_up = output.get("follow_up")
        if identified and isinstance(follow_up, dict):
            delay_hours = follow_up.get("delay_hours") or 0
            message = str(follow_up.get("check_in_message") or "").strip()
            if delay_hours > 0 and message:
                intents.append(
                    SideEffectIntent(
                        kind="schedule_follow_up",
                        user_id=user_id,
                        payload={"delay_hours": float(delay_hours), "check_in_message": message},
                    )
                )
        metrics = request.escalation_metrics
        if metrics is not None and ESCALATION_PHRASES.search(primary_text):
            intents.append(
                SideEffectIntent(
                    kind="audit_escalation_reference",
                    user_id=user_id or ANONYMOUS_USER,
                    payload={"flow": flow, "metrics": metrics.model_dump(), "note": "AI referenced escalation metrics in response"},
                )
            )
        return intents

    def handle(self, flow: str, user_id: str, response: BaseModel, request: FlowRequest, primary_field: str) -> list[SideEffectIntent]:
        output = response.model_dump()
        intents = self.plan(flow, user_id, output, request, str(output.get(primary_field) or ""))
        for intent in intents:
            if intent.kind == "schedule_follow_up":
                try:
                    self._schedule_follow_up(intent)
                except Exception:
                    logger.exception("could not persist follow-up for user=%s", intent.user_id)
            else:
                self._submit(intent)
        return intents

    def _schedule_follow_up(self, intent: SideEffectIntent) -> None:
        due_at = self.clock() + timedelta(hours=intent.payload["delay_hours"])
        job_id = self.jobs.schedule(
            user_id=intent.user_id,
            job_type=FOLLOW_UP_JOB,
            due_at=due_at,
            payload=check_in_payload(intent.payload["check_in_message"], due_at),
        )
        logger.info("scheduled follow-up %s for user=%s due=%s", job_id, intent.user_id, to_iso(due_at))

    def _submit(self, intent: SideEffectIntent) -> None:
        executor = self.executor or default_executor()
        future = executor.submit(self.apply, intent)
        future.add_done_callback(lambda done: self._log_failure(intent, done))

    @staticmethod
    def _log_failure(intent: SideEffectIntent, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("side effect %s for user=%s failed: %s", intent.kind, intent.user_id, exc, exc_info=exc)

    def apply(self, intent: SideEffectIntent) -> None:
        payload = intent.payload
        if intent.kind == "notify":
            self.notifications.create(
                user_id=intent.user_id,
                title=payload["title"],
                message=payload["message"],
                category=payload.get("category", "general"),
                link_to=payload.get("link_to"),
            )
        elif intent.kind == "emergency_alert":
            self.alerts.raise_alert(
                user_id=intent.user_id,
                flow=payload["flow"],
                advice=payload["advice"],
                summary=payload.get("summary"),
            )
        elif intent.kind == "audit_escalation_reference":
            self.audit.append(
                event_type="escalation_metrics_referenced",
                details={"metrics": payload["metrics"], "note": payload["note"]},
                user_id=intent.user_id,
                flow=payload["flow"],
            )
            logger.info("escalation metrics surfaced to user=%s in flow=%s", intent.user_id, payload["flow"])
        else:
            raise ValueError(f"Unknown side effect kind: {intent.kind}")
