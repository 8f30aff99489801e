from __future__ import annotations

import logging
from datetime import datetime

from storage import NotificationStore, ScheduledJobStore

from .side_effects import FOLLOW_UP_JOB

logger = logging.getLogger(__name__)


class FollowUpWorker:
    """Delivers due follow-up jobs as check-in notifications."""

    def __init__(self, *, jobs: ScheduledJobStore, notifications: NotificationStore) -> None:
        self.jobs = jobs
        self.notifications = notifications

    def run_due(self, *, now: datetime | None = None, limit: int = 50) -> int:
        delivered = 0
        for job in self.jobs.claim_due(now=now, limit=limit):
            if job["job_type"] != FOLLOW_UP_JOB:
                self.jobs.finish(job["id"], error=f"Unsupported job type: {job['job_type']}")
                continue
            payload = job["payload"]
            try:
                self.notifications.create(
                    user_id=job["user_id"],
                    title=payload["title"],
                    message=payload["message"],
                    category=payload.get("category", "check-in"),
                    link_to=payload.get("link_to"),
                    expires_at=payload.get("expires_at"),
                )
            except Exception as exc:
                logger.exception("follow-up job %s failed", job["id"])
                self.jobs.finish(job["id"], error=str(exc))
                continue
            self.jobs.finish(job["id"])
            delivered += 1
        if delivered:
            logger.info("delivered %s follow-up check-in(s)", delivered)
        return delivered
