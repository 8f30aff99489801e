from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any

from .database import SQLiteStore
from .time_utils import to_iso, utc_now


class ScheduledJobStore:
    """Durable delayed jobs keyed by user, job type and due time."""

    def __init__(self, db: SQLiteStore) -> None:
        self._db = db

    def schedule(self, *, user_id: str, job_type: str, due_at: datetime, payload: dict[str, Any]) -> str:
        job_id = f"job_{uuid.uuid4().hex[:16]}"
        now = to_iso(utc_now())
        due = to_iso(due_at)
        with self._db.connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO scheduled_jobs (
                      id, user_id, job_type, due_at, payload_json, status, attempts, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, 'scheduled', 0, ?, ?)
                    """,
                    (job_id, user_id, job_type, due, json.dumps(payload, sort_keys=True), now, now),
                )
            except sqlite3.IntegrityError:
                row = conn.execute(
                    "SELECT id FROM scheduled_jobs WHERE user_id = ? AND job_type = ? AND due_at = ?",
                    (user_id, job_type, due),
                ).fetchone()
                if not row:
                    raise
                return row["id"]
        return job_id

    def claim_due(self, *, now: datetime | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Move due jobs to ``running`` and return them."""
        cutoff = to_iso(now or utc_now())
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, job_type, due_at, payload_json, attempts
                FROM scheduled_jobs
                WHERE status = 'scheduled' AND due_at <= ?
                ORDER BY due_at ASC
                LIMIT ?
                """,
                (cutoff, limit),
            ).fetchall()
            claimed: list[dict[str, Any]] = []
            for row in rows:
                updated = conn.execute(
                    """
                    UPDATE scheduled_jobs
                    SET status = 'running', attempts = attempts + 1, updated_at = ?
                    WHERE id = ? AND status = 'scheduled'
                    """,
                    (to_iso(utc_now()), row["id"]),
                ).rowcount
                if not updated:
                    continue
                claimed.append(
                    {
                        "id": row["id"],
                        "user_id": row["user_id"],
                        "job_type": row["job_type"],
                        "due_at": row["due_at"],
                        "payload": json.loads(row["payload_json"]),
                        "attempts": row["attempts"] + 1,
                    }
                )
        return claimed

    def finish(self, job_id: str, *, error: str | None = None) -> None:
        status = "failed" if error else "done"
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE scheduled_jobs SET status = ?, last_error = ?, updated_at = ? WHERE id = ?",
                (status, error, to_iso(utc_now()), job_id),
            )

    def get(self, job_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT id, user_id, job_type, due_at, payload_json, status, attempts, last_error
                FROM scheduled_jobs
                WHERE id = ?
                """,
                (job_id,),
            ).fetchone()
        if not row:
            return None
        item = dict(row)
        item["payload"] = json.loads(item.pop("payload_json"))
        return item

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT id FROM scheduled_jobs WHERE user_id = ? ORDER BY due_at ASC",
                (user_id,),
            ).fetchall()
        return [job for job in (self.get(row["id"]) for row in rows) if job]
