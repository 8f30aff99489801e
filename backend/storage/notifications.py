from __future__ import annotations

import uuid
from typing import Any

from .database import SQLiteStore
from .time_utils import parse_iso, to_iso, utc_now

NOTIFICATION_CATEGORIES = {"reminder", "appointment", "update", "general", "check-in"}


class NotificationStore:
    def __init__(self, db: SQLiteStore) -> None:
        self._db = db

    def create(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        category: str = "general",
        link_to: str | None = None,
        expires_at: str | None = None,
    ) -> str:
        if not user_id:
            raise ValueError("User ID is required to add a notification.")
        if category not in NOTIFICATION_CATEGORIES:
            category = "general"
        notification_id = f"ntf_{uuid.uuid4().hex[:16]}"
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO notifications (
                  id, user_id, title, message, category, link_to, is_read, expires_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (notification_id, user_id, title, message, category, link_to, expires_at, now, now),
            )
        return notification_id

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Non-expired notifications for ``user_id``, newest first."""
        if not user_id:
            return []
        now = utc_now()
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, title, message, category, link_to, is_read, expires_at, created_at
                FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC
                """,
                (user_id,),
            ).fetchall()
        notifications: list[dict[str, Any]] = []
        for row in rows:
            expires_at = parse_iso(row["expires_at"])
            if expires_at and expires_at < now:
                continue
            item = dict(row)
            item["is_read"] = bool(item["is_read"])
            notifications.append(item)
        return notifications

    def mark_read(self, notification_id: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE notifications SET is_read = 1, updated_at = ? WHERE id = ?",
                (to_iso(utc_now()), notification_id),
            )


class EmergencyAlertStore:
    """High-priority alerts, kept apart from routine notifications."""

    def __init__(self, db: SQLiteStore) -> None:
        self._db = db

    def raise_alert(self, *, user_id: str, flow: str, advice: str, summary: str | None = None) -> str:
        alert_id = f"alr_{uuid.uuid4().hex[:16]}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO emergency_alerts (id, user_id, flow, advice, summary, dismissible, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?)
                """,
                (alert_id, user_id, flow, advice, summary, to_iso(utc_now())),
            )
        return alert_id

    def list_for_user(self, user_id: str) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, flow, advice, summary, dismissible, created_at
                FROM emergency_alerts
                WHERE user_id = ?
                ORDER BY created_at DESC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) | {"dismissible": bool(row["dismissible"])} for row in rows]
