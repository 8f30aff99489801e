from __future__ import annotations

import json
import uuid
from typing import Any

from .database import SQLiteStore
from .time_utils import to_iso, utc_now


class AuditLog:
    def __init__(self, db: SQLiteStore) -> None:
        self._db = db

    def append(
        self,
        *,
        event_type: str,
        details: dict[str, Any],
        user_id: str | None = None,
        flow: str | None = None,
    ) -> str:
        event_id = f"evt_{uuid.uuid4().hex[:16]}"
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO audit_events (id, user_id, event_type, flow, details_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (event_id, user_id, event_type, flow, json.dumps(details, sort_keys=True), to_iso(utc_now())),
            )
        return event_id

    def list_events(self, *, event_type: str | None = None, user_id: str | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        if user_id:
            clauses.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT id, user_id, event_type, flow, details_json, created_at FROM audit_events {where} "
                "ORDER BY created_at ASC",
                tuple(params),
            ).fetchall()
        events = []
        for row in rows:
            item = dict(row)
            item["details"] = json.loads(item.pop("details_json"))
            events.append(item)
        return events
