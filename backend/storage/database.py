from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteStore:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  title TEXT NOT NULL,
                  message TEXT NOT NULL,
                  category TEXT NOT NULL,
                  link_to TEXT,
                  is_read INTEGER NOT NULL DEFAULT 0,
                  expires_at TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS emergency_alerts (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  flow TEXT NOT NULL,
                  advice TEXT NOT NULL,
                  summary TEXT,
                  dismissible INTEGER NOT NULL DEFAULT 0,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS scheduled_jobs (
                  id TEXT PRIMARY KEY,
                  user_id TEXT NOT NULL,
                  job_type TEXT NOT NULL,
                  due_at TEXT NOT NULL,
                  payload_json TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'scheduled',
                  attempts INTEGER NOT NULL DEFAULT 0,
                  last_error TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  UNIQUE(user_id, job_type, due_at)
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                  id TEXT PRIMARY KEY,
                  user_id TEXT,
                  event_type TEXT NOT NULL,
                  flow TEXT,
                  details_json TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_user_created
                  ON notifications(user_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_emergency_alerts_user_created
                  ON emergency_alerts(user_id, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_scheduled_jobs_status_due
                  ON scheduled_jobs(status, due_at);
                CREATE INDEX IF NOT EXISTS idx_audit_events_user_type
                  ON audit_events(user_id, event_type, created_at);
                """
            )
