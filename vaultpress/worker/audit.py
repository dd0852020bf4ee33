"""Durable record of every callback delivery attempt."""

from __future__ import annotations

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS callback_attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    url TEXT NOT NULL,
    job_status TEXT NOT NULL,
    status_code INTEGER,
    error TEXT,
    attempted_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_callback_attempts_job ON callback_attempts(job_id);
"""


class CallbackAttempt(BaseModel):
    job_id: str
    url: str
    job_status: str
    status_code: int | None = None
    error: str | None = None
    attempted_at: datetime

    @property
    def delivered(self) -> bool:
        return self.error is None and self.status_code is not None and self.status_code < 400


class CallbackAuditLog:
    """Append-only SQLite log of callback attempts, in WAL mode.

    One row per attempt, written whether or not delivery succeeded.
    """

    def __init__(self, db_path: str = ".vaultpress/callbacks.db") -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = str(path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self.db_path, isolation_level=None, timeout=5, check_same_thread=False
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat()

    def record(
        self,
        job_id: str,
        url: str,
        job_status: str,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO callback_attempts (job_id, url, job_status, status_code, error, attempted_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (job_id, url, job_status, status_code, error, self._now_iso()),
            )

    def attempts(self, job_id: str | None = None) -> list[CallbackAttempt]:
        query = (
            "SELECT job_id, url, job_status, status_code, error, attempted_at "
            "FROM callback_attempts"
        )
        params: tuple = ()
        if job_id is not None:
            query += " WHERE job_id = ?"
            params = (job_id,)
        query += " ORDER BY id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            CallbackAttempt(
                job_id=r[0],
                url=r[1],
                job_status=r[2],
                status_code=r[3],
                error=r[4],
                attempted_at=datetime.fromisoformat(r[5]),
            )
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()
