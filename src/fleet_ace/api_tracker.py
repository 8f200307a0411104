"""SQLite call log for Ace requests and cache activity.

Each ``GetAceResults`` round trip and each cache hit, stale serve or file
fallback is written to an ``api_calls`` table so slow or failing Ace
sessions can be inspected after the fact.
"""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path


class ApiTracker:
    """Append-only call log. A tracker built with ``db_path=None`` records nothing."""

    def __init__(self, db_path: Path | str | None) -> None:
        self._db_path = Path(db_path) if db_path else None
        self._ready = False

    @property
    def enabled(self) -> bool:
        return self._db_path is not None

    def _get_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        if not self._ready:
            self._init_db(conn)
            self._ready = True
        return conn

    @staticmethod
    def _init_db(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS api_calls (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp   TEXT NOT NULL,
                service     TEXT NOT NULL,
                method      TEXT NOT NULL,
                status      TEXT NOT NULL,
                response_ms INTEGER NOT NULL,
                error       TEXT,
                cached      INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_calls_ts ON api_calls (timestamp)
        """)
        conn.commit()

    def log_call(
        self,
        service: str,
        method: str,
        status: str = "success",
        response_ms: int = 0,
        error: str | None = None,
        cached: bool = False,
    ) -> None:
        """Insert a single call record."""
        if not self.enabled:
            return
        conn = self._get_db()
        try:
            conn.execute(
                "INSERT INTO api_calls (timestamp, service, method, status, response_ms, error, cached) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    datetime.now(timezone.utc).isoformat(),
                    service,
                    method,
                    status,
                    response_ms,
                    error,
                    1 if cached else 0,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def track(self, service: str, method: str):
        """Time the enclosed block and log success or the raised error."""
        t0 = time.monotonic()
        try:
            yield
            ms = int((time.monotonic() - t0) * 1000)
            self.log_call(service, method, "success", ms)
        except Exception as exc:
            ms = int((time.monotonic() - t0) * 1000)
            self.log_call(service, method, "error", ms, error=str(exc))
            raise

    def summary(self, hours: int = 24) -> list[dict]:
        """Counts grouped by service + status for the last N hours."""
        if not self.enabled:
            return []
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
        conn = self._get_db()
        try:
            rows = conn.execute(
                "SELECT service, status, cached, COUNT(*) as cnt, "
                "AVG(response_ms) as avg_ms, MAX(response_ms) as max_ms "
                "FROM api_calls WHERE timestamp >= ? "
                "GROUP BY service, status, cached ORDER BY cnt DESC",
                (cutoff,),
            ).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]

    def recent(self, limit: int = 50) -> list[dict]:
        """Last N calls, newest first."""
        if not self.enabled:
            return []
        conn = self._get_db()
        try:
            rows = conn.execute(
                "SELECT * FROM api_calls ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        finally:
            conn.close()
        return [dict(r) for r in rows]
