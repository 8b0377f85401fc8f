"""
Append-only audit trail of sync runs.
"""

import json
import sqlite3
import time
from pathlib import Path

from saved_places_sync.models import STATUS_IN_PROGRESS


def _decode(row: sqlite3.Row) -> dict:
    entry = dict(row)
    entry["errors"] = json.loads(entry["errors"]) if entry["errors"] else []
    return entry


class SyncLogRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def start(self, sync_type: str, now: int | None = None) -> int:
        """Open a new in-progress entry and return its id."""
        ts = int(time.time()) if now is None else now
        cursor = self.conn.execute(
            "INSERT INTO sync_log (sync_type, started_at, status) VALUES (?, ?, ?)",
            (sync_type, ts, STATUS_IN_PROGRESS),
        )
        return cursor.lastrowid

    def complete(
        self,
        log_id: int,
        status: str,
        places_pulled: int = 0,
        operations_pushed: int = 0,
        conflicts_detected: int = 0,
        errors: list[dict] | None = None,
        now: int | None = None,
    ):
        """Write the terminal counters and status of a run."""
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "UPDATE sync_log SET completed_at = ?, places_pulled = ?, operations_pushed = ?, "
            "conflicts_detected = ?, errors = ?, status = ? WHERE id = ?",
            (
                ts,
                places_pulled,
                operations_pushed,
                conflicts_detected,
                json.dumps(errors or []),
                status,
                log_id,
            ),
        )

    def get(self, log_id: int) -> dict | None:
        row = self.conn.execute("SELECT * FROM sync_log WHERE id = ?", (log_id,)).fetchone()
        return _decode(row) if row else None

    def recent(self, limit: int = 10) -> list[dict]:
        cursor = self.conn.execute(
            "SELECT * FROM sync_log ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [_decode(row) for row in cursor.fetchall()]

    def find_stale(self, max_age_seconds: int, now: int | None = None) -> list[dict]:
        """In-progress entries older than one run should take: evidence of a crashed run."""
        ts = int(time.time()) if now is None else now
        cursor = self.conn.execute(
            "SELECT * FROM sync_log WHERE status = ? AND started_at < ? ORDER BY started_at",
            (STATUS_IN_PROGRESS, ts - max_age_seconds),
        )
        return [_decode(row) for row in cursor.fetchall()]


def query_sync_history(db_path: Path, limit: int = 10) -> tuple[list[dict], dict[str, int]]:
    """
    Return (recent sync log entries, pending operation counts by status).

    Read-only; returns empty results when the DB file or its tables do not exist
    yet, so ``status`` never creates a database as a side effect.
    """
    if not db_path.exists():
        return [], {}
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        if "sync_log" not in tables or "pending_operations" not in tables:
            return [], {}
        entries = [
            _decode(row)
            for row in conn.execute(
                "SELECT * FROM sync_log ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
            )
        ]
        counts = {
            row["status"]: row["count"]
            for row in conn.execute(
                "SELECT status, COUNT(*) AS count FROM pending_operations GROUP BY status"
            )
        }
        return entries, counts
    finally:
        conn.close()
