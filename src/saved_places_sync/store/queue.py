"""
Pending Operation Queue: durable, ordered write-back intents with retry bookkeeping.

Lifecycle::

    pending ──claim──▶ in_progress ──▶ completed
       ▲                    │
       └── schedule_retry ◀─┘   (retry_count < max_retries)
                            └──▶ failed (terminal, never resurrected)
"""

import json
import logging
import sqlite3
import time

from saved_places_sync.models import OP_COMPLETED
from saved_places_sync.models import OP_FAILED
from saved_places_sync.models import OP_IN_PROGRESS
from saved_places_sync.models import OP_PENDING
from saved_places_sync.models import OPERATION_TYPES
from saved_places_sync.models import PlacesSyncError

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (OP_PENDING, OP_IN_PROGRESS)


def _decode(row: sqlite3.Row) -> dict:
    op = dict(row)
    op["payload"] = json.loads(op["payload"])
    return op


class PendingOperationQueue:
    def __init__(self, conn: sqlite3.Connection, max_retries: int = 3, backoff_seconds: int = 300):
        self.conn = conn
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def enqueue(self, operation_type: str, payload: dict, now: int | None = None) -> int:
        """Queue a new operation as pending and ready immediately; return its id."""
        if operation_type not in OPERATION_TYPES:
            raise PlacesSyncError(f"Unknown operation type: {operation_type!r}")
        ts = int(time.time()) if now is None else now
        cursor = self.conn.execute(
            "INSERT INTO pending_operations "
            "(operation_type, payload, status, max_retries, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                operation_type,
                json.dumps(payload, sort_keys=True),
                OP_PENDING,
                self.max_retries,
                ts,
                ts,
            ),
        )
        return cursor.lastrowid

    def get(self, op_id: int) -> dict | None:
        cursor = self.conn.execute("SELECT * FROM pending_operations WHERE id = ?", (op_id,))
        row = cursor.fetchone()
        return _decode(row) if row else None

    def list_ready(self, now: int | None = None) -> list[dict]:
        """Pending operations whose retry time has come, oldest first."""
        ts = int(time.time()) if now is None else now
        cursor = self.conn.execute(
            "SELECT * FROM pending_operations "
            "WHERE status = ? AND (next_retry_at IS NULL OR next_retry_at <= ?) "
            "ORDER BY created_at ASC, id ASC",
            (OP_PENDING, ts),
        )
        return [_decode(row) for row in cursor.fetchall()]

    def find_all(self, status: str | None = None) -> list[dict]:
        if status:
            cursor = self.conn.execute(
                "SELECT * FROM pending_operations WHERE status = ? ORDER BY created_at, id",
                (status,),
            )
        else:
            cursor = self.conn.execute("SELECT * FROM pending_operations ORDER BY created_at, id")
        return [_decode(row) for row in cursor.fetchall()]

    def has_open(self, operation_type: str, place_id: int, list_id: int) -> bool:
        """True while an operation of this type for the place/list pair is pending or running."""
        cursor = self.conn.execute(
            "SELECT payload FROM pending_operations "
            "WHERE operation_type = ? AND status IN (?, ?)",
            (operation_type, *_OPEN_STATUSES),
        )
        for row in cursor.fetchall():
            payload = json.loads(row["payload"])
            if payload.get("place_id") == place_id and payload.get("list_id") == list_id:
                return True
        return False

    def counts_by_status(self) -> dict[str, int]:
        cursor = self.conn.execute(
            "SELECT status, COUNT(*) AS count FROM pending_operations GROUP BY status"
        )
        return {row["status"]: row["count"] for row in cursor.fetchall()}

    def mark_in_progress(self, op_id: int, now: int | None = None) -> bool:
        """Claim a pending operation. Returns False if it was not pending."""
        ts = int(time.time()) if now is None else now
        cursor = self.conn.execute(
            "UPDATE pending_operations SET status = ?, updated_at = ? "
            "WHERE id = ? AND status = ?",
            (OP_IN_PROGRESS, ts, op_id, OP_PENDING),
        )
        return cursor.rowcount == 1

    def mark_completed(self, op_id: int, now: int | None = None):
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "UPDATE pending_operations SET status = ?, error_message = NULL, "
            "updated_at = ?, completed_at = ? WHERE id = ? AND status IN (?, ?)",
            (OP_COMPLETED, ts, ts, op_id, *_OPEN_STATUSES),
        )

    def mark_failed(self, op_id: int, error: str | None = None, now: int | None = None):
        """Fail an operation terminally without consuming a retry."""
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "UPDATE pending_operations SET status = ?, error_message = ?, "
            "updated_at = ?, completed_at = ? WHERE id = ? AND status IN (?, ?)",
            (OP_FAILED, error, ts, ts, op_id, *_OPEN_STATUSES),
        )

    def schedule_retry(self, op_id: int, error: str, now: int | None = None) -> str:
        """Record a failed attempt and return the resulting status.

        ``retry_count`` is incremented and the operation rescheduled
        ``backoff × retry_count`` seconds from now while the count stays below
        ``max_retries``; reaching the limit moves it to 'failed' and leaves
        ``next_retry_at`` where it was. Terminal operations are not touched.
        """
        op = self.get(op_id)
        if op is None:
            raise PlacesSyncError(f"Pending operation {op_id} not found")
        if op["status"] not in _OPEN_STATUSES:
            logger.warning(f"Operation {op_id} is already {op['status']}; retry not scheduled")
            return op["status"]

        ts = int(time.time()) if now is None else now
        retry_count = op["retry_count"] + 1
        if retry_count >= op["max_retries"]:
            self.conn.execute(
                "UPDATE pending_operations SET status = ?, retry_count = ?, error_message = ?, "
                "updated_at = ?, completed_at = ? WHERE id = ?",
                (OP_FAILED, retry_count, error, ts, ts, op_id),
            )
            logger.warning(
                f"Operation {op_id} ({op['operation_type']}) failed after "
                f"{retry_count} attempt(s): {error}"
            )
            return OP_FAILED

        next_retry_at = ts + self.backoff_seconds * retry_count
        self.conn.execute(
            "UPDATE pending_operations SET status = ?, retry_count = ?, error_message = ?, "
            "next_retry_at = ?, updated_at = ? WHERE id = ?",
            (OP_PENDING, retry_count, error, next_retry_at, ts, op_id),
        )
        logger.debug(f"Operation {op_id} rescheduled for {next_retry_at} (attempt {retry_count})")
        return OP_PENDING
