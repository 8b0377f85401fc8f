"""
Place repository.
"""

import sqlite3
import time

from saved_places_sync.fingerprint import notes_fingerprint


class PlacesRepository:
    """Local place records keyed by the stable ``remote_id``."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert(
        self,
        remote_id: str,
        name: str,
        url: str | None = None,
        notes: str | None = None,
        now: int | None = None,
    ) -> int:
        """Insert or update a place by remote id and return its local id.

        Re-observing a place clears a remote soft-delete but never a pending
        local delete; ``remote_id`` itself is never rewritten.
        """
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "INSERT INTO places "
            "(remote_id, url, name, notes, notes_fingerprint, last_synced, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(remote_id) DO UPDATE SET "
            "  url = excluded.url, "
            "  name = excluded.name, "
            "  notes = excluded.notes, "
            "  notes_fingerprint = excluded.notes_fingerprint, "
            "  last_synced = excluded.last_synced, "
            "  updated_at = excluded.updated_at, "
            "  is_deleted = deleted_locally",
            (remote_id, url, name, notes, notes_fingerprint(notes), ts, ts, ts),
        )
        return self.find_by_remote_id(remote_id)["id"]

    def find_by_id(self, place_id: int) -> sqlite3.Row | None:
        cursor = self.conn.execute("SELECT * FROM places WHERE id = ?", (place_id,))
        return cursor.fetchone()

    def find_by_remote_id(self, remote_id: str) -> sqlite3.Row | None:
        cursor = self.conn.execute("SELECT * FROM places WHERE remote_id = ?", (remote_id,))
        return cursor.fetchone()

    def find_all(self) -> list:
        """All places that are not soft-deleted, newest first."""
        cursor = self.conn.execute(
            "SELECT * FROM places WHERE is_deleted = 0 ORDER BY created_at DESC, id DESC"
        )
        return cursor.fetchall()

    def update_notes(self, place_id: int, notes: str | None, now: int | None = None):
        """Overwrite notes; the fingerprint is written by the same statement."""
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "UPDATE places SET notes = ?, notes_fingerprint = ?, updated_at = ? WHERE id = ?",
            (notes, notes_fingerprint(notes), ts, place_id),
        )

    def mark_deleted(self, place_id: int):
        """Soft-delete a place that disappeared remotely."""
        self.conn.execute("UPDATE places SET is_deleted = 1 WHERE id = ?", (place_id,))

    def restore(self, place_id: int, clear_local_delete: bool = False):
        """Undo a remote soft-delete.

        A pending local delete stays deleted unless ``clear_local_delete`` is
        set, which callers do once the delete has been written back.
        """
        if clear_local_delete:
            self.conn.execute(
                "UPDATE places SET is_deleted = 0, deleted_locally = 0 WHERE id = ?", (place_id,)
            )
            return
        self.conn.execute(
            "UPDATE places SET is_deleted = 0 WHERE id = ? AND deleted_locally = 0", (place_id,)
        )

    def mark_deleted_locally(self, place_id: int):
        """Soft-delete a place locally; the delete still has to reach the remote side."""
        self.conn.execute(
            "UPDATE places SET is_deleted = 1, deleted_locally = 1 WHERE id = ?", (place_id,)
        )

    def find_pending_local_deletes(self) -> list:
        cursor = self.conn.execute("SELECT * FROM places WHERE deleted_locally = 1")
        return cursor.fetchall()
