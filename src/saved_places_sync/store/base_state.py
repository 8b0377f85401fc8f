"""
Base State Store: what the remote side looked like at the last successful sync.

Only the merger writes here; the detector only reads.
"""

import sqlite3
import time

from saved_places_sync.fingerprint import place_list_key
from saved_places_sync.fingerprint import place_notes_key
from saved_places_sync.models import ENTITY_PLACE_LIST
from saved_places_sync.models import ENTITY_PLACE_NOTES
from saved_places_sync.models import EXISTS
from saved_places_sync.models import NOT_EXISTS


class BaseStateRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert(
        self, entity_type: str, entity_id: str, fingerprint: str | None, now: int | None = None
    ):
        """Store the fingerprint; writing the same value twice is a no-op in effect."""
        ts = int(time.time()) if now is None else now
        self.conn.execute(
            "INSERT INTO base_state (entity_type, entity_id, fingerprint, synced_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(entity_type, entity_id) DO UPDATE SET "
            "  fingerprint = excluded.fingerprint, synced_at = excluded.synced_at",
            (entity_type, entity_id, fingerprint, ts),
        )

    def find(self, entity_type: str, entity_id: str) -> sqlite3.Row | None:
        cursor = self.conn.execute(
            "SELECT * FROM base_state WHERE entity_type = ? AND entity_id = ?",
            (entity_type, entity_id),
        )
        return cursor.fetchone()

    def find_by_type(self, entity_type: str) -> list:
        cursor = self.conn.execute(
            "SELECT * FROM base_state WHERE entity_type = ? ORDER BY entity_id", (entity_type,)
        )
        return cursor.fetchall()

    def delete(self, entity_type: str, entity_id: str):
        self.conn.execute(
            "DELETE FROM base_state WHERE entity_type = ? AND entity_id = ?",
            (entity_type, entity_id),
        )

    # ------------------------------------------------------------------ #
    # Typed helpers                                                        #
    # ------------------------------------------------------------------ #

    def get_place_notes(self, place_id: int) -> str | None:
        row = self.find(ENTITY_PLACE_NOTES, place_notes_key(place_id))
        return row["fingerprint"] if row else None

    def save_place_notes(self, place_id: int, fingerprint: str | None, now: int | None = None):
        self.upsert(ENTITY_PLACE_NOTES, place_notes_key(place_id), fingerprint, now=now)

    def get_membership(self, place_id: int, list_id: int) -> str | None:
        """Return 'exists', 'not_exists' or None when the pair was never synced."""
        row = self.find(ENTITY_PLACE_LIST, place_list_key(place_id, list_id))
        return row["fingerprint"] if row else None

    def existed_in_base(self, place_id: int, list_id: int) -> bool:
        return self.get_membership(place_id, list_id) == EXISTS

    def save_membership(self, place_id: int, list_id: int, exists: bool, now: int | None = None):
        token = EXISTS if exists else NOT_EXISTS
        self.upsert(ENTITY_PLACE_LIST, place_list_key(place_id, list_id), token, now=now)
