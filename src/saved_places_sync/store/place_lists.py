"""
Place↔list association repository (explicit join table).
"""

import sqlite3
import time


class PlaceListsRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def add(
        self, place_id: int, list_id: int, now: int | None = None, clear_local_removal: bool = True
    ):
        """Make the place a member of the list.

        An existing row keeps its added_at. Its local-removal flag is cleared
        unless ``clear_local_removal`` is False.
        """
        ts = int(time.time()) if now is None else now
        if not clear_local_removal:
            self.conn.execute(
                "INSERT OR IGNORE INTO place_lists (place_id, list_id, added_at) VALUES (?, ?, ?)",
                (place_id, list_id, ts),
            )
            return
        self.conn.execute(
            "INSERT INTO place_lists (place_id, list_id, added_at) VALUES (?, ?, ?) "
            "ON CONFLICT(place_id, list_id) DO UPDATE SET deleted_locally = 0",
            (place_id, list_id, ts),
        )

    def remove(self, place_id: int, list_id: int):
        """Hard-delete the association row."""
        self.conn.execute(
            "DELETE FROM place_lists WHERE place_id = ? AND list_id = ?", (place_id, list_id)
        )

    def remove_pending(self, place_id: int, list_id: int):
        """Hard-delete the association only while it is still a pending local removal."""
        self.conn.execute(
            "DELETE FROM place_lists WHERE place_id = ? AND list_id = ? AND ("
            "deleted_locally = 1 OR place_id IN (SELECT id FROM places WHERE deleted_locally = 1))",
            (place_id, list_id),
        )

    def mark_deleted_locally(self, place_id: int, list_id: int):
        """Flag the association as locally removed, not yet pushed."""
        self.conn.execute(
            "UPDATE place_lists SET deleted_locally = 1 WHERE place_id = ? AND list_id = ?",
            (place_id, list_id),
        )

    def find_places_in_list(self, list_id: int, limit: int | None = None) -> list:
        """Live members of a list: place not soft-deleted and row not flagged."""
        query = (
            "SELECT p.* FROM places p "
            "JOIN place_lists pl ON p.id = pl.place_id "
            "WHERE pl.list_id = ? AND p.is_deleted = 0 AND pl.deleted_locally = 0 "
            "ORDER BY pl.added_at DESC, p.id DESC"
        )
        params: tuple = (list_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (list_id, limit)
        return self.conn.execute(query, params).fetchall()

    def find_lists_for_place(self, place_id: int) -> list:
        cursor = self.conn.execute(
            "SELECT l.* FROM lists l "
            "JOIN place_lists pl ON l.id = pl.list_id "
            "WHERE pl.place_id = ? AND pl.deleted_locally = 0 "
            "ORDER BY l.name",
            (place_id,),
        )
        return cursor.fetchall()

    def exists(self, place_id: int, list_id: int) -> bool:
        cursor = self.conn.execute(
            "SELECT 1 FROM place_lists "
            "WHERE place_id = ? AND list_id = ? AND deleted_locally = 0",
            (place_id, list_id),
        )
        return cursor.fetchone() is not None

    def has_memberships(self, place_id: int) -> bool:
        """True if any association row, flagged or not, still references the place."""
        cursor = self.conn.execute("SELECT 1 FROM place_lists WHERE place_id = ?", (place_id,))
        return cursor.fetchone() is not None

    def find_pending_local_deletes(self, list_id: int | None = None) -> list:
        """Associations removed locally and waiting to be pushed.

        Includes members of places that were themselves deleted locally.
        """
        query = (
            "SELECT pl.place_id, pl.list_id, p.remote_id FROM place_lists pl "
            "JOIN places p ON p.id = pl.place_id "
            "WHERE (pl.deleted_locally = 1 OR p.deleted_locally = 1)"
        )
        params: tuple = ()
        if list_id is not None:
            query += " AND pl.list_id = ?"
            params = (list_id,)
        return self.conn.execute(query, params).fetchall()

    def find_all(self) -> list:
        cursor = self.conn.execute("SELECT * FROM place_lists WHERE deleted_locally = 0")
        return cursor.fetchall()
