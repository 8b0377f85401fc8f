"""
List repository.
"""

import sqlite3
import time


class ListsRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def upsert(self, name: str, remote_list_id: str | None = None, now: int | None = None) -> int:
        """Insert or update a list and return its local id.

        Matches on ``remote_list_id`` when one is known, otherwise on the
        unique name (lists seeded from CSV exports have no remote id yet).
        """
        ts = int(time.time()) if now is None else now
        if remote_list_id:
            existing = self.find_by_remote_id(remote_list_id) or self.find_by_name(name)
            if existing:
                self.conn.execute(
                    "UPDATE lists SET remote_list_id = ?, name = ?, last_synced = ?, "
                    "updated_at = ? WHERE id = ?",
                    (remote_list_id, name, ts, ts, existing["id"]),
                )
                return existing["id"]
        else:
            existing = self.find_by_name(name)
            if existing:
                self.conn.execute(
                    "UPDATE lists SET last_synced = ?, updated_at = ? WHERE id = ?",
                    (ts, ts, existing["id"]),
                )
                return existing["id"]

        cursor = self.conn.execute(
            "INSERT INTO lists (remote_list_id, name, last_synced, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (remote_list_id, name, ts, ts, ts),
        )
        return cursor.lastrowid

    def find_by_id(self, list_id: int) -> sqlite3.Row | None:
        cursor = self.conn.execute("SELECT * FROM lists WHERE id = ?", (list_id,))
        return cursor.fetchone()

    def find_by_remote_id(self, remote_list_id: str) -> sqlite3.Row | None:
        cursor = self.conn.execute(
            "SELECT * FROM lists WHERE remote_list_id = ?", (remote_list_id,)
        )
        return cursor.fetchone()

    def find_by_name(self, name: str) -> sqlite3.Row | None:
        cursor = self.conn.execute("SELECT * FROM lists WHERE name = ?", (name,))
        return cursor.fetchone()

    def find_all(self) -> list:
        """All lists that are not soft-deleted, ordered by name."""
        cursor = self.conn.execute("SELECT * FROM lists WHERE is_deleted = 0 ORDER BY name")
        return cursor.fetchall()

    def mark_deleted(self, list_id: int):
        self.conn.execute("UPDATE lists SET is_deleted = 1 WHERE id = ?", (list_id,))

    def mark_deleted_locally(self, list_id: int):
        self.conn.execute(
            "UPDATE lists SET is_deleted = 1, deleted_locally = 1 WHERE id = ?", (list_id,)
        )
