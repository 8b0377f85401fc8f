"""
SQLite persistence for the local places database and sync bookkeeping.
"""

import sqlite3
from pathlib import Path

from saved_places_sync.store.base_state import BaseStateRepository
from saved_places_sync.store.lists import ListsRepository
from saved_places_sync.store.place_lists import PlaceListsRepository
from saved_places_sync.store.places import PlacesRepository
from saved_places_sync.store.queue import PendingOperationQueue
from saved_places_sync.store.sync_log import SyncLogRepository
from saved_places_sync.store.sync_log import query_sync_history

__all__ = ["StateDatabase", "query_sync_history"]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS places (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id TEXT NOT NULL UNIQUE,
    url TEXT,
    name TEXT NOT NULL,
    notes TEXT,
    notes_fingerprint TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    deleted_locally INTEGER NOT NULL DEFAULT 0,
    last_synced INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS lists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_list_id TEXT UNIQUE,
    name TEXT NOT NULL UNIQUE,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    deleted_locally INTEGER NOT NULL DEFAULT 0,
    last_synced INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS place_lists (
    place_id INTEGER NOT NULL REFERENCES places(id) ON DELETE CASCADE,
    list_id INTEGER NOT NULL REFERENCES lists(id) ON DELETE CASCADE,
    deleted_locally INTEGER NOT NULL DEFAULT 0,
    added_at INTEGER NOT NULL,
    PRIMARY KEY (place_id, list_id)
);

CREATE INDEX IF NOT EXISTS idx_place_lists_list ON place_lists(list_id);

CREATE TABLE IF NOT EXISTS base_state (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    fingerprint TEXT,
    synced_at INTEGER NOT NULL,
    PRIMARY KEY (entity_type, entity_id)
);

CREATE TABLE IF NOT EXISTS pending_operations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    next_retry_at INTEGER,
    error_message TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    completed_at INTEGER
);

CREATE INDEX IF NOT EXISTS idx_pending_ops_status ON pending_operations(status);

CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sync_type TEXT NOT NULL,
    started_at INTEGER NOT NULL,
    completed_at INTEGER,
    places_pulled INTEGER NOT NULL DEFAULT 0,
    operations_pushed INTEGER NOT NULL DEFAULT 0,
    conflicts_detected INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_log_started ON sync_log(started_at);
"""


class StateDatabase:
    """Owns the SQLite connection and exposes one repository per table.

    Repositories never commit; callers decide the transaction boundary with
    :meth:`commit` / :meth:`rollback`.
    """

    def __init__(self, db_path: Path, max_retries: int = 3, retry_backoff_seconds: int = 300):
        self.db_path = db_path
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.conn: sqlite3.Connection | None = None

        self.places: PlacesRepository | None = None
        self.lists: ListsRepository | None = None
        self.place_lists: PlaceListsRepository | None = None
        self.base_state: BaseStateRepository | None = None
        self.pending_ops: PendingOperationQueue | None = None
        self.sync_log: SyncLogRepository | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database, create the schema and wire up repositories."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(_SCHEMA)
        self.conn.commit()

        self.places = PlacesRepository(self.conn)
        self.lists = ListsRepository(self.conn)
        self.place_lists = PlaceListsRepository(self.conn)
        self.base_state = BaseStateRepository(self.conn)
        self.pending_ops = PendingOperationQueue(
            self.conn,
            max_retries=self.max_retries,
            backoff_seconds=self.retry_backoff_seconds,
        )
        self.sync_log = SyncLogRepository(self.conn)

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def rollback(self):
        """Discard the uncommitted part of the current transaction."""
        if self.conn:
            self.conn.rollback()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
