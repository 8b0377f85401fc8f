"""
Shared pytest fixtures and local-state builders.
"""

import logging

import pytest

from saved_places_sync.fingerprint import notes_fingerprint
from saved_places_sync.models import SYNC_DEEP
from saved_places_sync.models import RemotePlace
from saved_places_sync.models import SyncConfig
from saved_places_sync.store import StateDatabase
from saved_places_sync.sync.context import SyncRun

NOW = 1_760_000_000


def remote(remote_id: str, notes: str | None = None, name: str | None = None) -> RemotePlace:
    """A remote snapshot entry with a predictable URL and name."""
    return RemotePlace(
        remote_id=remote_id,
        url=f"https://maps.example.com/place/{remote_id}",
        name=name or f"Place {remote_id}",
        notes=notes,
    )


def add_local_place(
    db: StateDatabase,
    remote_id: str,
    list_name: str,
    notes: str | None = None,
    synced: bool = True,
    base_notes: str | None = None,
) -> tuple[int, int]:
    """Store a place as a member of ``list_name`` and return (place_id, list_id).

    With ``synced`` the Base store records the membership and the notes
    (``base_notes`` if given, else ``notes``) as of a previous sync.
    """
    list_id = db.lists.upsert(list_name, now=NOW)
    place_id = db.places.upsert(
        remote_id,
        f"Place {remote_id}",
        url=f"https://maps.example.com/place/{remote_id}",
        notes=notes,
        now=NOW,
    )
    db.place_lists.add(place_id, list_id, now=NOW)
    if synced:
        db.base_state.save_membership(place_id, list_id, True, now=NOW)
        db.base_state.save_place_notes(
            place_id, notes_fingerprint(base_notes if base_notes is not None else notes), now=NOW
        )
    db.commit()
    return place_id, list_id


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_state.db"


@pytest.fixture
def state_db(db_path):
    with StateDatabase(db_path) as db:
        yield db


@pytest.fixture
def sync_config(db_path):
    return SyncConfig(
        state_db_path=db_path,
        mode=SYNC_DEEP,
        dry_run=False,
        verbose=False,
        quick_delay=(0.0, 0.0),
        deep_delay=(0.0, 0.0),
    )


@pytest.fixture
def sync_logger():
    return logging.getLogger("test_sync")


@pytest.fixture
def sync_run(sync_config, state_db, sync_logger):
    return SyncRun(config=sync_config, db=state_db, logger=sync_logger, now=NOW)
