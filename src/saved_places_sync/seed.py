"""
Seed the local places database from saved-list CSV exports.

Each ``*.csv`` file is one list, named after the file stem unless a mapping
says otherwise. Expected columns: Title, Note, URL, Tags, Comment.
"""

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from saved_places_sync.models import PlacesSyncError
from saved_places_sync.store import StateDatabase

logger = logging.getLogger(__name__)

_PLACE_ID_PATTERNS = (
    re.compile(r"/place/[^/]+/[^/]+/data=.*1s([^!]+)"),
    re.compile(r"cid=(\d+)"),
    re.compile(r"ftid=([^&]+)"),
)


def extract_place_id(url: str) -> str:
    """Stable place id embedded in a maps URL, or the URL itself."""
    for pattern in _PLACE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return url


@dataclass
class SeedStats:
    list_name: str
    rows: int = 0
    imported: int = 0
    existing: int = 0


def read_csv_places(path: Path) -> list[dict]:
    """Rows of a CSV export that have both a Title and a URL."""
    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        rows = []
        for row in reader:
            title = (row.get("Title") or "").strip()
            url = (row.get("URL") or "").strip()
            if not title or not url:
                continue
            rows.append(
                {
                    "title": title,
                    "url": url,
                    "note": (row.get("Note") or "").strip() or None,
                }
            )
    return rows


def seed_list(
    db: StateDatabase, path: Path, list_name: str, now: int | None = None
) -> SeedStats:
    """Import one CSV file into the Local store. Base state is not touched."""
    stats = SeedStats(list_name=list_name)
    rows = read_csv_places(path)
    stats.rows = len(rows)

    list_id = db.lists.upsert(list_name, now=now)
    for row in rows:
        remote_id = extract_place_id(row["url"])
        existing = db.places.find_by_remote_id(remote_id)
        if existing is not None:
            # Notes may have been edited since the export
            stats.existing += 1
            place_id = existing["id"]
        else:
            stats.imported += 1
            place_id = db.places.upsert(
                remote_id, row["title"], url=row["url"], notes=row["note"], now=now
            )
        db.place_lists.add(place_id, list_id, now=now, clear_local_removal=False)

    db.commit()
    logger.info(
        f"{list_name}: {stats.imported} new + {stats.existing} existing = {stats.rows} total"
    )
    return stats


def seed_from_directory(
    db: StateDatabase,
    seed_dir: Path,
    list_names: dict[str, str] | None = None,
    now: int | None = None,
) -> list[SeedStats]:
    """Seed every CSV file in ``seed_dir``; ``list_names`` maps file stems to list names."""
    if not seed_dir.is_dir():
        raise PlacesSyncError(f"Seed directory not found: {seed_dir}")
    list_names = list_names or {}

    files = sorted(seed_dir.glob("*.csv"))
    logger.info(f"Found {len(files)} CSV file(s) in {seed_dir}")

    results = []
    for path in files:
        list_name = list_names.get(path.stem, path.stem)
        try:
            results.append(seed_list(db, path, list_name, now=now))
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            db.rollback()
            raise PlacesSyncError(f"Cannot read {path.name}: {e}") from e
    return results
