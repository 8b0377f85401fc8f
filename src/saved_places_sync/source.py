"""
Remote snapshot collaborator contract.

The browser-automation scraper lives outside this package; anything that can
name the saved lists and return the places of one list can drive a sync.
"""

import asyncio
import json
import logging
import random
from abc import ABC
from abc import abstractmethod
from pathlib import Path

from saved_places_sync.models import ObservationError
from saved_places_sync.models import RemotePlace

logger = logging.getLogger(__name__)

# Lists the mapping service manages itself; they can't be synced.
SYSTEM_LISTS = frozenset({"Starred places", "Saved places"})


class SnapshotSource(ABC):
    """Produces remote snapshots, one list at a time."""

    @abstractmethod
    async def list_collection_names(self) -> list[str]:
        """Names of the user's own lists, in display order."""

    @abstractmethod
    async def focus(self, list_name: str) -> bool:
        """Position on a list before fetching. Returns False if it can't be found."""

    @abstractmethod
    async def fetch_entities(self, list_name: str, limit: int | None) -> list[RemotePlace]:
        """Places of the focused list; ``limit=None`` means every place."""

    async def return_to_overview(self) -> None:
        """Go back to the list overview after a fetch."""
        return None

    async def pace(self, min_delay: float, max_delay: float) -> None:
        """Randomized pause between lists, purely for rate limiting."""
        if max_delay <= 0:
            return
        await asyncio.sleep(random.uniform(min_delay, max_delay))


class JsonSnapshotSource(SnapshotSource):
    """Replays a snapshot the scraper exported to a JSON file.

    Format::

        {"lists": [
            {"name": "Want to go",
             "places": [{"remote_id": "...", "url": "...", "name": "...", "notes": null}]},
            {"name": "Broken list", "error": "timed out waiting for places"}
        ]}

    A list carrying an ``error`` key is reported as a failed observation.
    """

    def __init__(self, path: Path):
        self.path = path
        self._lists: dict[str, dict] | None = None
        self._focused: str | None = None

    def _load(self) -> dict[str, dict]:
        if self._lists is None:
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise ObservationError(f"Cannot read snapshot {self.path}: {e}") from e
            self._lists = {}
            for entry in data.get("lists", []):
                name = (entry.get("name") or "").strip()
                if not name or name in SYSTEM_LISTS or name in self._lists:
                    continue
                self._lists[name] = entry
        return self._lists

    async def list_collection_names(self) -> list[str]:
        return list(self._load())

    async def focus(self, list_name: str) -> bool:
        if list_name not in self._load():
            logger.warning(f"Could not find list: {list_name}")
            return False
        self._focused = list_name
        return True

    async def fetch_entities(self, list_name: str, limit: int | None) -> list[RemotePlace]:
        if self._focused != list_name:
            raise ObservationError(f"List {list_name!r} is not focused")
        entry = self._load()[list_name]
        if entry.get("error"):
            raise ObservationError(entry["error"])

        places: list[RemotePlace] = []
        seen: set[str] = set()
        for raw in entry.get("places", []):
            if limit is not None and len(places) >= limit:
                break
            remote_id = raw.get("remote_id")
            if not remote_id or remote_id in seen:
                continue
            seen.add(remote_id)
            places.append(
                RemotePlace(
                    remote_id=remote_id,
                    url=raw.get("url"),
                    name=raw.get("name") or remote_id,
                    notes=raw.get("notes") or None,
                )
            )
        return places

    async def return_to_overview(self) -> None:
        self._focused = None
