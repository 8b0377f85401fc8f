"""
In-memory fake snapshot source for testing.

Duck-type-compatible stand-in for a scraper-backed SnapshotSource. No browser
or network is involved: each list maps to a list of RemotePlace entries or to
an exception that fetching it should raise.
"""

from saved_places_sync.models import RemotePlace


class FakeSnapshotSource:
    """In-memory stub that satisfies the SnapshotSource contract."""

    def __init__(self, lists: dict[str, list[RemotePlace] | Exception] | None = None):
        self._lists = dict(lists or {})
        self.focused: list[str] = []
        self.fetches: list[tuple[str, int | None]] = []
        self.paces: list[tuple[float, float]] = []
        self.overview_returns = 0
        self.overview_error: Exception | None = None

    # ------------------------------------------------------------------ #
    # SnapshotSource interface                                             #
    # ------------------------------------------------------------------ #

    async def list_collection_names(self) -> list[str]:
        if self.overview_error is not None:
            raise self.overview_error
        return list(self._lists)

    async def focus(self, list_name: str) -> bool:
        self.focused.append(list_name)
        return list_name in self._lists

    async def fetch_entities(self, list_name: str, limit: int | None) -> list[RemotePlace]:
        self.fetches.append((list_name, limit))
        places = self._lists[list_name]
        if isinstance(places, Exception):
            raise places
        return list(places if limit is None else places[:limit])

    async def return_to_overview(self) -> None:
        self.overview_returns += 1

    async def pace(self, min_delay: float, max_delay: float) -> None:
        self.paces.append((min_delay, max_delay))

    # ------------------------------------------------------------------ #
    # Test helpers                                                         #
    # ------------------------------------------------------------------ #

    def set_list(self, list_name: str, places: list[RemotePlace] | Exception):
        self._lists[list_name] = places
