"""
Tests for the JSON-file snapshot source.
"""

import json

import pytest

from saved_places_sync.models import ObservationError
from saved_places_sync.source import JsonSnapshotSource


@pytest.fixture
def snapshot_path(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(
        json.dumps(
            {
                "lists": [
                    {"name": "Saved places", "places": [{"remote_id": "s1"}]},
                    {
                        "name": "Want to go",
                        "places": [
                            {"remote_id": "r1", "name": "Cafe", "notes": "coffee"},
                            {"remote_id": "r1", "name": "Cafe (again)"},
                            {"remote_id": "r2", "notes": ""},
                            {"name": "no id"},
                            {"remote_id": "r3", "url": "https://maps.example.com/r3"},
                        ],
                    },
                    {"name": "Want to go", "places": []},
                    {"name": "Broken", "error": "timed out waiting for places"},
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


class TestJsonSnapshotSource:
    @pytest.mark.asyncio
    async def test_system_and_duplicate_lists_are_dropped(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        assert await source.list_collection_names() == ["Want to go", "Broken"]

    @pytest.mark.asyncio
    async def test_fetch_dedupes_and_normalises(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        assert await source.focus("Want to go")

        places = await source.fetch_entities("Want to go", None)

        assert [p.remote_id for p in places] == ["r1", "r2", "r3"]
        assert places[0].name == "Cafe"
        assert places[0].notes == "coffee"
        assert places[1].name == "r2"
        assert places[1].notes is None
        assert places[2].url == "https://maps.example.com/r3"

    @pytest.mark.asyncio
    async def test_fetch_limit(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        await source.focus("Want to go")

        places = await source.fetch_entities("Want to go", 2)
        assert [p.remote_id for p in places] == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_zero_limit_fetches_nothing(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        await source.focus("Want to go")

        assert await source.fetch_entities("Want to go", 0) == []

    @pytest.mark.asyncio
    async def test_fetch_requires_focus(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        await source.focus("Want to go")
        await source.return_to_overview()

        with pytest.raises(ObservationError):
            await source.fetch_entities("Want to go", None)

    @pytest.mark.asyncio
    async def test_failed_list(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        await source.focus("Broken")

        with pytest.raises(ObservationError, match="timed out"):
            await source.fetch_entities("Broken", None)

    @pytest.mark.asyncio
    async def test_unknown_list_cannot_be_focused(self, snapshot_path):
        source = JsonSnapshotSource(snapshot_path)
        assert not await source.focus("Nope")

    @pytest.mark.asyncio
    async def test_unreadable_snapshot(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ObservationError):
            await JsonSnapshotSource(path).list_collection_names()

    @pytest.mark.asyncio
    async def test_pace_without_delay_returns_immediately(self, snapshot_path):
        await JsonSnapshotSource(snapshot_path).pace(0.0, 0.0)
