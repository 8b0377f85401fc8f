"""
End-to-end tests for SyncOrchestrator using an in-memory snapshot source and a
real state database.
"""

import pytest

from saved_places_sync.models import NOT_EXISTS
from saved_places_sync.models import OP_ADD_TO_LIST
from saved_places_sync.models import STATUS_FAILED
from saved_places_sync.models import STATUS_PARTIAL
from saved_places_sync.models import STATUS_SUCCESS
from saved_places_sync.models import SYNC_QUICK
from saved_places_sync.models import ObservationError
from saved_places_sync.models import ValidationAbort
from saved_places_sync.sync.context import ABORTED
from saved_places_sync.sync.context import DETECTING
from saved_places_sync.sync.context import DONE
from saved_places_sync.sync.context import PULLING
from saved_places_sync.sync.detector import detect_changes_for_list
from saved_places_sync.sync.orchestrator import SyncOrchestrator
from tests.conftest import NOW
from tests.conftest import add_local_place
from tests.conftest import remote
from tests.fake_source import FakeSnapshotSource


def _orchestrator(source, state_db, sync_config, sync_logger):
    return SyncOrchestrator(source, state_db, sync_config, logger=sync_logger, now=NOW)


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_deep_sync_merges_and_logs(self, state_db, sync_config, sync_logger):
        place_id, list_id = add_local_place(state_db, "r1", "Want to go", notes="original")
        add_local_place(state_db, "r2", "Want to go")
        add_local_place(state_db, "r3", "Favourites", synced=False)
        source = FakeSnapshotSource(
            {
                "Want to go": [remote("r1", "remote text")],
                "Favourites": [],
            }
        )

        report = await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert report.status == STATUS_SUCCESS
        assert report.phase == DONE
        assert report.lists_pulled == 2
        assert report.places_pulled == 1
        assert report.scalar_changes == 1
        assert report.membership_changes == 2  # r2 removed remotely, r3 added locally
        assert report.applied == 3
        assert report.operations_ready == 1
        assert report.operations_pushed == 0

        assert state_db.places.find_by_id(place_id)["notes"] == "remote text"
        r2 = state_db.places.find_by_remote_id("r2")
        assert state_db.base_state.get_membership(r2["id"], list_id) == NOT_EXISTS

        entry = state_db.sync_log.get(report.log_id)
        assert entry["status"] == STATUS_SUCCESS
        assert entry["sync_type"] == "deep"
        assert entry["places_pulled"] == 1
        assert entry["operations_pushed"] == 0
        assert entry["errors"] == []

    @pytest.mark.asyncio
    async def test_lists_pulled_in_order_with_pacing(self, state_db, sync_config, sync_logger):
        for name in ("A", "B", "C"):
            state_db.lists.upsert(name)
        state_db.commit()
        sync_config.deep_delay = (2.0, 4.0)
        source = FakeSnapshotSource({"A": [], "B": [], "C": []})

        await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert source.focused == ["A", "B", "C"]
        assert source.fetches == [("A", None), ("B", None), ("C", None)]
        # Only between lists
        assert source.paces == [(2.0, 4.0), (2.0, 4.0)]
        assert source.overview_returns == 3

    @pytest.mark.asyncio
    async def test_quick_sync_bounds_fetch_and_keeps_unseen(
        self, state_db, sync_config, sync_logger
    ):
        sync_config.mode = SYNC_QUICK
        sync_config.quick_limit = 1
        place_id, list_id = add_local_place(state_db, "r1", "Want to go")
        add_local_place(state_db, "r2", "Want to go")
        source = FakeSnapshotSource({"Want to go": [remote("r2"), remote("r1")]})

        report = await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert source.fetches == [("Want to go", 1)]
        assert report.places_pulled == 1
        assert report.membership_changes == 0
        assert state_db.place_lists.exists(place_id, list_id)
        assert state_db.sync_log.get(report.log_id)["sync_type"] == "quick"

    @pytest.mark.asyncio
    async def test_unknown_list_is_partial(self, state_db, sync_config, sync_logger):
        add_local_place(state_db, "r1", "Want to go")
        source = FakeSnapshotSource({"Want to go": [remote("r1")], "New list": [remote("r5")]})

        report = await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert report.status == STATUS_PARTIAL
        [error] = report.errors
        assert error["type"] == "ClassificationError"
        assert error["list"] == "New list"
        assert state_db.sync_log.get(report.log_id)["errors"] == report.errors

    @pytest.mark.asyncio
    async def test_detection_crash_skips_only_that_list(
        self, state_db, sync_config, sync_logger, monkeypatch
    ):
        add_local_place(state_db, "r1", "Want to go", synced=False)
        add_local_place(state_db, "r2", "Favourites", synced=False)

        def detect(run, list_name, places):
            if list_name == "Want to go":
                raise TypeError("unexpected row shape")
            return detect_changes_for_list(run, list_name, places)

        monkeypatch.setattr("saved_places_sync.sync.orchestrator.detect_changes_for_list", detect)
        source = FakeSnapshotSource({"Want to go": [], "Favourites": []})

        report = await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert report.status == STATUS_PARTIAL
        [error] = report.errors
        assert (error["phase"], error["list"], error["type"]) == (
            DETECTING,
            "Want to go",
            "ClassificationError",
        )
        # Favourites was still classified and merged
        assert [op["payload"]["remote_id"] for op in state_db.pending_ops.find_all()] == ["r2"]


class TestPullValidation:
    @pytest.mark.asyncio
    async def test_one_failed_list_aborts_everything(self, state_db, sync_config, sync_logger):
        """One of four lists fails to pull: no decision is applied and the log is failed."""
        for name in ("A", "B", "C", "D"):
            add_local_place(state_db, f"{name}-1", name, synced=False)
        source = FakeSnapshotSource(
            {
                "A": [],
                "B": [remote("new")],
                "C": ObservationError("timed out waiting for places"),
                "D": [],
            }
        )

        with pytest.raises(ValidationAbort) as excinfo:
            await _orchestrator(source, state_db, sync_config, sync_logger).run()

        report = excinfo.value.report
        assert report.status == STATUS_FAILED
        assert report.phase == ABORTED
        assert report.applied == 0
        assert report.scalar_changes == report.membership_changes == 0
        # Remaining lists were still pulled
        assert [name for name, _ in source.fetches] == ["A", "B", "C", "D"]

        entry = state_db.sync_log.get(report.log_id)
        assert entry["status"] == STATUS_FAILED
        assert [(e["phase"], e["list"]) for e in entry["errors"]] == [(PULLING, "C")]
        assert state_db.pending_ops.find_all() == []
        assert state_db.base_state.find_by_type("place_list_association") == []
        assert state_db.places.find_by_remote_id("new") is None

    @pytest.mark.asyncio
    async def test_unfocusable_list_aborts(self, state_db, sync_config, sync_logger):
        state_db.lists.upsert("A")
        state_db.commit()

        class MissingList(FakeSnapshotSource):
            async def focus(self, list_name):
                await super().focus(list_name)
                return False

        with pytest.raises(ValidationAbort):
            await _orchestrator(
                MissingList({"A": []}), state_db, sync_config, sync_logger
            ).run()

    @pytest.mark.asyncio
    async def test_overview_failure_aborts(self, state_db, sync_config, sync_logger):
        source = FakeSnapshotSource({"A": []})
        source.overview_error = ObservationError("page did not load")

        with pytest.raises(ValidationAbort) as excinfo:
            await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert excinfo.value.report.errors[0]["list"] == "<overview>"
        assert source.fetches == []

    @pytest.mark.asyncio
    async def test_unexpected_fetch_error_still_pulls_remaining_lists(
        self, state_db, sync_config, sync_logger
    ):
        """A collaborator crash on one list is a failed observation, not a crashed run."""
        for name in ("A", "B", "C"):
            state_db.lists.upsert(name)
        state_db.commit()
        source = FakeSnapshotSource({"A": [], "B": RuntimeError("selector timed out"), "C": []})

        with pytest.raises(ValidationAbort) as excinfo:
            await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert source.focused == ["A", "B", "C"]
        assert source.overview_returns == 3
        [error] = excinfo.value.report.errors
        assert (error["phase"], error["list"], error["type"]) == (
            PULLING,
            "B",
            "ObservationError",
        )
        assert "RuntimeError" in error["error"]
        assert state_db.sync_log.get(excinfo.value.report.log_id)["status"] == STATUS_FAILED

    @pytest.mark.asyncio
    async def test_unexpected_overview_error_aborts(self, state_db, sync_config, sync_logger):
        source = FakeSnapshotSource({"A": []})
        source.overview_error = KeyError("lists")

        with pytest.raises(ValidationAbort) as excinfo:
            await _orchestrator(source, state_db, sync_config, sync_logger).run()

        [error] = excinfo.value.report.errors
        assert error["type"] == "ObservationError"
        assert error["list"] == "<overview>"


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, state_db, sync_config, sync_logger):
        place_id, _ = add_local_place(state_db, "r1", "Want to go", notes="original")
        add_local_place(state_db, "r2", "Want to go", synced=False)
        sync_config.dry_run = True
        source = FakeSnapshotSource({"Want to go": [remote("r1", "remote text"), remote("r3")]})

        report = await _orchestrator(source, state_db, sync_config, sync_logger).run()

        assert report.dry_run
        assert report.log_id is None
        assert report.applied == 0
        assert len(report.examples) == report.scalar_changes + report.membership_changes
        assert state_db.sync_log.recent() == []
        assert state_db.pending_ops.find_all() == []
        assert state_db.places.find_by_id(place_id)["notes"] == "original"
        assert state_db.places.find_by_remote_id("r3") is None

    @pytest.mark.asyncio
    async def test_preview_matches_real_run(self, state_db, sync_config, sync_logger):
        """Dry run and real run compute the same decision set."""
        add_local_place(state_db, "r1", "Want to go", notes="mine", base_notes="original")
        add_local_place(state_db, "r2", "Want to go")
        add_local_place(state_db, "r4", "Want to go", synced=False)
        snapshot = {"Want to go": [remote("r1", "theirs"), remote("r3")]}

        sync_config.dry_run = True
        preview = await _orchestrator(
            FakeSnapshotSource(snapshot), state_db, sync_config, sync_logger
        ).run()
        sync_config.dry_run = False
        real = await _orchestrator(
            FakeSnapshotSource(snapshot), state_db, sync_config, sync_logger
        ).run()

        assert (preview.scalar_changes, preview.membership_changes, preview.conflicts_detected) == (
            real.scalar_changes,
            real.membership_changes,
            real.conflicts_detected,
        )
        assert real.applied == real.scalar_changes + real.membership_changes
        assert real.conflicts_detected == 1
        assert [op["operation_type"] for op in state_db.pending_ops.find_all()] == [OP_ADD_TO_LIST]


class TestSecondRun:
    @pytest.mark.asyncio
    async def test_repeated_sync_is_stable(self, state_db, sync_config, sync_logger):
        add_local_place(state_db, "r1", "Want to go", notes="original")
        state_db.lists.upsert("Favourites")
        state_db.commit()
        snapshot = {
            "Want to go": [remote("r1", "remote text"), remote("r2", "new place")],
            "Favourites": [remote("r2", "new place")],
        }

        first = await _orchestrator(
            FakeSnapshotSource(snapshot), state_db, sync_config, sync_logger
        ).run()
        second = await _orchestrator(
            FakeSnapshotSource(snapshot), state_db, sync_config, sync_logger
        ).run()

        assert first.applied > 0
        assert second.scalar_changes == second.membership_changes == 0
        assert second.status == STATUS_SUCCESS
