"""
Sync run state machine.

    PULLING → PULL_VALIDATION → DETECTING → MERGING → PUSHING → DONE
                    │
                    └──→ ABORTED

Lists are pulled strictly one after another. Nothing is written to the Local
or Base stores until every list has been observed successfully.
"""

import logging
import time

from saved_places_sync.models import STATUS_FAILED
from saved_places_sync.models import STATUS_PARTIAL
from saved_places_sync.models import STATUS_SUCCESS
from saved_places_sync.models import ClassificationError
from saved_places_sync.models import ListChanges
from saved_places_sync.models import MembershipDecision
from saved_places_sync.models import ObservationError
from saved_places_sync.models import RemotePlace
from saved_places_sync.models import SyncConfig
from saved_places_sync.models import SyncReport
from saved_places_sync.models import ValidationAbort
from saved_places_sync.source import SnapshotSource
from saved_places_sync.store import StateDatabase
from saved_places_sync.sync.context import ABORTED
from saved_places_sync.sync.context import DETECTING
from saved_places_sync.sync.context import DONE
from saved_places_sync.sync.context import MERGING
from saved_places_sync.sync.context import PULL_VALIDATION
from saved_places_sync.sync.context import PULLING
from saved_places_sync.sync.context import PUSHING
from saved_places_sync.sync.context import SyncRun
from saved_places_sync.sync.detector import detect_changes_for_list
from saved_places_sync.sync.merger import Merger

# Pseudo list name for failures that happen before any list is known
OVERVIEW = "<overview>"

# Dry-run previews show at most this many decisions
MAX_EXAMPLES = 10


def _as_observation_error(error: Exception) -> ObservationError:
    if isinstance(error, ObservationError):
        return error
    return ObservationError(f"{type(error).__name__}: {error}")


def describe_decision(decision) -> str:
    """One-line human description of a decision, used in dry-run previews."""
    if isinstance(decision, MembershipDecision):
        return (
            f"[{decision.resolution}] {decision.remote_id} in {decision.list_name} "
            f"(base={decision.existed_in_base}, local={decision.exists_local}, "
            f"remote={decision.exists_remote})"
        )
    return f"[{decision.resolution}] notes of {decision.remote_id} ({decision.change_type})"


class SyncOrchestrator:
    """Drives one sync run from pull to the terminal sync log entry."""

    def __init__(
        self,
        source: SnapshotSource,
        db: StateDatabase,
        config: SyncConfig,
        logger: logging.Logger | None = None,
        now: int | None = None,
    ):
        self.source = source
        self.db = db
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.now = now

    async def run(self) -> SyncReport:
        """Execute one run.

        Per-list and per-decision failures are recorded in the report and the
        sync log. Only ValidationAbort (and unexpected errors) escape, after
        the log entry has been closed as failed.
        """
        run = SyncRun(
            config=self.config,
            db=self.db,
            logger=self.logger,
            now=int(time.time()) if self.now is None else self.now,
        )
        report = SyncReport(mode=self.config.mode, dry_run=self.config.dry_run)

        if run.dry_run:
            self.logger.info(f"[DRY RUN] Starting {run.mode} sync (no changes will be written)")
        else:
            run.log_id = self.db.sync_log.start(run.mode, now=run.now)
            self.db.commit()
            report.log_id = run.log_id
            self.logger.info(f"Starting {run.mode} sync (log #{run.log_id})")

        try:
            snapshots = await self._pull(run, report)
            self._validate(run, report, snapshots)
            changes = self._detect(run, report, snapshots)
            self._merge(run, report, changes)
            self._push(run, report)
        except ValidationAbort as e:
            run.enter(ABORTED)
            report.status = STATUS_FAILED
            self._finish(run, report)
            e.report = report
            raise
        except Exception as e:
            self.db.rollback()
            run.record_error("sync", e)
            self.logger.error(f"Sync failed during {run.phase}: {e}")
            report.status = STATUS_FAILED
            self._finish(run, report)
            raise

        run.enter(DONE)
        report.status = STATUS_PARTIAL if run.errors or report.skipped else STATUS_SUCCESS
        self._finish(run, report)
        return report

    # ------------------------------------------------------------------ #
    # Phases                                                               #
    # ------------------------------------------------------------------ #

    async def _pull(self, run: SyncRun, report: SyncReport) -> dict[str, list[RemotePlace]]:
        run.enter(PULLING)
        try:
            list_names = await self.source.list_collection_names()
        except Exception as e:
            run.record_error(PULLING, _as_observation_error(e), OVERVIEW)
            self.logger.error(f"Could not read the list overview: {e}")
            return {}

        self.logger.info(f"Pulling {len(list_names)} list(s) ({run.mode} mode)")
        snapshots: dict[str, list[RemotePlace]] = {}
        min_delay, max_delay = self.config.delay_range

        for index, list_name in enumerate(list_names):
            if index:
                await self.source.pace(min_delay, max_delay)
            try:
                if not await self.source.focus(list_name):
                    raise ObservationError(f"Could not open list: {list_name}")
                places = await self.source.fetch_entities(list_name, self.config.fetch_limit)
            except Exception as e:
                # Any collaborator failure is a failed observation of this list only
                run.record_error(PULLING, _as_observation_error(e), list_name)
                self.logger.warning(f"Failed to pull {list_name}: {e}")
                continue
            finally:
                await self.source.return_to_overview()

            snapshots[list_name] = places
            report.lists_pulled += 1
            report.places_pulled += len(places)
            self.logger.debug(f"Pulled {len(places)} place(s) from {list_name}")

        return snapshots

    def _validate(self, run: SyncRun, report: SyncReport, snapshots: dict):
        run.enter(PULL_VALIDATION)
        failed = [error["list"] for error in run.errors if error["phase"] == PULLING]
        if failed:
            total = len(snapshots) + len(failed)
            raise ValidationAbort(
                f"{len(failed)} of {total} list(s) could not be pulled "
                f"({', '.join(failed)}); aborting without changes"
            )
        self.logger.info(
            f"Pulled {report.places_pulled} place(s) from {report.lists_pulled} list(s)"
        )

    def _detect(self, run: SyncRun, report: SyncReport, snapshots: dict) -> ListChanges:
        run.enter(DETECTING)
        changes = ListChanges()
        for list_name, places in snapshots.items():
            checked = set(run.scalar_checked)
            try:
                list_changes = detect_changes_for_list(run, list_name, places)
            except Exception as e:
                # Notes of this list's places stay eligible in later lists
                run.scalar_checked = checked
                error = e
                if not isinstance(error, ClassificationError):
                    error = ClassificationError(f"{type(e).__name__}: {e}")
                run.record_error(DETECTING, error, list_name)
                self.logger.warning(f"Skipping {list_name}: {e}")
                continue
            if list_changes:
                self.logger.debug(f"{list_name}: {len(list_changes)} change(s)")
            changes.extend(list_changes)

        report.scalar_changes = len(changes.scalar)
        report.membership_changes = len(changes.membership)
        report.conflicts_detected = len(changes.conflicts)
        self.logger.info(
            f"Detected {len(changes.scalar)} notes change(s), "
            f"{len(changes.membership)} membership change(s), "
            f"{len(changes.conflicts)} conflict(s)"
        )
        return changes

    def _merge(self, run: SyncRun, report: SyncReport, changes: ListChanges):
        run.enter(MERGING)
        decisions = changes.all()

        if run.dry_run:
            report.examples = [describe_decision(d) for d in decisions[:MAX_EXAMPLES]]
            self.logger.info(f"[DRY RUN] Would apply {len(decisions)} change(s)")
            for example in report.examples:
                self.logger.debug(f"[DRY RUN] {example}")
            return

        result = Merger(run).apply_all(decisions)
        report.applied = result.applied
        report.skipped = result.skipped

    def _push(self, run: SyncRun, report: SyncReport):
        # Write-back is dispatched separately; this phase only reports the ready set
        run.enter(PUSHING)
        report.operations_ready = len(self.db.pending_ops.list_ready(now=run.now))
        report.operations_pushed = 0
        if report.operations_ready:
            self.logger.info(f"{report.operations_ready} operation(s) ready for write-back")

    def _finish(self, run: SyncRun, report: SyncReport):
        report.phase = run.phase
        report.errors = list(run.errors)
        if run.dry_run:
            return
        self.db.sync_log.complete(
            run.log_id,
            report.status,
            places_pulled=report.places_pulled,
            operations_pushed=report.operations_pushed,
            conflicts_detected=report.conflicts_detected,
            errors=run.errors,
            now=run.now,
        )
        self.db.commit()
        self.logger.info(f"Sync log #{run.log_id}: {report.status}")
