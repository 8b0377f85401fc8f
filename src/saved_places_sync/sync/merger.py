"""
Applies classified decisions to the Local store, the Base store and the queue.
"""

import sqlite3

from saved_places_sync.fingerprint import notes_fingerprint
from saved_places_sync.models import ADD_LOCALLY
from saved_places_sync.models import ALREADY_SYNCED
from saved_places_sync.models import KEEP_LOCAL
from saved_places_sync.models import LOCAL_WINS
from saved_places_sync.models import OP_ADD_TO_LIST
from saved_places_sync.models import OP_REMOVE_FROM_LIST
from saved_places_sync.models import PUSH_ADD
from saved_places_sync.models import PUSH_REMOVE
from saved_places_sync.models import REMOTE_WINS
from saved_places_sync.models import REMOVE_LOCALLY
from saved_places_sync.models import TAKE_REMOTE
from saved_places_sync.models import MembershipDecision
from saved_places_sync.models import MergeApplyError
from saved_places_sync.models import MergeResult
from saved_places_sync.models import PlacesSyncError
from saved_places_sync.models import ScalarDecision
from saved_places_sync.sync.context import MERGING
from saved_places_sync.sync.context import SyncRun


class Merger:
    """Converges Local and Base state for each decision.

    Each decision leaves Base at the value both sides are expected to hold
    afterwards. Membership pushes update Base optimistically, before the
    queued write-back has run.
    """

    def __init__(self, run: SyncRun):
        self.run = run
        self.db = run.db
        self.logger = run.logger

    # ------------------------------------------------------------------ #
    # Notes                                                                #
    # ------------------------------------------------------------------ #

    def apply_scalar_decision(self, decision: ScalarDecision):
        place = self.db.places.find_by_id(decision.place_id)
        if place is None:
            raise MergeApplyError(f"Place {decision.place_id} not found")
        now = self.run.now

        if decision.resolution in (KEEP_LOCAL, ALREADY_SYNCED, LOCAL_WINS):
            # Local already holds the converged value. Notes edits are not
            # queued for write-back, even when local wins a conflict.
            self.db.base_state.save_place_notes(
                decision.place_id, decision.local_fingerprint, now=now
            )
            if decision.is_conflict:
                self.logger.warning(
                    f"CONFLICT: kept local notes for {place['name']} "
                    f"(local={decision.local_value!r}, remote={decision.remote_value!r})"
                )
            else:
                self.logger.debug(f"Notes {decision.resolution}: {place['name']}")
        elif decision.resolution in (TAKE_REMOTE, REMOTE_WINS):
            self.db.places.update_notes(decision.place_id, decision.remote_value, now=now)
            self.db.base_state.save_place_notes(
                decision.place_id, decision.remote_fingerprint, now=now
            )
            if decision.is_conflict:
                self.logger.warning(f"CONFLICT: took remote notes for {place['name']}")
            else:
                self.logger.debug(f"Updated notes from remote: {place['name']}")
        else:
            raise MergeApplyError(f"Unknown resolution: {decision.resolution}")

    # ------------------------------------------------------------------ #
    # Membership                                                           #
    # ------------------------------------------------------------------ #

    def _payload(self, decision: MembershipDecision, place_id: int) -> dict:
        return {
            "place_id": place_id,
            "list_id": decision.list_id,
            "remote_id": decision.remote_id,
            "list_name": decision.list_name,
        }

    def _ensure_place(self, decision: MembershipDecision) -> int:
        """Local id of the decision's place, importing it from the remote snapshot if new."""
        now = self.run.now
        if decision.place_id is not None:
            # A local delete is undone only after all its list removals were written back
            revive = not self.db.place_lists.has_memberships(decision.place_id)
            self.db.places.restore(decision.place_id, clear_local_delete=revive)
            return decision.place_id

        remote = decision.remote_place
        if remote is None:
            raise MergeApplyError(f"No local place and no remote data for {decision.remote_id}")
        place_id = self.db.places.upsert(
            remote.remote_id, remote.name, url=remote.url, notes=remote.notes, now=now
        )
        self.db.base_state.save_place_notes(place_id, notes_fingerprint(remote.notes), now=now)
        self.logger.debug(f"Imported new place {remote.name} ({remote.remote_id})")
        return place_id

    def _require_place_id(self, decision: MembershipDecision) -> int:
        if decision.place_id is None:
            raise MergeApplyError(
                f"{decision.resolution} needs a local place for {decision.remote_id}"
            )
        return decision.place_id

    def _queue_push(self, decision: MembershipDecision, place_id: int, add: bool):
        op_type = OP_ADD_TO_LIST if add else OP_REMOVE_FROM_LIST
        self.db.pending_ops.enqueue(op_type, self._payload(decision, place_id), now=self.run.now)
        self.db.base_state.save_membership(place_id, decision.list_id, add, now=self.run.now)
        self.logger.debug(
            f"Queued {op_type}: {decision.remote_id} {'to' if add else 'from'} {decision.list_name}"
        )

    def apply_membership_decision(self, decision: MembershipDecision):
        now = self.run.now
        resolution = decision.resolution

        if resolution == PUSH_ADD:
            self._queue_push(decision, self._require_place_id(decision), add=True)
        elif resolution == PUSH_REMOVE:
            self._queue_push(decision, self._require_place_id(decision), add=False)
        elif resolution == ADD_LOCALLY:
            place_id = self._ensure_place(decision)
            self.db.place_lists.add(place_id, decision.list_id, now=now)
            self.db.base_state.save_membership(place_id, decision.list_id, True, now=now)
            self.logger.debug(f"Added {decision.remote_id} to {decision.list_name} locally")
        elif resolution == REMOVE_LOCALLY:
            place_id = self._require_place_id(decision)
            self.db.place_lists.remove(place_id, decision.list_id)
            self.db.base_state.save_membership(place_id, decision.list_id, False, now=now)
            self.logger.debug(f"Removed {decision.remote_id} from {decision.list_name} locally")
        elif resolution == ALREADY_SYNCED:
            place_id = self._require_place_id(decision)
            if not decision.exists_local and not decision.exists_remote:
                # Drops a local-removal flag once the remote side agrees
                self.db.place_lists.remove(place_id, decision.list_id)
            self.db.base_state.save_membership(
                place_id, decision.list_id, decision.exists_local, now=now
            )
        elif resolution == LOCAL_WINS:
            # Keep local truth and queue it again for the remote side
            self.logger.warning(
                f"CONFLICT: keeping local membership of {decision.remote_id} in "
                f"{decision.list_name} (local={decision.exists_local})"
            )
            self._queue_push(decision, self._require_place_id(decision), decision.exists_local)
        elif resolution == REMOTE_WINS:
            self.logger.warning(
                f"CONFLICT: taking remote membership of {decision.remote_id} in "
                f"{decision.list_name} (remote={decision.exists_remote})"
            )
            if decision.exists_remote:
                place_id = self._ensure_place(decision)
                self.db.place_lists.add(place_id, decision.list_id, now=now)
            else:
                place_id = self._require_place_id(decision)
                self.db.place_lists.remove(place_id, decision.list_id)
            self.db.base_state.save_membership(
                place_id, decision.list_id, decision.exists_remote, now=now
            )
        else:
            raise MergeApplyError(f"Unknown resolution: {resolution}")

    # ------------------------------------------------------------------ #
    # Batch                                                                #
    # ------------------------------------------------------------------ #

    def apply(self, decision: ScalarDecision | MembershipDecision):
        if isinstance(decision, ScalarDecision):
            self.apply_scalar_decision(decision)
        else:
            self.apply_membership_decision(decision)

    def apply_all(self, decisions: list) -> MergeResult:
        """Apply each decision in its own transaction; failures are skipped, not fatal."""
        result = MergeResult()
        for decision in decisions:
            try:
                self.apply(decision)
                self.db.commit()
            except (sqlite3.Error, PlacesSyncError) as e:
                self.db.rollback()
                result.skipped += 1
                error = e if isinstance(e, MergeApplyError) else MergeApplyError(str(e))
                list_name = decision.list_name
                self.run.record_error(
                    MERGING, MergeApplyError(f"{decision.remote_id}: {error}"), list_name
                )
                self.logger.error(
                    f"Failed to apply {decision.resolution} for {decision.remote_id}: {e}"
                )
                continue
            result.applied += 1
            if decision.is_conflict:
                result.conflicts += 1

        self.logger.info(
            f"Applied {result.applied} change(s) ({result.conflicts} conflict(s) resolved"
            f", {result.skipped} skipped)"
        )
        return result
