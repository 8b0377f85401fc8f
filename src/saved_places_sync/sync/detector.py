"""
Three-way change detection: base (last known remote) vs local vs remote.

The two primitives are pure. ``detect_changes_for_list`` reads the Base and
Local stores but never writes to them; every decision it returns carries the
identifiers and raw values the merger needs.
"""

from saved_places_sync.fingerprint import notes_fingerprint
from saved_places_sync.models import ADD_LOCALLY
from saved_places_sync.models import ALREADY_SYNCED
from saved_places_sync.models import CHANGE_CONFLICT
from saved_places_sync.models import CHANGE_LOCAL
from saved_places_sync.models import CHANGE_LOCAL_ADD
from saved_places_sync.models import CHANGE_LOCAL_REMOVE
from saved_places_sync.models import CHANGE_REMOTE
from saved_places_sync.models import CHANGE_REMOTE_ADD
from saved_places_sync.models import CHANGE_REMOTE_REMOVE
from saved_places_sync.models import CHANGE_SYNCHRONIZED
from saved_places_sync.models import EXISTS
from saved_places_sync.models import KEEP_LOCAL
from saved_places_sync.models import LOCAL_WINS
from saved_places_sync.models import NOT_EXISTS
from saved_places_sync.models import OP_REMOVE_FROM_LIST
from saved_places_sync.models import PUSH_ADD
from saved_places_sync.models import PUSH_REMOVE
from saved_places_sync.models import REMOVE_LOCALLY
from saved_places_sync.models import TAKE_REMOTE
from saved_places_sync.models import ClassificationError
from saved_places_sync.models import ListChanges
from saved_places_sync.models import MembershipDecision
from saved_places_sync.models import RemotePlace
from saved_places_sync.models import ScalarDecision
from saved_places_sync.sync.context import SyncRun


def detect_scalar_change(
    base_fingerprint: str | None,
    local_value: str | None,
    remote_value: str | None,
    *,
    place_id: int,
    remote_id: str,
    list_name: str | None = None,
    conflict_resolution: str = LOCAL_WINS,
) -> ScalarDecision | None:
    """Classify a notes value. Returns None when nothing changed."""
    local_fp = notes_fingerprint(local_value)
    remote_fp = notes_fingerprint(remote_value)

    if local_fp == remote_fp == base_fingerprint:
        return None

    if local_fp == remote_fp:
        change_type, resolution = CHANGE_SYNCHRONIZED, ALREADY_SYNCED
    elif remote_fp == base_fingerprint:
        change_type, resolution = CHANGE_LOCAL, KEEP_LOCAL
    elif local_fp == base_fingerprint:
        change_type, resolution = CHANGE_REMOTE, TAKE_REMOTE
    else:
        change_type, resolution = CHANGE_CONFLICT, conflict_resolution

    return ScalarDecision(
        change_type=change_type,
        resolution=resolution,
        place_id=place_id,
        remote_id=remote_id,
        local_value=local_value,
        remote_value=remote_value,
        base_fingerprint=base_fingerprint,
        local_fingerprint=local_fp,
        remote_fingerprint=remote_fp,
        list_name=list_name,
    )


# (existed_in_base, exists_local, exists_remote) → (change type, resolution).
# Remote-side removal while local still has it is always a plain
# remove_locally, and local removal while remote still has it a plain
# push_remove; membership conflicts are never emitted.
_MEMBERSHIP_TABLE = {
    (False, True, False): (CHANGE_LOCAL_ADD, PUSH_ADD),
    (True, False, True): (CHANGE_LOCAL_REMOVE, PUSH_REMOVE),
    (False, False, True): (CHANGE_REMOTE_ADD, ADD_LOCALLY),
    (True, True, False): (CHANGE_REMOTE_REMOVE, REMOVE_LOCALLY),
    (False, True, True): (CHANGE_SYNCHRONIZED, ALREADY_SYNCED),
    (True, False, False): (CHANGE_SYNCHRONIZED, ALREADY_SYNCED),
}


def detect_membership_change(
    existed_in_base: bool,
    exists_local: bool,
    exists_remote: bool,
    *,
    place_id: int | None,
    list_id: int,
    list_name: str,
    remote_id: str,
    remote_place: RemotePlace | None = None,
) -> MembershipDecision | None:
    """Classify a place↔list membership. Returns None when nothing changed."""
    classified = _MEMBERSHIP_TABLE.get((existed_in_base, exists_local, exists_remote))
    if classified is None:
        return None
    change_type, resolution = classified
    return MembershipDecision(
        change_type=change_type,
        resolution=resolution,
        place_id=place_id,
        list_id=list_id,
        list_name=list_name,
        remote_id=remote_id,
        existed_in_base=existed_in_base,
        exists_local=exists_local,
        exists_remote=exists_remote,
        remote_place=remote_place,
    )


def detect_changes_for_list(
    run: SyncRun, list_name: str, remote_places: list[RemotePlace]
) -> ListChanges:
    """Join the local and remote members of one list and classify every place seen in either."""
    db = run.db
    local_list = db.lists.find_by_name(list_name)
    if local_list is None:
        raise ClassificationError(f"List not found locally: {list_name}")
    list_id = local_list["id"]

    # Only a full observation can tell "removed remotely" from "not scraped".
    trust_absence = run.config.fetch_limit is None

    local_by_id = {row["remote_id"]: row for row in db.place_lists.find_places_in_list(list_id)}
    remote_by_id = {place.remote_id: place for place in remote_places}
    pending_removal = {
        row["remote_id"] for row in db.place_lists.find_pending_local_deletes(list_id)
    }

    changes = ListChanges()
    all_ids = list(remote_by_id) + [rid for rid in local_by_id if rid not in remote_by_id]
    all_ids += sorted(pending_removal - set(all_ids))

    for remote_id in all_ids:
        local_row = local_by_id.get(remote_id)
        remote_place = remote_by_id.get(remote_id)

        place_row = local_row
        if place_row is None:
            place_row = db.places.find_by_remote_id(remote_id)

        # Notes: only comparable when both sides know the place
        if (
            place_row is not None
            and remote_place is not None
            and not place_row["is_deleted"]
            and place_row["id"] not in run.scalar_checked
        ):
            run.scalar_checked.add(place_row["id"])
            notes_change = detect_scalar_change(
                db.base_state.get_place_notes(place_row["id"]),
                place_row["notes"],
                remote_place.notes,
                place_id=place_row["id"],
                remote_id=remote_id,
                list_name=list_name,
                conflict_resolution=run.config.conflict_strategy,
            )
            if notes_change:
                changes.scalar.append(notes_change)
                if notes_change.is_conflict:
                    changes.conflicts.append(notes_change)

        # Membership
        exists_local = local_row is not None
        exists_remote = remote_place is not None
        place_id = place_row["id"] if place_row is not None else None
        base_token = db.base_state.get_membership(place_id, list_id) if place_id else None
        existed_in_base = base_token == EXISTS

        if not exists_remote and existed_in_base and not trust_absence:
            run.logger.debug(f"{list_name}: {remote_id} not seen in partial snapshot, skipped")
            continue
        if remote_id in pending_removal and not existed_in_base:
            if db.pending_ops.has_open(OP_REMOVE_FROM_LIST, place_id, list_id):
                # Local removal not yet written back; base already says not_exists
                run.logger.debug(
                    f"{list_name}: {remote_id} pending remote removal "
                    f"(base={base_token or NOT_EXISTS}), skipped"
                )
                continue
            if not exists_remote:
                if trust_absence:
                    # Both sides dropped it; the flagged row can go
                    changes.membership.append(
                        MembershipDecision(
                            change_type=CHANGE_SYNCHRONIZED,
                            resolution=ALREADY_SYNCED,
                            place_id=place_id,
                            list_id=list_id,
                            list_name=list_name,
                            remote_id=remote_id,
                            existed_in_base=False,
                            exists_local=False,
                            exists_remote=False,
                        )
                    )
                continue

        membership_change = detect_membership_change(
            existed_in_base,
            exists_local,
            exists_remote,
            place_id=place_id,
            list_id=list_id,
            list_name=list_name,
            remote_id=remote_id,
            remote_place=remote_place,
        )
        if membership_change:
            changes.membership.append(membership_change)
            if membership_change.is_conflict:
                changes.conflicts.append(membership_change)

    return changes
