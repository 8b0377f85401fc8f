"""
Pure data models — no sqlite imports.
"""

from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/saved-places-sync.db"
DEFAULT_CONFIG = Path.home() / ".config/saved-places-sync.conf"

SYNC_QUICK = "quick"
SYNC_DEEP = "deep"
SYNC_MODES = (SYNC_QUICK, SYNC_DEEP)

# Change types emitted by the detector
CHANGE_LOCAL = "local_change"
CHANGE_REMOTE = "remote_change"
CHANGE_CONFLICT = "conflict"
CHANGE_SYNCHRONIZED = "synchronized"
CHANGE_LOCAL_ADD = "local_add"
CHANGE_LOCAL_REMOVE = "local_remove"
CHANGE_REMOTE_ADD = "remote_add"
CHANGE_REMOTE_REMOVE = "remote_remove"

# Resolutions understood by the merger
KEEP_LOCAL = "keep_local"
TAKE_REMOTE = "take_remote"
LOCAL_WINS = "local_wins"
REMOTE_WINS = "remote_wins"
ALREADY_SYNCED = "already_synced"
PUSH_ADD = "push_add"
PUSH_REMOVE = "push_remove"
ADD_LOCALLY = "add_locally"
REMOVE_LOCALLY = "remove_locally"

CONFLICT_STRATEGIES = (LOCAL_WINS, REMOTE_WINS)

# Base state entity types and membership tokens
ENTITY_PLACE_NOTES = "place_notes"
ENTITY_PLACE_LIST = "place_list_association"
EXISTS = "exists"
NOT_EXISTS = "not_exists"

# Pending operation types
OP_ADD_TO_LIST = "add_to_list"
OP_REMOVE_FROM_LIST = "remove_from_list"
OP_UPDATE_NOTES = "update_notes"
OP_CREATE_LIST = "create_list"
OP_DELETE_LIST = "delete_list"
OPERATION_TYPES = (
    OP_ADD_TO_LIST,
    OP_REMOVE_FROM_LIST,
    OP_UPDATE_NOTES,
    OP_CREATE_LIST,
    OP_DELETE_LIST,
)

# Pending operation statuses
OP_PENDING = "pending"
OP_IN_PROGRESS = "in_progress"
OP_COMPLETED = "completed"
OP_FAILED = "failed"

# Sync log statuses
STATUS_IN_PROGRESS = "in_progress"
STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"


class PlacesSyncError(Exception):
    """Base exception for places sync errors."""

    pass


class ObservationError(PlacesSyncError):
    """A list could not be snapshotted from the remote side."""

    pass


class ValidationAbort(PlacesSyncError):
    """The remote snapshot is incomplete; the whole run is aborted.

    ``report`` holds the finished :class:`SyncReport` so callers can still
    show what was pulled before the gate closed.
    """

    def __init__(self, message: str, report: "SyncReport | None" = None):
        super().__init__(message)
        self.report = report


class ClassificationError(PlacesSyncError):
    """A remote list has no corresponding local list."""

    pass


class MergeApplyError(PlacesSyncError):
    """A single decision could not be applied."""

    pass


class RetryExhausted(PlacesSyncError):
    """A pending operation reached its retry limit and is now terminal."""

    pass


@dataclass
class SyncConfig:
    """Configuration for a sync run."""

    state_db_path: Path
    snapshot_path: Path | None = None
    mode: str = SYNC_QUICK  # 'quick' or 'deep'
    dry_run: bool = False
    verbose: bool = False
    quick_limit: int = 50
    quick_delay: tuple[float, float] = (1.0, 2.0)
    deep_delay: tuple[float, float] = (2.0, 4.0)
    conflict_strategy: str = LOCAL_WINS
    max_retries: int = 3
    retry_backoff_seconds: int = 300
    stale_after_seconds: int = 3600

    @property
    def fetch_limit(self) -> int | None:
        """Per-list pull limit: bounded for quick, unbounded (None) for deep."""
        return self.quick_limit if self.mode == SYNC_QUICK else None

    @property
    def delay_range(self) -> tuple[float, float]:
        return self.quick_delay if self.mode == SYNC_QUICK else self.deep_delay


@dataclass(frozen=True)
class RemotePlace:
    """One place as observed in a remote list snapshot."""

    remote_id: str
    url: str | None
    name: str
    notes: str | None = None


@dataclass
class ScalarDecision:
    """Classified change of a place's notes."""

    change_type: str
    resolution: str
    place_id: int
    remote_id: str
    local_value: str | None
    remote_value: str | None
    base_fingerprint: str | None
    local_fingerprint: str | None
    remote_fingerprint: str | None
    list_name: str | None = None

    @property
    def is_conflict(self) -> bool:
        return self.change_type == CHANGE_CONFLICT


@dataclass
class MembershipDecision:
    """Classified change of a place↔list association.

    ``place_id`` is None when the place has never been stored locally; in that
    case ``remote_place`` carries everything needed to import it.
    """

    change_type: str
    resolution: str
    place_id: int | None
    list_id: int
    list_name: str
    remote_id: str
    existed_in_base: bool
    exists_local: bool
    exists_remote: bool
    remote_place: RemotePlace | None = None

    @property
    def is_conflict(self) -> bool:
        return self.change_type == CHANGE_CONFLICT


@dataclass
class ListChanges:
    """Decisions detected for one or more lists."""

    scalar: list[ScalarDecision] = field(default_factory=list)
    membership: list[MembershipDecision] = field(default_factory=list)
    conflicts: list = field(default_factory=list)

    def extend(self, other: "ListChanges") -> None:
        self.scalar.extend(other.scalar)
        self.membership.extend(other.membership)
        self.conflicts.extend(other.conflicts)

    def all(self) -> list:
        return [*self.scalar, *self.membership]

    def __len__(self) -> int:
        return len(self.scalar) + len(self.membership)


@dataclass
class MergeResult:
    """Outcome of applying a batch of decisions."""

    applied: int = 0
    conflicts: int = 0
    skipped: int = 0


@dataclass
class SyncReport:
    """Aggregated outcome of one sync run."""

    mode: str
    dry_run: bool = False
    log_id: int | None = None
    phase: str = ""
    status: str = STATUS_IN_PROGRESS
    lists_pulled: int = 0
    places_pulled: int = 0
    scalar_changes: int = 0
    membership_changes: int = 0
    conflicts_detected: int = 0
    applied: int = 0
    skipped: int = 0
    operations_ready: int = 0
    operations_pushed: int = 0
    errors: list[dict] = field(default_factory=list)
    examples: list[str] = field(default_factory=list)
