"""
Write-back of queued operations to the remote service.

The sync run itself never dispatches; it only leaves operations in the queue.
Anything that can perform one remote mutation can be plugged in here.
"""

import logging
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from dataclasses import field

from saved_places_sync.models import OP_COMPLETED
from saved_places_sync.models import OP_FAILED
from saved_places_sync.models import OP_REMOVE_FROM_LIST
from saved_places_sync.models import PlacesSyncError
from saved_places_sync.models import RetryExhausted
from saved_places_sync.store import StateDatabase

logger = logging.getLogger(__name__)


class OperationDispatcher(ABC):
    """Performs one queued operation against the remote service."""

    @abstractmethod
    async def dispatch(self, operation: dict) -> None:
        """Apply ``operation``; raise PlacesSyncError (or OSError) on failure."""


class UnsupportedDispatcher(OperationDispatcher):
    """Placeholder used until a remote writer exists: every attempt fails."""

    async def dispatch(self, operation: dict) -> None:
        raise PlacesSyncError(f"No remote writer available for {operation['operation_type']}")


@dataclass
class DispatchResult:
    completed: int = 0
    retried: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)


def _forget_removed_membership(db: StateDatabase, op: dict):
    """Drop the locally flagged association once its removal reached the remote side."""
    payload = op["payload"]
    if op["operation_type"] != OP_REMOVE_FROM_LIST or "place_id" not in payload:
        return
    db.place_lists.remove_pending(payload["place_id"], payload["list_id"])


async def process_ready_operations(
    db: StateDatabase, dispatcher: OperationDispatcher, now: int | None = None
) -> DispatchResult:
    """Claim each ready operation, dispatch it, and record the outcome.

    Each operation is committed on its own. Operations that reach their retry
    limit produce a RetryExhausted record in ``errors``.
    """
    result = DispatchResult()
    for op in db.pending_ops.list_ready(now=now):
        if not db.pending_ops.mark_in_progress(op["id"], now=now):
            continue
        db.commit()

        try:
            await dispatcher.dispatch(op)
        except (PlacesSyncError, OSError) as e:
            status = db.pending_ops.schedule_retry(op["id"], str(e), now=now)
            db.commit()
            if status == OP_FAILED:
                result.failed += 1
                exhausted = RetryExhausted(
                    f"Operation {op['id']} ({op['operation_type']}) gave up: {e}"
                )
                result.errors.append(
                    {
                        "operation_id": op["id"],
                        "type": type(exhausted).__name__,
                        "error": str(exhausted),
                    }
                )
                logger.error(str(exhausted))
            else:
                result.retried += 1
                logger.warning(f"Operation {op['id']} failed, will retry: {e}")
            continue

        db.pending_ops.mark_completed(op["id"], now=now)
        _forget_removed_membership(db, op)
        db.commit()
        result.completed += 1
        logger.debug(f"Operation {op['id']} ({op['operation_type']}) {OP_COMPLETED}")

    return result
