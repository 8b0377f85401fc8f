"""
Run-scoped context threaded through detector, merger and orchestrator.
"""

import logging
import time
from dataclasses import dataclass
from dataclasses import field

from saved_places_sync.models import SyncConfig
from saved_places_sync.store import StateDatabase

# Orchestrator phases
PULLING = "PULLING"
PULL_VALIDATION = "PULL_VALIDATION"
DETECTING = "DETECTING"
MERGING = "MERGING"
PUSHING = "PUSHING"
DONE = "DONE"
ABORTED = "ABORTED"


@dataclass
class SyncRun:
    """Everything one sync run owns. Never shared between runs."""

    config: SyncConfig
    db: StateDatabase
    logger: logging.Logger
    now: int = field(default_factory=lambda: int(time.time()))
    log_id: int | None = None
    phase: str = PULLING
    errors: list[dict] = field(default_factory=list)
    # Places whose notes were already classified in an earlier list of this run
    scalar_checked: set[int] = field(default_factory=set)

    @property
    def mode(self) -> str:
        return self.config.mode

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    def enter(self, phase: str) -> None:
        self.logger.info(f"Entering {phase}")
        self.phase = phase

    def record_error(self, phase: str, error: Exception, list_name: str | None = None) -> dict:
        """Append a structured error record for the sync log."""
        record = {
            "phase": phase,
            "list": list_name,
            "type": type(error).__name__,
            "error": str(error),
        }
        self.errors.append(record)
        return record
