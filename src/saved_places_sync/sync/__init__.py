"""
PlacesSynchronizer — thin entry point that wires config, database and source.
"""

import asyncio
import logging

from saved_places_sync.models import PlacesSyncError
from saved_places_sync.models import SyncConfig
from saved_places_sync.models import SyncReport
from saved_places_sync.source import JsonSnapshotSource
from saved_places_sync.source import SnapshotSource
from saved_places_sync.store import StateDatabase
from saved_places_sync.sync.orchestrator import SyncOrchestrator


class PlacesSynchronizer:
    """Main synchronization engine."""

    def __init__(self, config: SyncConfig, source: SnapshotSource | None = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        if source is None:
            if config.snapshot_path is None:
                raise PlacesSyncError("No snapshot source configured")
            source = JsonSnapshotSource(config.snapshot_path)
        self.source = source

    async def run_async(self, now: int | None = None) -> SyncReport:
        with StateDatabase(
            self.config.state_db_path,
            max_retries=self.config.max_retries,
            retry_backoff_seconds=self.config.retry_backoff_seconds,
        ) as state_db:
            orchestrator = SyncOrchestrator(
                self.source, state_db, self.config, logger=self.logger, now=now
            )
            return await orchestrator.run()

    def run(self) -> SyncReport:
        """Execute the synchronization process."""
        return asyncio.run(self.run_async())
