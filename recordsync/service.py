"""
SyncService: wires the sync core together.

Components, leaves first:
- LocalStore and CursorStore (SQLite files under storage.data_dir)
- RemoteFetchClient (CloudKit or in-memory)
- ZoneDirectory, MergeEngine, SyncOrchestrator
- PendingShareReference, ShareAcceptanceEngine

The HTTP surface and main() only talk to this class.

Invariants:
    - Stores are initialized and the remote is connected before any pass
    - stop() cancels the periodic loop and waits for an in-flight pass
    - The pending-share box exists from construction, so delivery hooks
      can write to it before start()

How to change safely:
    - New background loops go into self._tasks so stop() cancels them
    - Keep construction free of I/O; do I/O in start()
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from .config import AppConfig
from .events import SyncEvents
from .remote.base import RemoteFetchClient, create_remote_client
from .share.acceptance import ShareAcceptanceEngine
from .share.pending import PendingShareReference
from .store.cursor_store import SYNC_WHEN_NO_CLOUD_RECORDS, CursorStore
from .store.local_store import LocalStore
from .sync.merge import MergeEngine
from .sync.orchestrator import DEFAULT_SYNC_WHEN_NO_CLOUD_RECORDS, SyncOrchestrator
from .sync.zones import ZoneDirectory

logger = logging.getLogger(__name__)


class SyncService:
    """Owns the lifecycle of all sync components.

    Attributes:
        config: Service configuration
        events: Signals raised by the core
        store: Local record store
        cursors: Cursor and preference store
        remote: Remote fetch client
        orchestrator: Sync pass runner
        shares: Share acceptance engine

    Example:
        >>> service = SyncService(AppConfig.from_env())
        >>> await service.start()
        >>> report = await service.orchestrator.sync_all()
        >>> await service.stop()
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        remote: Optional[RemoteFetchClient] = None,
    ) -> None:
        """Build all components without doing any I/O.

        Args:
            config: Service configuration (loaded from env if not provided)
            remote: Remote client override, mainly for tests
        """
        self.config = config or AppConfig.from_env()
        self.events = SyncEvents()

        data_dir = Path(self.config.storage.data_dir)
        self.store = LocalStore(
            str(data_dir / self.config.storage.records_db),
            wal_mode=self.config.storage.wal_mode,
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )
        self.cursors = CursorStore(
            str(data_dir / self.config.storage.cursors_db),
            busy_timeout_ms=self.config.storage.busy_timeout_ms,
        )
        self.remote = remote or create_remote_client(self.config)

        self.directory = ZoneDirectory(self.remote, self.config.sync)
        self.merge = MergeEngine(self.store, sync_log_limit=self.config.sync.sync_log_limit)
        self.orchestrator = SyncOrchestrator(
            self.remote, self.cursors, self.directory, self.merge, self.events
        )
        self.pending = PendingShareReference()
        self.shares = ShareAcceptanceEngine(
            self.remote, self.orchestrator, self.pending, self.events
        )

        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Initialize stores, connect the remote, start background work."""
        if self._running:
            logger.warning("Sync service already running")
            return

        logger.info("Starting sync service")
        self.config.log_config()

        try:
            await self.store.initialize()
            await self.remote.connect()
            logger.info("Remote client connected")

            self._running = True

            if self.config.sync.sync_on_startup:
                self.orchestrator.trigger_sync()

            if self.config.sync.sync_interval_s > 0:
                self._tasks.append(
                    asyncio.create_task(self._periodic_sync(), name="recordsync-periodic")
                )

            await self.shares.surface_ready()
            logger.info("Sync service started")

        except Exception as e:
            logger.error(f"Sync service startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop background work and close the remote client."""
        logger.info("Stopping sync service")
        self.shares.surface_suspended()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        task = self.orchestrator.current_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

        await self.remote.close()
        self._running = False
        logger.info("Sync service stopped")

    async def _periodic_sync(self) -> None:
        interval = self.config.sync.sync_interval_s
        while True:
            await asyncio.sleep(interval)
            logger.debug("Periodic sync trigger")
            self.orchestrator.trigger_sync()

    async def get_sync_when_no_cloud_records(self) -> bool:
        return bool(
            await self.cursors.get_preference(
                SYNC_WHEN_NO_CLOUD_RECORDS, DEFAULT_SYNC_WHEN_NO_CLOUD_RECORDS
            )
        )

    async def set_sync_when_no_cloud_records(self, enabled: bool) -> None:
        await self.cursors.set_preference(SYNC_WHEN_NO_CLOUD_RECORDS, bool(enabled))

    async def status(self) -> dict[str, Any]:
        """Snapshot of sync state for the HTTP surface."""
        return {
            "running": self._running,
            "orchestrator": self.orchestrator.stats(),
            "share_state": self.shares.state.value,
            "pending_share": self.pending.has_pending,
            "cursors": await self.cursors.zones(),
            "sync_when_no_cloud_records": await self.get_sync_when_no_cloud_records(),
        }
