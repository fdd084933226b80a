"""
Sync orchestrator: runs pull passes over all zones.

Each zone goes through a small state machine per pass:

    IDLE -> FETCHING -> MERGING -> IDLE                 (token honored)
    IDLE -> FETCHING -> FULL_FETCHING -> MERGING -> IDLE (token expired)
    IDLE -> FETCHING -> IDLE                            (zone not found / error)

Passes are triggered externally (startup, periodic timer, HTTP surface).
There is no internal retry: a failed zone is retried on the next trigger.

Invariants:
    - A zone never has two passes in flight; a second request is suppressed
    - The cursor is advanced only after the merge it covers was saved
    - On token expiry the cursor is cleared before the full fetch starts
    - A missing zone is an empty zone, never an error
    - No exception escapes sync_all(), enumeration failures included

How to change safely:
    - Keep cursor writes after merge.apply() returns
    - Any new remote failure mode must map to a SyncError in the client
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import SyncError, TokenExpiredError, TransportFailure, ZoneNotFoundError
from ..events import SyncEvents
from ..remote.base import Partition, RemoteFetchClient, Zone, ZoneChanges
from ..store.cursor_store import SYNC_WHEN_NO_CLOUD_RECORDS, CursorStore
from ..store.records import now_ms
from .merge import MergeEngine, MergeReport
from .zones import ZoneDirectory

logger = logging.getLogger(__name__)

DEFAULT_SYNC_WHEN_NO_CLOUD_RECORDS = True


class ZoneState(Enum):
    """Where a zone is in its current pass."""

    IDLE = "idle"
    FETCHING = "fetching"
    FULL_FETCHING = "full_fetching"
    MERGING = "merging"


class PassMode(Enum):
    """How a zone pass ran."""

    INCREMENTAL = "incremental"
    FULL = "full"
    ZONE_NOT_FOUND = "zone_not_found"
    SUPPRESSED = "suppressed"


@dataclass
class ZoneSyncResult:
    """Outcome of one zone pass.

    Attributes:
        zone: Zone that was synchronized
        mode: How the pass ran
        report: Merge report, if a merge happened
        error: Failure surfaced for this zone
        cursor_advanced: Whether a new token was persisted
        token_reset: Whether an expired token was discarded
    """

    zone: Zone
    mode: PassMode = PassMode.INCREMENTAL
    report: Optional[MergeReport] = None
    error: Optional[SyncError] = None
    cursor_advanced: bool = False
    token_reset: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone": self.zone.key,
            "mode": self.mode.value,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error.to_dict() if self.error else None,
            "cursor_advanced": self.cursor_advanced,
            "token_reset": self.token_reset,
        }


@dataclass
class SyncReport:
    """Outcome of a full pass over all zones.

    Attributes:
        started_at: Pass start (Unix ms)
        finished_at: Pass end (Unix ms)
        zones: Per-zone results
        pass_errors: Failures not tied to one zone (e.g. enumeration)
        skipped_reason: Set when the pass did not run at all
    """

    started_at: int = field(default_factory=now_ms)
    finished_at: Optional[int] = None
    zones: list[ZoneSyncResult] = field(default_factory=list)
    pass_errors: list[SyncError] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def errors(self) -> list[SyncError]:
        return self.pass_errors + [z.error for z in self.zones if z.error is not None]

    @property
    def success(self) -> bool:
        return not self.errors

    def _count(self, attr: str) -> int:
        return sum(len(getattr(z.report, attr)) for z in self.zones if z.report)

    @property
    def message(self) -> str:
        """Single human readable summary."""
        if self.skipped_reason:
            return f"Sync skipped: {self.skipped_reason}"
        errors = self.errors
        if errors:
            extra = f" (and {len(errors) - 1} more)" if len(errors) > 1 else ""
            return f"Sync failed: {errors[0].message}{extra}"
        return (
            f"Sync complete: {self._count('inserted')} imported, "
            f"{self._count('updated')} updated, {self._count('deleted')} deleted"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "success": self.success,
            "message": self.message,
            "skipped_reason": self.skipped_reason,
            "zones": [z.to_dict() for z in self.zones],
            "errors": [e.to_dict() for e in self.errors],
        }


class SyncOrchestrator:
    """Runs pull passes and owns per-zone cursor handling.

    Example:
        >>> orchestrator = SyncOrchestrator(remote, cursors, directory, merge)
        >>> report = await orchestrator.sync_all()
        >>> report.message
        'Sync complete: 2 imported, 0 updated, 0 deleted'
    """

    def __init__(
        self,
        remote: RemoteFetchClient,
        cursors: CursorStore,
        directory: ZoneDirectory,
        merge: MergeEngine,
        events: Optional[SyncEvents] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            remote: Remote fetch client
            cursors: Per-zone token store
            directory: Zone directory
            merge: Merge engine writing to the local store
            events: Signals to emit after merges
        """
        self.remote = remote
        self.cursors = cursors
        self.directory = directory
        self.merge = merge
        self.events = events or SyncEvents()

        self._zone_states: dict[str, ZoneState] = {}
        self._in_flight: set[str] = set()
        self._latest: dict[str, asyncio.Future] = {}
        self._task: Optional[asyncio.Task] = None
        self._last_report: Optional[SyncReport] = None
        self._pass_count = 0

    @property
    def is_syncing(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current_task(self) -> Optional[asyncio.Task]:
        """The most recently started background pass, if any."""
        return self._task

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    def zone_state(self, zone: Zone) -> ZoneState:
        return self._zone_states.get(zone.key, ZoneState.IDLE)

    def _set_state(self, zone: Zone, state: ZoneState) -> None:
        self._zone_states[zone.key] = state

    def trigger_sync(self) -> asyncio.Task:
        """Start a pass in the background.

        Idempotent while a pass is running: returns the running task.
        """
        if self.is_syncing:
            logger.debug("Sync already in flight, trigger ignored")
            return self._task  # type: ignore[return-value]

        self._task = asyncio.create_task(self.sync_all(), name="recordsync-pass")
        return self._task

    async def _sync_allowed(self) -> bool:
        enabled = await self.cursors.get_preference(
            SYNC_WHEN_NO_CLOUD_RECORDS, DEFAULT_SYNC_WHEN_NO_CLOUD_RECORDS
        )
        if enabled:
            return True
        return await self.merge.store.has_cloud_or_shared_records()

    async def sync_all(self) -> SyncReport:
        """Run one pass over owned zones and all shared zones.

        Never raises for remote or save failures; they are in the report.
        """
        report = SyncReport()
        self._pass_count += 1

        if not await self._sync_allowed():
            report.skipped_reason = "cloud sync is disabled and no record is cloud-enabled"
            report.finished_at = now_ms()
            self._last_report = report
            logger.info("Sync pass skipped", extra={"reason": report.skipped_reason})
            return report

        zones = self.directory.owned_zones()
        try:
            zones.extend(await self.directory.foreign_shared_zones())
        except SyncError as e:
            logger.warning(
                "Shared zone enumeration failed, syncing owned zones only",
                extra={"error": e.message, "code": e.code},
            )
            report.pass_errors.append(e)
        except Exception as e:
            logger.error(f"Shared zone enumeration error: {e}", exc_info=True)
            report.pass_errors.append(SyncError(str(e), code="INTERNAL"))

        report.zones = list(await asyncio.gather(*(self.sync_zone(z) for z in zones)))
        report.finished_at = now_ms()
        self._last_report = report

        logger.info(
            "Sync pass finished",
            extra={
                "zones": len(report.zones),
                "success": report.success,
                "summary": report.message,
                "duration_ms": report.finished_at - report.started_at,
            },
        )
        return report

    async def sweep_shared_zones(self, full_fetch: bool = False) -> list[ZoneSyncResult]:
        """Sync every zone of the shared partition.

        Raises:
            SyncError: If the shared zones could not be enumerated
        """
        zones = await self.directory.foreign_shared_zones()
        results = await asyncio.gather(*(self.sync_zone(z, full_fetch=full_fetch) for z in zones))
        return list(results)

    async def sync_zone(self, zone: Zone, full_fetch: bool = False) -> ZoneSyncResult:
        """Run one pass for a zone, unless one is already in flight."""
        if zone.key in self._in_flight:
            logger.debug("Zone pass already in flight, suppressed", extra={"zone": zone.key})
            return ZoneSyncResult(zone=zone, mode=PassMode.SUPPRESSED)

        self._in_flight.add(zone.key)
        done: asyncio.Future = asyncio.get_running_loop().create_future()
        self._latest[zone.key] = done
        result: Optional[ZoneSyncResult] = None
        try:
            result = await self._run_zone(zone, full_fetch)
            return result
        finally:
            self._in_flight.discard(zone.key)
            self._set_state(zone, ZoneState.IDLE)
            if not done.done():
                done.set_result(result)

    async def wait_for_zone(self, zone: Zone) -> Optional[ZoneSyncResult]:
        """Wait for the latest pass over a zone and return its result.

        Returns None if the zone never ran or its pass was cancelled.
        """
        done = self._latest.get(zone.key)
        if done is None:
            return None
        return await asyncio.shield(done)

    async def _run_zone(self, zone: Zone, full_fetch: bool) -> ZoneSyncResult:
        try:
            if full_fetch:
                return await self._full_fetch(zone, ZoneSyncResult(zone=zone))
            return await self._incremental(zone)
        except SyncError as e:
            logger.error(
                "Zone pass failed", extra={"zone": zone.key, "error": e.message, "code": e.code}
            )
            return ZoneSyncResult(zone=zone, error=e)
        except Exception as e:
            logger.error(f"Zone pass error: {e}", extra={"zone": zone.key}, exc_info=True)
            return ZoneSyncResult(zone=zone, error=SyncError(str(e), code="INTERNAL"))

    async def _incremental(self, zone: Zone) -> ZoneSyncResult:
        result = ZoneSyncResult(zone=zone, mode=PassMode.INCREMENTAL)
        token = await self.cursors.get(zone)

        self._set_state(zone, ZoneState.FETCHING)
        try:
            changes = await self.remote.fetch_changes(zone, token)
        except TokenExpiredError:
            logger.info("Change token expired, falling back to full fetch", extra={"zone": zone.key})
            await self.cursors.clear(zone)
            result.token_reset = True
            return await self._full_fetch(zone, result)
        except ZoneNotFoundError:
            logger.debug("Zone not found, treating as empty", extra={"zone": zone.key})
            result.mode = PassMode.ZONE_NOT_FOUND
            return result
        except TransportFailure as e:
            result.error = e
            if e.partial is not None:
                logger.warning(
                    "Fetch failed mid-way, applying partial changes",
                    extra={"zone": zone.key, "changed": len(e.partial.changed)},
                )
                await self._merge_changes(zone, e.partial, token, result)
            return result
        except SyncError as e:
            result.error = e
            return result

        await self._merge_changes(zone, changes, token, result)
        return result

    async def _merge_changes(
        self,
        zone: Zone,
        changes: ZoneChanges,
        token: Optional[bytes],
        result: ZoneSyncResult,
    ) -> None:
        self._set_state(zone, ZoneState.MERGING)
        report = await self.merge.apply(
            changes.changed,
            changes.deleted,
            zone.partition,
            zone=zone,
            new_records_cloud_enabled=await self._new_records_cloud_enabled(zone),
        )
        result.report = report

        if report.save_error is not None:
            result.error = result.error or report.save_error
            return

        if changes.new_token is not None and changes.new_token != token:
            await self.cursors.set(zone, changes.new_token)
            result.cursor_advanced = True

        if report.committed:
            self.events.records_changed.emit(report)

    async def _full_fetch(self, zone: Zone, result: ZoneSyncResult) -> ZoneSyncResult:
        result.mode = PassMode.FULL
        self._set_state(zone, ZoneState.FULL_FETCHING)
        try:
            records = await self.remote.fetch_all(zone)
        except ZoneNotFoundError:
            result.mode = PassMode.ZONE_NOT_FOUND
            return result
        except SyncError as e:
            result.error = e
            return result

        self._set_state(zone, ZoneState.MERGING)
        report = await self.merge.apply(
            records,
            [],
            zone.partition,
            zone=zone,
            new_records_cloud_enabled=await self._new_records_cloud_enabled(zone),
        )
        result.report = report
        if report.save_error is not None:
            result.error = report.save_error
        elif report.committed:
            self.events.records_changed.emit(report)
        return result

    async def _new_records_cloud_enabled(self, zone: Zone) -> bool:
        if zone.partition != Partition.PRIVATE:
            return False
        return bool(
            await self.cursors.get_preference(
                SYNC_WHEN_NO_CLOUD_RECORDS, DEFAULT_SYNC_WHEN_NO_CLOUD_RECORDS
            )
        )

    def stats(self) -> dict[str, Any]:
        """Get orchestrator statistics."""
        return {
            "syncing": self.is_syncing,
            "pass_count": self._pass_count,
            "in_flight": sorted(self._in_flight),
            "zone_states": {key: state.value for key, state in self._zone_states.items()},
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }
