"""
Share acceptance engine.

Turns an inbound share reference into imported local records:

    NO_PENDING_REFERENCE -> RECEIVED -> ACCEPTING -> IMPORTED | FAILED

A URL reference is resolved to metadata first. Platform-delivered
metadata skips that round trip. After the remote store accepts the
share, every shared zone is fetched in full through the orchestrator, so
imports go through the same merge as regular passes.

Invariants:
    - accept() never raises for remote or save failures; it returns FAILED
    - Every failure is reported as ShareAcceptanceFailure
    - There is no automatic retry
    - A share whose zone is busy waits for the running pass, then imports
    - References delivered before the surface is ready are parked, not lost
      (except when overwritten by a newer one of the same kind)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import SaveFailure, ShareAcceptanceFailure, SyncError
from ..events import SyncEvents
from ..remote.base import RemoteFetchClient, ShareMetadata, Zone
from ..sync.orchestrator import PassMode, SyncOrchestrator, ZoneSyncResult
from .pending import PendingShareReference, ShareReference

logger = logging.getLogger(__name__)

# Busy passes over the shared zone to wait out before giving up
MAX_ZONE_WAITS = 3


class AcceptanceState(Enum):
    """Lifecycle of the most recent share reference."""

    NO_PENDING_REFERENCE = "no_pending_reference"
    RECEIVED = "received"
    ACCEPTING = "accepting"
    IMPORTED = "imported"
    FAILED = "failed"


def summarize_participants(participants: Iterable[dict[str, Any]]) -> str:
    """Display string for the people on a share.

    Uses the email address when known, otherwise the name.
    """
    parts = []
    for participant in participants:
        label = participant.get("email") or participant.get("name")
        if label:
            parts.append(label)
    return ", ".join(parts) if parts else "Only you"


@dataclass
class AcceptanceResult:
    """Outcome of accepting one share.

    Attributes:
        state: IMPORTED or FAILED
        reference: The reference that was processed
        metadata: Resolved share metadata, if resolution succeeded
        imported_names: Display names of newly imported records
        zones: Per-zone results of the shared-zone sweep
        participants_summary: Display string of the share's participants
        error: Set when state is FAILED
    """

    state: AcceptanceState
    reference: ShareReference
    metadata: Optional[ShareMetadata] = None
    imported_names: list[str] = field(default_factory=list)
    zones: list[ZoneSyncResult] = field(default_factory=list)
    participants_summary: Optional[str] = None
    error: Optional[ShareAcceptanceFailure] = None

    @property
    def success(self) -> bool:
        return self.state == AcceptanceState.IMPORTED

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        if not self.imported_names:
            return "Share accepted, no new records"
        return f"Imported {', '.join(self.imported_names)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "success": self.success,
            "message": self.message,
            "reference": self.reference.to_dict(),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "imported_names": list(self.imported_names),
            "participants_summary": self.participants_summary,
            "zones": [z.to_dict() for z in self.zones],
            "error": self.error.to_dict() if self.error else None,
        }


class ShareAcceptanceEngine:
    """Accepts inbound shares and imports their records.

    Example:
        >>> engine = ShareAcceptanceEngine(remote, orchestrator)
        >>> await engine.surface_ready()
        >>> result = await engine.accept(ShareReference.from_url(url))
        >>> result.imported_names
        ['Rex']
    """

    def __init__(
        self,
        remote: RemoteFetchClient,
        orchestrator: SyncOrchestrator,
        pending: Optional[PendingShareReference] = None,
        events: Optional[SyncEvents] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            remote: Remote fetch client used to resolve and accept shares
            orchestrator: Runs the shared-zone sweep after acceptance
            pending: Mailbox for references that arrive early
            events: Signals for acceptance outcomes
        """
        self.remote = remote
        self.orchestrator = orchestrator
        self.pending = pending or PendingShareReference()
        self.events = events or orchestrator.events

        self._state = AcceptanceState.NO_PENDING_REFERENCE
        self._ready = False
        self._lock = asyncio.Lock()
        self._last_result: Optional[AcceptanceResult] = None

    @property
    def state(self) -> AcceptanceState:
        return self._state

    @property
    def is_surface_ready(self) -> bool:
        return self._ready

    @property
    def last_result(self) -> Optional[AcceptanceResult]:
        return self._last_result

    async def deliver(self, reference: ShareReference) -> Optional[AcceptanceResult]:
        """Entry point for platform delivery hooks.

        Returns:
            The acceptance result, or None if the reference was parked
        """
        if not self._ready:
            self.pending.put(reference)
            self._state = AcceptanceState.RECEIVED
            logger.info("Share reference parked until surface is ready", extra={"kind": reference.kind})
            self.events.pending_share_received.emit(reference)
            return None
        return await self.accept(reference)

    async def surface_ready(self) -> list[AcceptanceResult]:
        """Mark the surface ready and accept everything that was parked."""
        self._ready = True
        results = []
        for reference in self.pending.drain():
            results.append(await self.accept(reference))
        return results

    def surface_suspended(self) -> None:
        """Park future deliveries until surface_ready() is called again."""
        self._ready = False

    async def accept(self, reference: ShareReference) -> AcceptanceResult:
        """Resolve, accept and import one share."""
        async with self._lock:
            self._state = AcceptanceState.ACCEPTING
            result = AcceptanceResult(state=AcceptanceState.ACCEPTING, reference=reference)
            logger.info("Accepting share", extra={"reference": reference.label, "kind": reference.kind})

            try:
                await self._accept(reference, result)
            except SyncError as e:
                result.state = AcceptanceState.FAILED
                result.error = (
                    e
                    if isinstance(e, ShareAcceptanceFailure)
                    else ShareAcceptanceFailure(
                        f"Share acceptance failed: {e.message}", reference=reference.label
                    )
                )
            except Exception as e:
                logger.error(f"Share acceptance error: {e}", exc_info=True)
                result.state = AcceptanceState.FAILED
                result.error = ShareAcceptanceFailure(
                    f"Share acceptance failed: {e}", reference=reference.label
                )

            self._state = result.state
            self._last_result = result

        if result.success:
            logger.info(
                "Share imported",
                extra={"reference": reference.label, "imported": len(result.imported_names)},
            )
            self.events.share_accepted.emit(result)
        else:
            logger.warning(
                "Share acceptance failed",
                extra={"reference": reference.label, "error": result.message},
            )
            self.events.share_failed.emit(result)
        return result

    async def _accept(self, reference: ShareReference, result: AcceptanceResult) -> None:
        metadata = reference.metadata
        if metadata is None:
            metadata = await self.remote.fetch_share_metadata(reference.url)  # type: ignore[arg-type]
        result.metadata = metadata

        await self.remote.accept_share(metadata)

        result.zones = await self.orchestrator.sweep_shared_zones(full_fetch=True)
        for i, zone_result in enumerate(result.zones):
            busy = zone_result.mode == PassMode.SUPPRESSED
            if busy and zone_result.zone.key == metadata.zone.key:
                result.zones[i] = await self._after_concurrent_pass(
                    zone_result.zone, reference, result
                )
        for zone_result in result.zones:
            if zone_result.report is not None:
                result.imported_names.extend(zone_result.report.imported_names)

        own = [z for z in result.zones if z.zone.key == metadata.zone.key]
        for zone_result in own:
            if zone_result.error is not None:
                raise ShareAcceptanceFailure(
                    f"Share accepted but import failed: {zone_result.error.message}",
                    reference=reference.label,
                )

        result.participants_summary = summarize_participants(metadata.participants)
        try:
            await self.orchestrator.merge.annotate_share(
                metadata.share_record_name, result.participants_summary
            )
        except SaveFailure as e:
            logger.warning(
                "Could not store share participants",
                extra={"share": metadata.share_record_name, "error": e.message},
            )
        result.state = AcceptanceState.IMPORTED

    async def _after_concurrent_pass(
        self, zone: Zone, reference: ShareReference, result: AcceptanceResult
    ) -> ZoneSyncResult:
        """Import a share zone that another pass was already syncing.

        Names imported by the concurrent pass count as imported by this share.
        """
        for _ in range(MAX_ZONE_WAITS):
            logger.info("Share zone busy, waiting for running pass", extra={"zone": zone.key})
            concurrent = await self.orchestrator.wait_for_zone(zone)
            if concurrent is not None and concurrent.report is not None:
                result.imported_names.extend(concurrent.report.imported_names)
            rerun = await self.orchestrator.sync_zone(zone, full_fetch=True)
            if rerun.mode != PassMode.SUPPRESSED:
                return rerun
        raise ShareAcceptanceFailure(
            "Share accepted but its zone is still syncing, try again", reference=reference.label
        )
