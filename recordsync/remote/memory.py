"""
In-memory remote backing store for testing.

This module provides a complete in-process RemoteFetchClient for:
- Unit tests
- Integration tests
- Local development without a cloud account (REMOTE_BACKEND=memory)

It keeps a per-zone change log so incremental fetches, paging, token
expiry, missing zones and share acceptance behave like the real store.

Invariants:
    - All data is lost on process exit
    - Tokens are only honored by the zone that issued them
    - expire_tokens() invalidates every token issued so far for a zone
    - Records handed out are copies, callers cannot mutate stored state

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with RemoteFetchClient protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import (
    ShareAcceptanceFailure,
    SyncError,
    TokenExpiredError,
    TransportFailure,
    ZoneNotFoundError,
)
from .base import Partition, RemoteRecord, RemoteRecordID, ShareMetadata, Zone, ZoneChanges

logger = logging.getLogger(__name__)


@dataclass
class InMemoryZone:
    """In-memory zone storage.

    Attributes:
        records: Current records by record name
        log: Change log of (seq, record_name) in write order
        seq: Sequence number of the last change
        epoch: Bumped by expire_tokens() to invalidate issued tokens
    """

    records: Dict[str, RemoteRecord] = field(default_factory=dict)
    log: List[Tuple[int, str]] = field(default_factory=list)
    seq: int = 0
    epoch: int = 0

    def record_change(self, record_name: str) -> None:
        self.seq += 1
        self.log.append((self.seq, record_name))


@dataclass
class _RegisteredShare:
    metadata: ShareMetadata
    records: List[RemoteRecord]
    accepted: bool = False


class InMemoryRemoteStore:
    """In-memory implementation of RemoteFetchClient for testing.

    Attributes:
        page_size: Changes returned per page by fetch_changes()
        calls: Log of remote operations, e.g. "fetch_all:private/owner/zone"

    Thread safety:
        Uses an asyncio lock. Safe to use from multiple coroutines.

    Example:
        >>> remote = InMemoryRemoteStore()
        >>> await remote.connect()
        >>> remote.put_record(RemoteRecord("r1", zone, {"uuid": "u1"}, updated_at=100))
        >>> changes = await remote.fetch_changes(zone, None)
    """

    def __init__(self, page_size: int = 100) -> None:
        """Initialize the in-memory store.

        Args:
            page_size: Number of changes per fetch_changes page
        """
        self.page_size = page_size
        self.calls: List[str] = []
        self._zones: Dict[Zone, InMemoryZone] = {}
        self._shares: Dict[str, _RegisteredShare] = {}
        self._failures: Dict[str, List[SyncError]] = {}
        self._page_failures: Dict[Zone, Tuple[int, SyncError]] = {}
        self._hooks: Dict[str, Callable[[Zone], Awaitable[None]]] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryRemoteStore connected")

    async def close(self) -> None:
        """Disconnect. Data is kept so a reconnect sees the same store."""
        self._connected = False
        logger.debug("InMemoryRemoteStore closed")

    def _check(self, operation: str, zone: Optional[Zone] = None) -> None:
        self.calls.append(f"{operation}:{zone.key}" if zone else operation)
        if not self._connected:
            raise TransportFailure("Remote store not connected")
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _zone(self, zone: Zone) -> InMemoryZone:
        state = self._zones.get(zone)
        if state is None:
            raise ZoneNotFoundError(f"Zone not found: {zone.key}", zone=zone.key)
        return state

    @staticmethod
    def _encode_token(zone: Zone, state: InMemoryZone, seq: int) -> bytes:
        return f"{zone.key}|{state.epoch}|{seq}".encode("utf-8")

    @staticmethod
    def _decode_token(zone: Zone, state: InMemoryZone, token: bytes) -> int:
        try:
            key, epoch, seq = token.decode("utf-8").rsplit("|", 2)
            if key != zone.key or int(epoch) != state.epoch:
                raise ValueError("token not issued for this zone")
            return int(seq)
        except (UnicodeDecodeError, ValueError):
            raise TokenExpiredError(f"Change token expired for zone {zone.key}", zone=zone.key)

    # -- RemoteFetchClient --

    async def fetch_changes(self, zone: Zone, since_token: Optional[bytes]) -> ZoneChanges:
        """Fetch changes since a token, paging by page_size."""
        async with self._lock:
            self._check("fetch_changes", zone)
            state = self._zone(zone)
            since = self._decode_token(zone, state, since_token) if since_token else 0

            # Latest change per record, in change order.
            latest: Dict[str, int] = {}
            for seq, name in state.log:
                if seq > since:
                    latest[name] = seq
            ordered = sorted(latest.items(), key=lambda item: item[1])

            result = ZoneChanges(zone=zone, new_token=since_token)
            page_failure = self._page_failures.pop(zone, None)
            pages = [
                ordered[i : i + self.page_size] for i in range(0, len(ordered), self.page_size)
            ] or [[]]

            for index, page_items in enumerate(pages):
                if page_failure is not None and page_failure[0] == index:
                    error = page_failure[1]
                    if isinstance(error, TransportFailure) and index > 0:
                        error.partial = result
                    raise error

                page = ZoneChanges(zone=zone)
                for name, _seq in page_items:
                    record = state.records.get(name)
                    if record is None:
                        page.deleted.append(RemoteRecordID(name, zone))
                    else:
                        page.changed.append(copy.deepcopy(record))

                last = index == len(pages) - 1
                page_seq = state.seq if last else page_items[-1][1]
                page.new_token = self._encode_token(zone, state, page_seq)
                page.more_coming = not last
                result.extend(page)

            logger.debug(
                "Fetched zone changes",
                extra={
                    "zone": zone.key,
                    "changed": len(result.changed),
                    "deleted": len(result.deleted),
                    "pages": len(pages),
                },
            )
            return result

    async def fetch_all(self, zone: Zone) -> List[RemoteRecord]:
        """Return copies of every record in a zone."""
        hook = self._hooks.get("fetch_all")
        if hook is not None:
            await hook(zone)
        async with self._lock:
            self._check("fetch_all", zone)
            state = self._zone(zone)
            return [copy.deepcopy(r) for r in state.records.values()]

    async def enumerate_zones(self, partition: Partition) -> List[Zone]:
        """List zones in a partition."""
        async with self._lock:
            self._check(f"enumerate_zones:{partition.value}")
            return sorted(
                (z for z in self._zones if z.partition == partition), key=lambda z: z.key
            )

    async def fetch_share_metadata(self, url: str) -> ShareMetadata:
        """Resolve a registered share URL."""
        async with self._lock:
            self._check("fetch_share_metadata")
            share = self._shares.get(url)
            if share is None:
                raise ShareAcceptanceFailure(f"Unknown share URL: {url}", reference=url)
            return copy.deepcopy(share.metadata)

    async def accept_share(self, metadata: ShareMetadata) -> None:
        """Accept a registered share, exposing its zone in the shared partition."""
        async with self._lock:
            self._check("accept_share", metadata.zone)
            for share in self._shares.values():
                if share.metadata.share_record_name == metadata.share_record_name:
                    break
            else:
                raise ShareAcceptanceFailure(
                    f"Share not found: {metadata.share_record_name}",
                    reference=metadata.share_record_name,
                )

            if not share.accepted:
                share.accepted = True
                state = self._zones.setdefault(share.metadata.zone, InMemoryZone())
                for record in share.records:
                    state.records[record.record_name] = copy.deepcopy(record)
                    state.record_change(record.record_name)
            logger.info("Share accepted", extra={"share": metadata.share_record_name})

    # -- Testing helpers --

    def create_zone(self, zone: Zone) -> None:
        """Create an empty zone if it doesn't exist."""
        self._zones.setdefault(zone, InMemoryZone())

    def delete_zone(self, zone: Zone) -> None:
        """Remove a zone and all its records."""
        self._zones.pop(zone, None)

    def put_record(self, record: RemoteRecord) -> None:
        """Create or replace a record, creating its zone if needed."""
        state = self._zones.setdefault(record.zone, InMemoryZone())
        state.records[record.record_name] = copy.deepcopy(record)
        state.record_change(record.record_name)

    def delete_record(self, zone: Zone, record_name: str) -> None:
        """Delete a record, leaving a tombstone in the change log."""
        state = self._zone(zone)
        state.records.pop(record_name, None)
        state.record_change(record_name)

    def get_record(self, zone: Zone, record_name: str) -> Optional[RemoteRecord]:
        """Get a copy of a stored record."""
        state = self._zones.get(zone)
        if state is None or record_name not in state.records:
            return None
        return copy.deepcopy(state.records[record_name])

    def expire_tokens(self, zone: Zone) -> None:
        """Invalidate every token issued so far for a zone."""
        self._zone(zone).epoch += 1

    def fail_next(self, operation: str, error: SyncError) -> None:
        """Make the next call of an operation raise error.

        Operations: fetch_changes, fetch_all, enumerate_zones:<partition>,
        fetch_share_metadata, accept_share.
        """
        self._failures.setdefault(operation, []).append(error)

    def fail_on_page(self, zone: Zone, page_index: int, error: SyncError) -> None:
        """Make the next fetch_changes for a zone fail on a given page."""
        self._page_failures[zone] = (page_index, error)

    def on_fetch_all(self, hook: Callable[[Zone], Awaitable[None]]) -> None:
        """Run hook at the start of every fetch_all call."""
        self._hooks["fetch_all"] = hook

    def register_share(
        self,
        url: str,
        metadata: ShareMetadata,
        records: Optional[List[RemoteRecord]] = None,
    ) -> None:
        """Register a share that can be resolved by URL and accepted."""
        if metadata.url is None:
            metadata.url = url
        self._shares[url] = _RegisteredShare(metadata=metadata, records=list(records or []))
