"""
Unit tests for the in-memory remote store.

Tests cover:
- Incremental fetch and paging
- Token expiry and missing zones
- Partial results on mid-stream failure
- Zone enumeration and shares
"""

import pytest

from recordsync.errors import (
    ShareAcceptanceFailure,
    TokenExpiredError,
    TransportFailure,
    ZoneNotFoundError,
)
from recordsync.remote.base import Partition, RemoteRecord, ShareMetadata, Zone
from recordsync.remote.memory import InMemoryRemoteStore

ZONE = Zone("SimplyHealthShareZone")


def record(name, uuid, updated_at=100, zone=ZONE):
    return RemoteRecord(name, zone, {"uuid": uuid}, updated_at=updated_at)


class TestInMemoryRemoteStore:
    """Tests for InMemoryRemoteStore."""

    @pytest.fixture
    def store(self):
        """Connected store with a small page size."""
        remote = InMemoryRemoteStore(page_size=2)
        remote._connected = True
        return remote

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        """Calls fail before connect()."""
        remote = InMemoryRemoteStore()
        with pytest.raises(TransportFailure):
            await remote.fetch_changes(ZONE, None)

    @pytest.mark.asyncio
    async def test_fetch_all_changes_from_none(self, store):
        """A None token returns everything, across pages."""
        for i in range(5):
            store.put_record(record(f"r{i}", f"u{i}"))

        changes = await store.fetch_changes(ZONE, None)

        assert [r.record_name for r in changes.changed] == ["r0", "r1", "r2", "r3", "r4"]
        assert changes.new_token is not None
        assert not changes.more_coming

    @pytest.mark.asyncio
    async def test_incremental_fetch(self, store):
        """Only changes after the token are returned."""
        store.put_record(record("r1", "u1"))
        first = await store.fetch_changes(ZONE, None)

        store.put_record(record("r2", "u2"))
        store.delete_record(ZONE, "r1")
        second = await store.fetch_changes(ZONE, first.new_token)

        assert [r.record_name for r in second.changed] == ["r2"]
        assert [d.record_name for d in second.deleted] == ["r1"]

    @pytest.mark.asyncio
    async def test_no_changes_keeps_token_usable(self, store):
        """An empty fetch still returns a valid token."""
        store.create_zone(ZONE)
        changes = await store.fetch_changes(ZONE, None)

        again = await store.fetch_changes(ZONE, changes.new_token)

        assert again.is_empty

    @pytest.mark.asyncio
    async def test_expired_token(self, store):
        """expire_tokens() invalidates issued tokens."""
        store.put_record(record("r1", "u1"))
        changes = await store.fetch_changes(ZONE, None)
        store.expire_tokens(ZONE)

        with pytest.raises(TokenExpiredError):
            await store.fetch_changes(ZONE, changes.new_token)

    @pytest.mark.asyncio
    async def test_foreign_token_rejected(self, store):
        """A token from another zone is treated as expired."""
        other = Zone("other")
        store.put_record(record("r1", "u1", zone=other))
        store.create_zone(ZONE)
        changes = await store.fetch_changes(other, None)

        with pytest.raises(TokenExpiredError):
            await store.fetch_changes(ZONE, changes.new_token)

    @pytest.mark.asyncio
    async def test_missing_zone(self, store):
        """Unknown zones raise ZoneNotFoundError."""
        with pytest.raises(ZoneNotFoundError):
            await store.fetch_changes(ZONE, None)
        with pytest.raises(ZoneNotFoundError):
            await store.fetch_all(ZONE)

    @pytest.mark.asyncio
    async def test_partial_changes_on_page_failure(self, store):
        """A failure after the first page carries what was fetched."""
        for i in range(5):
            store.put_record(record(f"r{i}", f"u{i}"))
        store.fail_on_page(ZONE, 1, TransportFailure("connection reset"))

        with pytest.raises(TransportFailure) as exc_info:
            await store.fetch_changes(ZONE, None)

        partial = exc_info.value.partial
        assert [r.record_name for r in partial.changed] == ["r0", "r1"]
        assert partial.new_token is not None

    @pytest.mark.asyncio
    async def test_fail_next(self, store):
        """fail_next() raises once."""
        store.create_zone(ZONE)
        store.fail_next("fetch_all", TransportFailure("timeout"))

        with pytest.raises(TransportFailure):
            await store.fetch_all(ZONE)
        assert await store.fetch_all(ZONE) == []

    @pytest.mark.asyncio
    async def test_enumerate_zones(self, store):
        """Zones are listed per partition."""
        shared = Zone("z", owner="alice", partition=Partition.SHARED)
        store.create_zone(ZONE)
        store.create_zone(shared)

        assert await store.enumerate_zones(Partition.SHARED) == [shared]
        assert await store.enumerate_zones(Partition.PRIVATE) == [ZONE]

    @pytest.mark.asyncio
    async def test_share_acceptance_exposes_zone(self, store):
        """Accepting a registered share makes its records visible."""
        shared = Zone("z", owner="alice", partition=Partition.SHARED)
        metadata = ShareMetadata(share_record_name="s1", zone=shared)
        store.register_share("https://share/abc", metadata, [record("r1", "u1", zone=shared)])

        resolved = await store.fetch_share_metadata("https://share/abc")
        assert await store.enumerate_zones(Partition.SHARED) == []

        await store.accept_share(resolved)

        assert await store.enumerate_zones(Partition.SHARED) == [shared]
        assert [r.record_name for r in await store.fetch_all(shared)] == ["r1"]

    @pytest.mark.asyncio
    async def test_unknown_share_url(self, store):
        """Unknown URLs are share failures."""
        with pytest.raises(ShareAcceptanceFailure):
            await store.fetch_share_metadata("https://share/unknown")
