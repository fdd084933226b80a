"""
Unit tests for MergeEngine.

Tests cover:
- Last-writer-wins on updated_at
- Tombstones (hard and soft)
- Shared partition flags
- Idempotence
- Save failures
"""

import os
import tempfile

import pytest

from recordsync.errors import SaveFailure
from recordsync.remote.base import Partition, RemoteRecord, RemoteRecordID, Zone
from recordsync.store.local_store import LocalStore
from recordsync.store.records import LocalRecord
from recordsync.sync.merge import MergeEngine

OWNED = Zone("SimplyHealthShareZone")
SHARED = Zone("SimplyHealthShareZone", owner="_alice", partition=Partition.SHARED)


def remote(name, uuid, updated_at, zone=OWNED, share=None, **fields):
    return RemoteRecord(
        record_name=name,
        zone=zone,
        fields={"uuid": uuid, **fields},
        updated_at=updated_at,
        share_record_name=share,
    )


class TestMergeEngine:
    """Tests for MergeEngine."""

    @pytest.fixture
    def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield LocalStore(os.path.join(tmpdir, "records.db"))

    @pytest.fixture
    def engine(self, store):
        return MergeEngine(store, clock=lambda: 42)

    @pytest.mark.asyncio
    async def test_insert_new_record(self, engine, store):
        """Unseen uuids are inserted with the remote timestamp."""
        report = await engine.apply(
            [remote("r1", "u1", 100, personalGivenName="Ada")], [], Partition.PRIVATE, OWNED
        )

        record = await store.fetch_by_uuid("u1")
        assert report.inserted == ["u1"]
        assert report.imported_names == ["Ada"]
        assert record.updated_at == 100
        assert record.cloud_record_name == "r1"
        assert record.last_sync_at == 42
        assert store.pending_count == 0
        assert report.committed == 1

    @pytest.mark.asyncio
    async def test_newer_local_copy_wins(self, engine, store):
        """Local updated_at=200 beats remote updated_at=150."""
        await store.insert(LocalRecord(uuid="u1", updated_at=200, personal_given_name="Local"))
        await store.save_batch()

        report = await engine.apply(
            [remote("r1", "u1", 150, personalGivenName="Remote")], [], Partition.PRIVATE
        )

        record = await store.fetch_by_uuid("u1")
        assert report.skipped_stale == ["u1"]
        assert record.personal_given_name == "Local"
        assert record.updated_at == 200

    @pytest.mark.asyncio
    async def test_newer_remote_copy_wins(self, engine, store):
        """Remote updated_at=250 replaces local updated_at=200."""
        await store.insert(LocalRecord(uuid="u1", updated_at=200, personal_given_name="Local"))
        await store.save_batch()

        report = await engine.apply(
            [remote("r1", "u1", 250, personalGivenName="Remote")], [], Partition.PRIVATE
        )

        record = await store.fetch_by_uuid("u1")
        assert report.updated == ["u1"]
        assert record.personal_given_name == "Remote"
        assert record.updated_at == 250

    @pytest.mark.asyncio
    async def test_equal_timestamps_take_remote(self, engine, store):
        """Ties go to the remote copy."""
        await store.insert(LocalRecord(uuid="u1", updated_at=200, owner_name="Local"))
        await store.save_batch()

        await engine.apply([remote("r1", "u1", 200, ownerName="Remote")], [], Partition.PRIVATE)

        assert (await store.fetch_by_uuid("u1")).owner_name == "Remote"

    @pytest.mark.asyncio
    async def test_deletion_by_record_name(self, engine, store):
        """Hard deletions match on the cloud record name."""
        await store.insert(LocalRecord(uuid="u1", cloud_record_name="r1"))
        await store.save_batch()

        report = await engine.apply([], [RemoteRecordID("r1", OWNED)], Partition.PRIVATE)

        assert report.deleted == ["u1"]
        assert await store.fetch_by_uuid("u1") is None

    @pytest.mark.asyncio
    async def test_soft_tombstone_wins_over_newer_local(self, engine, store):
        """isDeleted removes the record regardless of timestamps."""
        await store.insert(LocalRecord(uuid="u1", updated_at=999))
        await store.save_batch()

        report = await engine.apply(
            [remote("r1", "u1", 1, isDeleted=1)], [], Partition.PRIVATE
        )

        assert report.deleted == ["u1"]
        assert await store.fetch_by_uuid("u1") is None

    @pytest.mark.asyncio
    async def test_deletion_of_unknown_record_is_noop(self, engine, store):
        """Deleting something never seen changes nothing."""
        report = await engine.apply([], [RemoteRecordID("ghost", OWNED)], Partition.PRIVATE)

        assert not report.has_effects

    @pytest.mark.asyncio
    async def test_record_without_uuid_skipped(self, engine, store):
        """Records without uuid are reported, not merged."""
        bad = RemoteRecord("r1", OWNED, {"personalGivenName": "X"}, updated_at=1)

        report = await engine.apply([bad], [], Partition.PRIVATE)

        assert report.skipped_invalid == ["r1"]
        assert await store.list_records() == []

    @pytest.mark.asyncio
    async def test_shared_partition_sets_sharing_flags(self, engine, store):
        """Shared fetches force sharing visibility and the share identity."""
        report = await engine.apply(
            [remote("r2", "u2", 100, zone=SHARED, share="s1")],
            [],
            Partition.SHARED,
            SHARED,
            new_records_cloud_enabled=True,
        )

        record = await store.fetch_by_uuid("u2")
        assert report.inserted == ["u2"]
        assert record.is_sharing_enabled
        assert record.cloud_share_record_name == "s1"
        assert record.is_cloud_enabled is False

    @pytest.mark.asyncio
    async def test_shared_merge_keeps_cloud_flag(self, engine, store):
        """A recipient's own mirroring preference is left alone."""
        await store.insert(LocalRecord(uuid="u2", updated_at=50, is_cloud_enabled=True))
        await store.save_batch()

        await engine.apply([remote("r2", "u2", 100, zone=SHARED)], [], Partition.SHARED)

        record = await store.fetch_by_uuid("u2")
        assert record.is_cloud_enabled is True
        assert record.is_sharing_enabled is True

    @pytest.mark.asyncio
    async def test_private_records_follow_cloud_default(self, engine, store):
        """New private records take the given mirroring flag."""
        await engine.apply(
            [remote("r1", "u1", 100)], [], Partition.PRIVATE, new_records_cloud_enabled=True
        )

        assert (await store.fetch_by_uuid("u1")).is_cloud_enabled is True

    @pytest.mark.asyncio
    async def test_sharing_mirror_outranks_share_reference(self, engine, store):
        """An explicit isSharingEnabled=0 wins over a share reference."""
        await engine.apply(
            [
                remote("r1", "u1", 100, share="s1", isSharingEnabled=0),
                remote("r2", "u2", 100, share="s2"),
            ],
            [],
            Partition.PRIVATE,
        )

        stopped = await store.fetch_by_uuid("u1")
        shared = await store.fetch_by_uuid("u2")
        assert stopped.is_sharing_enabled is False
        assert stopped.cloud_share_record_name == "s1"
        assert shared.is_sharing_enabled is True
        assert shared.cloud_share_record_name == "s2"

    @pytest.mark.asyncio
    async def test_apply_is_idempotent(self, engine, store):
        """Re-applying the same batch changes nothing."""
        batch = [remote("r1", "u1", 100, ownerName="Bo"), remote("r2", "u2", 100)]
        await engine.apply(batch, [], Partition.PRIVATE)
        before = await store.list_records()

        report = await engine.apply(batch, [], Partition.PRIVATE)

        assert not report.has_effects
        assert sorted(report.unchanged) == ["u1", "u2"]
        assert await store.list_records() == before

    @pytest.mark.asyncio
    async def test_save_failure_reported(self, engine, store, monkeypatch):
        """A failed save is reported, not raised."""

        async def failing_save():
            raise SaveFailure("disk full", pending=store.pending_count)

        monkeypatch.setattr(store, "save_batch", failing_save)

        report = await engine.apply([remote("r1", "u1", 100)], [], Partition.PRIVATE)

        assert not report.saved
        assert report.save_error.message == "disk full"
        assert report.inserted == ["u1"]

    @pytest.mark.asyncio
    async def test_annotate_share(self, engine, store):
        """Participants summary lands on every record of the share."""
        await engine.apply([remote("r2", "u2", 100, zone=SHARED, share="s1")], [], Partition.SHARED)

        changed = await engine.annotate_share("s1", "a@x.io")

        assert changed == ["u2"]
        assert (await store.fetch_by_uuid("u2")).share_participants_summary == "a@x.io"
        assert await engine.annotate_share("s1", "a@x.io") == []
