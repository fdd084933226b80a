"""
Merge engine: folds remote changes into the local store.

Resolution is last-writer-wins on whole records, by updated_at. Remote
tombstones always win. The merge never fabricates timestamps: a merged
record carries exactly the remote updated_at.

Algorithm, per apply() call:
    1. Deletions (including soft tombstones) remove the matching local
       record, matched by cloud record name or uuid.
    2. Upserts insert unseen uuids, skip records whose local copy is
       strictly newer, and otherwise replace the translated fields.
    3. Records from the shared partition are forced visible as shared,
       with the share identity taken from the remote record.
    4. Everything is saved in one batch. A failed save is reported.

Invariants:
    - updated_at never regresses
    - One record is merged all-or-nothing
    - Re-applying the same batch changes nothing
    - Merges never interleave (one lock for all callers)

How to change safely:
    - Keep field knowledge in the translator, not here
    - Any new flag forced by partition must leave is_cloud_enabled alone
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import SaveFailure
from ..remote.base import Partition, RemoteRecord, RemoteRecordID, Zone
from ..store.local_store import LocalStore
from ..store.records import SYNC_LOG_LIMIT, LocalRecord, now_ms
from .translator import RecordTranslator

logger = logging.getLogger(__name__)


@dataclass
class MergeReport:
    """Result of applying one batch of remote changes.

    Attributes:
        partition: Partition the batch came from
        zone: Zone key the batch came from, if known
        inserted: UUIDs of records created locally
        updated: UUIDs of records overwritten by a newer remote copy
        unchanged: UUIDs whose remote copy matched the local record
        skipped_stale: UUIDs kept because the local copy is newer
        deleted: UUIDs removed by remote tombstones
        skipped_invalid: Remote record names without a usable uuid
        imported_names: Display names of inserted records
        committed: Writes committed by the save, including writes left
            staged by an earlier failed save
        save_error: Set when the batch could not be persisted
    """

    partition: Partition
    zone: Optional[str] = None
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped_stale: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped_invalid: list[str] = field(default_factory=list)
    imported_names: list[str] = field(default_factory=list)
    committed: int = 0
    save_error: Optional[SaveFailure] = None

    @property
    def has_effects(self) -> bool:
        """Whether the local store changed."""
        return bool(self.inserted or self.updated or self.deleted)

    @property
    def saved(self) -> bool:
        return self.save_error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and API responses."""
        return {
            "partition": self.partition.value,
            "zone": self.zone,
            "inserted": list(self.inserted),
            "updated": list(self.updated),
            "unchanged": len(self.unchanged),
            "skipped_stale": list(self.skipped_stale),
            "deleted": list(self.deleted),
            "skipped_invalid": list(self.skipped_invalid),
            "imported_names": list(self.imported_names),
            "committed": self.committed,
            "save_error": self.save_error.message if self.save_error else None,
        }


class MergeEngine:
    """Applies remote changes to the local store.

    Example:
        >>> engine = MergeEngine(store)
        >>> report = await engine.apply(changes.changed, changes.deleted, Partition.PRIVATE)
        >>> report.inserted
        ['u1']
    """

    def __init__(
        self,
        store: LocalStore,
        translator: Optional[RecordTranslator] = None,
        sync_log_limit: int = SYNC_LOG_LIMIT,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the merge engine.

        Args:
            store: Local store that receives the changes
            translator: Record translator (default instance if omitted)
            sync_log_limit: Lines kept in each record's sync log
            clock: Wall clock for diagnostics only (Unix ms)
        """
        self.store = store
        self.translator = translator or RecordTranslator()
        self.sync_log_limit = sync_log_limit
        self._clock = clock
        self._lock = asyncio.Lock()

    async def apply(
        self,
        changed: Iterable[RemoteRecord],
        deleted: Iterable[RemoteRecordID],
        partition: Partition,
        zone: Optional[Zone] = None,
        new_records_cloud_enabled: bool = False,
    ) -> MergeReport:
        """Apply one batch of remote changes.

        Args:
            changed: Remote records created or modified
            deleted: Remote records deleted
            partition: Partition the batch was fetched from
            zone: Zone the batch was fetched from (diagnostics)
            new_records_cloud_enabled: Mirroring flag for records created
                from the private partition

        Returns:
            MergeReport describing the effects. Save failures are reported
            in ``save_error``, not raised.
        """
        report = MergeReport(partition=partition, zone=zone.key if zone else None)

        async with self._lock:
            upserts: list[RemoteRecord] = []
            for remote in changed:
                if self.translator.is_tombstone(remote):
                    uuid = self.translator.extract_uuid(remote)
                    await self._delete(remote.record_name, uuid, report)
                else:
                    upserts.append(remote)

            for record_id in deleted:
                await self._delete(record_id.record_name, None, report)

            for remote in upserts:
                await self._merge_one(remote, partition, report, new_records_cloud_enabled)

            if self.store.pending_count:
                try:
                    report.committed = await self.store.save_batch()
                except SaveFailure as e:
                    report.save_error = e

        log = logger.warning if report.save_error else logger.info
        log(
            "Merged remote changes",
            extra={
                "zone": report.zone,
                "partition": partition.value,
                "inserted": len(report.inserted),
                "updated": len(report.updated),
                "deleted": len(report.deleted),
                "skipped_stale": len(report.skipped_stale),
                "save_error": report.save_error.message if report.save_error else None,
            },
        )
        return report

    async def _resolve(self, record_name: str, uuid: Optional[str]) -> Optional[LocalRecord]:
        """Find the local record for a remote identity."""
        record = await self.store.fetch_by_cloud_record_name(record_name)
        if record is None:
            record = await self.store.fetch_by_uuid(record_name)
        if record is None and uuid:
            record = await self.store.fetch_by_uuid(uuid)
        return record

    async def _delete(self, record_name: str, uuid: Optional[str], report: MergeReport) -> None:
        record = await self._resolve(record_name, uuid)
        if record is None:
            return
        await self.store.delete(record)
        report.deleted.append(record.uuid)
        logger.debug(
            "Deleted local record from remote tombstone",
            extra={"uuid": record.uuid, "record_name": record_name},
        )

    async def _merge_one(
        self,
        remote: RemoteRecord,
        partition: Partition,
        report: MergeReport,
        new_records_cloud_enabled: bool,
    ) -> None:
        uuid = self.translator.extract_uuid(remote)
        if uuid is None:
            logger.warning(
                "Skipping remote record without uuid",
                extra={"record_name": remote.record_name, "zone": report.zone},
            )
            report.skipped_invalid.append(remote.record_name)
            return

        existing = await self.store.fetch_by_uuid(uuid)
        if existing is not None and existing.updated_at > remote.updated_at:
            report.skipped_stale.append(uuid)
            return

        if existing is None:
            merged = LocalRecord(uuid=uuid)
            if partition == Partition.PRIVATE:
                merged.is_cloud_enabled = new_records_cloud_enabled
        else:
            merged = copy.deepcopy(existing)

        # An explicit isSharingEnabled mirror outranks the share reference
        if partition == Partition.PRIVATE and remote.share_record_name:
            merged.is_sharing_enabled = True
            merged.cloud_share_record_name = remote.share_record_name

        self.translator.to_local(remote).apply(merged)
        merged.updated_at = remote.updated_at
        merged.cloud_record_name = remote.record_name

        if partition == Partition.SHARED:
            merged.is_sharing_enabled = True
            if remote.share_record_name:
                merged.cloud_share_record_name = remote.share_record_name

        if existing is not None and merged == existing:
            report.unchanged.append(uuid)
            return

        merged.last_sync_at = self._clock()
        merged.last_sync_error = None
        action = "inserted" if existing is None else "updated"
        merged.append_sync_log(
            f"{merged.last_sync_at} pulled from {report.zone or partition.value}: {action}",
            limit=self.sync_log_limit,
        )

        if existing is None:
            await self.store.insert(merged)
            report.inserted.append(uuid)
            report.imported_names.append(merged.display_name)
        else:
            await self.store.update(merged)
            report.updated.append(uuid)

    async def annotate_share(self, share_record_name: str, summary: str) -> list[str]:
        """Store a participants summary on every record of one share.

        Returns:
            UUIDs of records that changed

        Raises:
            SaveFailure: If the batch could not be persisted
        """
        changed: list[str] = []
        async with self._lock:
            for record in await self.store.list_records():
                if record.cloud_share_record_name != share_record_name:
                    continue
                if record.share_participants_summary == summary:
                    continue
                record.share_participants_summary = summary
                await self.store.update(record)
                changed.append(record.uuid)
            if changed:
                await self.store.save_batch()
        return changed
