"""
Local SQLite record store for recordsync.

This is the Local Store Adapter: the only owner of durable record state.
Writes are staged in memory by insert/update/delete and become durable
together when save_batch() commits them in one transaction.

Staged writes are visible to reads immediately, so a merge pass sees its
own effects. A failed save leaves them staged; the next save retries them.

Invariants:
    - One row per record uuid
    - save_batch() is all-or-nothing at the SQLite level
    - Reads return copies, callers never alias stored state

How to change safely:
    - Schema migrations must be backward compatible
    - New content fields go into content_json, no migration needed
    - Use transactions for all write operations

Table schema:
    records:
        - uuid TEXT PRIMARY KEY
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)
        - cloud_record_name TEXT
        - cloud_share_record_name TEXT
        - is_cloud_enabled INTEGER
        - is_sharing_enabled INTEGER
        - share_participants_summary TEXT
        - last_sync_at INTEGER
        - last_sync_error TEXT
        - sync_log_json TEXT
        - content_json TEXT (content fields and child collections)
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import SaveFailure
from .records import LocalRecord

logger = logging.getLogger(__name__)

# Marker for a staged delete.
_DELETED = None


class RecordExistsError(Exception):
    """A record with this uuid already exists."""

    pass


class RecordNotFoundError(Exception):
    """No record with this uuid exists."""

    pass


class LocalStore:
    """SQLite-backed store for LocalRecord rows.

    Thread safety:
        Each database connection is created per-operation. Staged writes
        live on the instance and are meant to be driven from one event
        loop; the merge engine serializes writers.

    Example:
        >>> store = LocalStore("/var/lib/recordsync/records.db")
        >>> await store.initialize()
        >>> await store.insert(LocalRecord(uuid="u1", personal_given_name="Ada"))
        >>> await store.save_batch()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the local store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._pending: dict[str, LocalRecord | None] = {}
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the record database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                uuid TEXT PRIMARY KEY,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                cloud_record_name TEXT,
                cloud_share_record_name TEXT,
                is_cloud_enabled INTEGER NOT NULL DEFAULT 0,
                is_sharing_enabled INTEGER NOT NULL DEFAULT 0,
                share_participants_summary TEXT NOT NULL DEFAULT '',
                last_sync_at INTEGER,
                last_sync_error TEXT,
                sync_log_json TEXT NOT NULL DEFAULT '[]',
                content_json TEXT NOT NULL DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_records_cloud_name ON records(cloud_record_name);
            CREATE INDEX IF NOT EXISTS idx_records_updated ON records(updated_at DESC);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info("Initialized record database", extra={"path": str(self.db_path)})

    # -- row mapping --

    def _row_to_record(self, row: sqlite3.Row) -> LocalRecord:
        data: dict[str, Any] = json.loads(row["content_json"])
        data.update(
            {
                "uuid": row["uuid"],
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "cloud_record_name": row["cloud_record_name"],
                "cloud_share_record_name": row["cloud_share_record_name"],
                "is_cloud_enabled": bool(row["is_cloud_enabled"]),
                "is_sharing_enabled": bool(row["is_sharing_enabled"]),
                "share_participants_summary": row["share_participants_summary"],
                "last_sync_at": row["last_sync_at"],
                "last_sync_error": row["last_sync_error"],
                "sync_log": json.loads(row["sync_log_json"]),
            }
        )
        return LocalRecord.from_dict(data)

    @staticmethod
    def _record_to_params(record: LocalRecord) -> tuple:
        return (
            record.uuid,
            record.created_at,
            record.updated_at,
            record.cloud_record_name,
            record.cloud_share_record_name,
            1 if record.is_cloud_enabled else 0,
            1 if record.is_sharing_enabled else 0,
            record.share_participants_summary,
            record.last_sync_at,
            record.last_sync_error,
            json.dumps(record.sync_log),
            json.dumps(record.content_dict(), sort_keys=True),
        )

    def _load(self, where: str, params: tuple) -> list[LocalRecord]:
        with self._get_connection() as conn:
            self._create_schema(conn)
            rows = conn.execute(f"SELECT * FROM records WHERE {where}", params).fetchall()
        return [self._row_to_record(row) for row in rows]

    # -- reads --

    async def fetch_by_uuid(self, uuid: str) -> LocalRecord | None:
        """Fetch a record by uuid, including staged writes."""
        if uuid in self._pending:
            staged = self._pending[uuid]
            return copy.deepcopy(staged) if staged is not None else None

        records = self._load("uuid = ?", (uuid,))
        return records[0] if records else None

    async def fetch_by_cloud_record_name(self, name: str) -> LocalRecord | None:
        """Fetch a record by its remote identity, including staged writes."""
        for staged in self._pending.values():
            if staged is not None and staged.cloud_record_name == name:
                return copy.deepcopy(staged)

        for record in self._load("cloud_record_name = ?", (name,)):
            if record.uuid not in self._pending:
                return record
        return None

    async def list_records(self) -> list[LocalRecord]:
        """All records, staged writes applied, in display order."""
        by_uuid = {r.uuid: r for r in self._load("1 = 1", ())}
        for uuid, staged in self._pending.items():
            if staged is None:
                by_uuid.pop(uuid, None)
            else:
                by_uuid[uuid] = copy.deepcopy(staged)
        return sorted(by_uuid.values(), key=lambda r: r.sort_key)

    async def has_cloud_or_shared_records(self) -> bool:
        """Whether any record is cloud-enabled or shared."""
        for record in await self.list_records():
            if record.is_cloud_enabled or record.is_sharing_enabled or record.cloud_share_record_name:
                return True
        return False

    @property
    def pending_count(self) -> int:
        """Number of staged writes not yet saved."""
        return len(self._pending)

    # -- staged writes --

    async def insert(self, record: LocalRecord) -> None:
        """Stage a new record.

        Raises:
            RecordExistsError: If a record with the same uuid exists
        """
        if await self.fetch_by_uuid(record.uuid) is not None:
            raise RecordExistsError(f"Record already exists: {record.uuid}")
        self._pending[record.uuid] = copy.deepcopy(record)

    async def update(self, record: LocalRecord) -> None:
        """Stage a full replacement of an existing record.

        Raises:
            RecordNotFoundError: If no record with this uuid exists
        """
        if await self.fetch_by_uuid(record.uuid) is None:
            raise RecordNotFoundError(f"Record not found: {record.uuid}")
        self._pending[record.uuid] = copy.deepcopy(record)

    async def delete(self, record: LocalRecord) -> None:
        """Stage deletion of a record."""
        self._pending[record.uuid] = _DELETED

    async def save_batch(self) -> int:
        """Commit all staged writes in one transaction.

        Returns:
            Number of writes committed

        Raises:
            SaveFailure: If the transaction failed. Staged writes are kept.
        """
        async with self._lock:
            if not self._pending:
                return 0

            batch = dict(self._pending)
            try:
                with self._get_connection() as conn:
                    self._create_schema(conn)
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        for uuid, record in batch.items():
                            if record is None:
                                conn.execute("DELETE FROM records WHERE uuid = ?", (uuid,))
                            else:
                                conn.execute(
                                    """
                                    INSERT OR REPLACE INTO records (
                                        uuid, created_at, updated_at, cloud_record_name,
                                        cloud_share_record_name, is_cloud_enabled,
                                        is_sharing_enabled, share_participants_summary,
                                        last_sync_at, last_sync_error, sync_log_json,
                                        content_json
                                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                                    """,
                                    self._record_to_params(record),
                                )
                        conn.execute("COMMIT")
                    except Exception:
                        conn.execute("ROLLBACK")
                        raise
            except sqlite3.Error as e:
                logger.error(
                    "Failed to save record batch",
                    extra={"pending": len(batch), "error": str(e)},
                )
                raise SaveFailure(f"Failed to save {len(batch)} record(s): {e}", pending=len(batch))

            for uuid, record in batch.items():
                if uuid in self._pending and self._pending[uuid] is record:
                    del self._pending[uuid]

            logger.debug("Saved record batch", extra={"count": len(batch)})
            return len(batch)
