"""
Cursor store for recordsync.

Persists one opaque change token per synchronized zone, plus the global
sync preferences. Lives in its own SQLite file so wiping the record
database does not silently invalidate cursors, and vice versa.

Invariants:
    - Tokens are stored and returned byte-for-byte, never inspected
    - One token per zone key; set() overwrites
    - Access is serialized by a lock, last write wins

How to change safely:
    - Zone keys are persisted, never change Zone.key formatting
    - New preferences need a default in get_preference callers

Table schema:
    cursors:
        - zone_key TEXT PRIMARY KEY
        - token BLOB
        - updated_at INTEGER (Unix ms)

    preferences:
        - name TEXT PRIMARY KEY
        - value TEXT (JSON)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from ..remote.base import Zone

logger = logging.getLogger(__name__)

SYNC_WHEN_NO_CLOUD_RECORDS = "sync_when_no_cloud_records"


def _zone_key(zone: Union[Zone, str]) -> str:
    return zone if isinstance(zone, str) else zone.key


class CursorStore:
    """Persistent per-zone change tokens.

    Example:
        >>> cursors = CursorStore("/var/lib/recordsync/cursors.db")
        >>> await cursors.set(zone, b"token")
        >>> await cursors.get(zone)
        b'token'
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize the cursor store.

        Args:
            db_path: Path of the SQLite database file
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection with the schema in place."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS cursors (
                    zone_key TEXT PRIMARY KEY,
                    token BLOB NOT NULL,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS preferences (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
            """)
            yield conn
        finally:
            conn.close()

    async def get(self, zone: Union[Zone, str]) -> bytes | None:
        """Get the stored token for a zone, or None."""
        async with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT token FROM cursors WHERE zone_key = ?", (_zone_key(zone),)
                ).fetchone()
        return bytes(row[0]) if row else None

    async def set(self, zone: Union[Zone, str], token: bytes) -> None:
        """Store the token for a zone, replacing any previous one."""
        key = _zone_key(zone)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO cursors (zone_key, token, updated_at) VALUES (?, ?, ?)",
                    (key, sqlite3.Binary(token), int(time.time() * 1000)),
                )
        logger.debug("Stored change token", extra={"zone": key, "size": len(token)})

    async def clear(self, zone: Union[Zone, str]) -> None:
        """Forget the token for a zone."""
        key = _zone_key(zone)
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM cursors WHERE zone_key = ?", (key,))
        logger.info("Cleared change token", extra={"zone": key})

    async def zones(self) -> list[str]:
        """Keys of all zones with a stored token."""
        async with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute("SELECT zone_key FROM cursors ORDER BY zone_key").fetchall()
        return [row[0] for row in rows]

    async def get_preference(self, name: str, default: Any = None) -> Any:
        """Read a global preference."""
        async with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM preferences WHERE name = ?", (name,)
                ).fetchone()
        return json.loads(row[0]) if row else default

    async def set_preference(self, name: str, value: Any) -> None:
        """Write a global preference."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO preferences (name, value) VALUES (?, ?)",
                    (name, json.dumps(value)),
                )
        logger.info("Preference updated", extra={"preference": name, "value": value})
