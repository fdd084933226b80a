"""
Pull-side synchronization for recordsync.

- RecordTranslator: remote field bags <-> LocalRecord
- MergeEngine: last-writer-wins merge into the local store
- ZoneDirectory: which zones a pass visits
- SyncOrchestrator: per-zone passes with cursor handling

Data flow:
    RemoteFetchClient -> SyncOrchestrator -> MergeEngine -> LocalStore
                              |
                              +-> CursorStore (after a saved merge)
"""

from .merge import MergeEngine, MergeReport
from .orchestrator import (
    PassMode,
    SyncOrchestrator,
    SyncReport,
    ZoneState,
    ZoneSyncResult,
)
from .translator import SCHEMA_VERSION, RecordPatch, RecordTranslator
from .zones import ZoneDirectory

__all__ = [
    "RecordTranslator",
    "RecordPatch",
    "SCHEMA_VERSION",
    "MergeEngine",
    "MergeReport",
    "ZoneDirectory",
    "SyncOrchestrator",
    "SyncReport",
    "ZoneSyncResult",
    "ZoneState",
    "PassMode",
]
