"""
Local persistence for recordsync.

This package owns all durable local state:
- LocalStore: the record database (Local Store Adapter)
- CursorStore: per-zone change tokens and global preferences
- records: the LocalRecord schema and its child entries

Invariants:
    - Records and cursors live in separate SQLite files
    - Only LocalStore writes record rows
"""

from .cursor_store import SYNC_WHEN_NO_CLOUD_RECORDS, CursorStore
from .local_store import LocalStore, RecordExistsError, RecordNotFoundError
from .records import (
    SYNC_LOG_LIMIT,
    AllergyEntry,
    BloodEntry,
    DrugEntry,
    EmergencyContact,
    HumanDoctorEntry,
    IllnessEntry,
    LocalRecord,
    MedicalDocumentEntry,
    MedicalHistoryEntry,
    PetYearlyCostEntry,
    RecordLocationStatus,
    RiskEntry,
    VaccinationEntry,
    WeightEntry,
    now_ms,
)

__all__ = [
    # Stores
    "LocalStore",
    "CursorStore",
    "RecordExistsError",
    "RecordNotFoundError",
    "SYNC_WHEN_NO_CLOUD_RECORDS",
    # Schema
    "LocalRecord",
    "RecordLocationStatus",
    "SYNC_LOG_LIMIT",
    "now_ms",
    "BloodEntry",
    "DrugEntry",
    "VaccinationEntry",
    "AllergyEntry",
    "IllnessEntry",
    "RiskEntry",
    "MedicalHistoryEntry",
    "MedicalDocumentEntry",
    "HumanDoctorEntry",
    "WeightEntry",
    "PetYearlyCostEntry",
    "EmergencyContact",
]
