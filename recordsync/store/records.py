"""
Local record schema for recordsync.

A LocalRecord is one person's or one pet's health record. It is a flat set
of typed content fields plus child collections, and the sync metadata the
pull side reads and writes.

Invariants:
    - uuid is the record's identity for its whole lifetime
    - updated_at is Unix ms and only moves forward on local edits
    - Sharing visibility dominates cloud visibility, which dominates local
    - sync_log keeps at most SYNC_LOG_LIMIT lines, oldest dropped first

How to change safely:
    - New content fields need a default so old rows still load
    - Add them to CONTENT_FIELDS so the translator maps them
    - New child entry fields need defaults, remote JSON may lack them
"""

from __future__ import annotations

import re
import time
import uuid as uuid_module
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

SYNC_LOG_LIMIT = 50


def now_ms() -> int:
    """Current time in Unix milliseconds."""
    return int(time.time() * 1000)


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class RecordLocationStatus(Enum):
    """Where a record is visible."""

    LOCAL = "local"
    CLOUD = "cloud"
    SHARED = "shared"


class Entry:
    """Mixin for child collection entries.

    Entries travel as JSON objects with camelCase keys. Unknown keys are
    ignored and missing keys keep the dataclass default.
    """

    def to_dict(self) -> dict[str, Any]:
        """Convert to the remote JSON representation."""
        return {camel_case(k): v for k, v in asdict(self).items()}  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        """Create from the remote JSON representation."""
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        kwargs = {}
        for key, value in data.items():
            name = snake_case(key)
            if name in known:
                kwargs[name] = value
        return cls(**kwargs)


@dataclass
class BloodEntry(Entry):
    date: float | None = None
    name: str = ""
    comment: str = ""


@dataclass
class DrugEntry(Entry):
    date: float | None = None
    name_and_dosage: str = ""
    comment: str = ""


@dataclass
class VaccinationEntry(Entry):
    date: float | None = None
    name: str = ""
    information: str = ""
    place: str = ""
    comment: str = ""


@dataclass
class AllergyEntry(Entry):
    date: float | None = None
    name: str = ""
    information: str = ""
    comment: str = ""


@dataclass
class IllnessEntry(Entry):
    date: float | None = None
    name: str = ""
    information_or_comment: str = ""


@dataclass
class RiskEntry(Entry):
    date: float | None = None
    name: str = ""
    description_or_comment: str = ""


@dataclass
class MedicalHistoryEntry(Entry):
    date: float | None = None
    name: str = ""
    contact: str = ""
    information_or_comment: str = ""


@dataclass
class MedicalDocumentEntry(Entry):
    date: float | None = None
    name: str = ""
    note: str = ""


@dataclass
class HumanDoctorEntry(Entry):
    uuid: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    type: str = ""
    name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    note: str = ""


@dataclass
class WeightEntry(Entry):
    uuid: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    date: float | None = None
    weight_kg: float | None = None
    comment: str = ""


@dataclass
class PetYearlyCostEntry(Entry):
    uuid: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    date: float | None = None
    year: int = 0
    category: str = ""
    amount: float = 0.0
    note: str = ""


@dataclass
class EmergencyContact(Entry):
    id: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    name: str = ""
    phone: str = ""
    email: str = ""
    note: str = ""


@dataclass
class LocalRecord:
    """A locally persisted health record.

    Attributes:
        uuid: Stable record identity (string UUID)
        created_at: Creation timestamp (Unix ms)
        updated_at: Last mutation timestamp (Unix ms)
        cloud_record_name: Remote identity once mirrored
        cloud_share_record_name: Identity of the associated share object
        is_cloud_enabled: Record is mirrored to the owner's cloud zone
        is_sharing_enabled: Record is visible to share participants
        share_participants_summary: Human readable list of participants
        last_sync_at: When the pull side last changed this record (Unix ms)
        last_sync_error: Last sync failure that touched this record
        sync_log: Diagnostic trail, newest last
    """

    # Content fields mirrored to the remote store, in remote field order.
    CONTENT_FIELDS: ClassVar[tuple[str, ...]] = (
        "is_pet",
        "personal_family_name",
        "personal_given_name",
        "personal_nick_name",
        "personal_gender",
        "personal_birthdate",
        "personal_social_security_number",
        "personal_address",
        "personal_health_insurance",
        "personal_health_insurance_number",
        "personal_employer",
        "personal_name",
        "personal_animal_id",
        "pet_breed",
        "pet_color",
        "owner_name",
        "owner_phone",
        "owner_email",
        "vet_clinic_name",
        "vet_contact_name",
        "vet_phone",
        "vet_email",
        "vet_address",
        "vet_note",
        "emergency_name",
        "emergency_number",
        "emergency_email",
    )

    # Child collections: attribute -> entry class.
    COLLECTIONS: ClassVar[dict[str, type]] = {
        "blood": BloodEntry,
        "drugs": DrugEntry,
        "vaccinations": VaccinationEntry,
        "allergy": AllergyEntry,
        "illness": IllnessEntry,
        "risks": RiskEntry,
        "medical_history": MedicalHistoryEntry,
        "medical_documents": MedicalDocumentEntry,
        "human_doctors": HumanDoctorEntry,
        "weights": WeightEntry,
        "pet_yearly_costs": PetYearlyCostEntry,
        "emergency_contacts": EmergencyContact,
    }

    uuid: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    is_pet: bool = False
    personal_family_name: str = ""
    personal_given_name: str = ""
    personal_nick_name: str = ""
    personal_gender: str = ""
    personal_birthdate: int | None = None
    personal_social_security_number: str = ""
    personal_address: str = ""
    personal_health_insurance: str = ""
    personal_health_insurance_number: str = ""
    personal_employer: str = ""
    personal_name: str = ""
    personal_animal_id: str = ""
    pet_breed: str = ""
    pet_color: str = ""
    owner_name: str = ""
    owner_phone: str = ""
    owner_email: str = ""
    vet_clinic_name: str = ""
    vet_contact_name: str = ""
    vet_phone: str = ""
    vet_email: str = ""
    vet_address: str = ""
    vet_note: str = ""
    emergency_name: str = ""
    emergency_number: str = ""
    emergency_email: str = ""

    blood: list[BloodEntry] = field(default_factory=list)
    drugs: list[DrugEntry] = field(default_factory=list)
    vaccinations: list[VaccinationEntry] = field(default_factory=list)
    allergy: list[AllergyEntry] = field(default_factory=list)
    illness: list[IllnessEntry] = field(default_factory=list)
    risks: list[RiskEntry] = field(default_factory=list)
    medical_history: list[MedicalHistoryEntry] = field(default_factory=list)
    medical_documents: list[MedicalDocumentEntry] = field(default_factory=list)
    human_doctors: list[HumanDoctorEntry] = field(default_factory=list)
    weights: list[WeightEntry] = field(default_factory=list)
    pet_yearly_costs: list[PetYearlyCostEntry] = field(default_factory=list)
    emergency_contacts: list[EmergencyContact] = field(default_factory=list)

    cloud_record_name: str | None = None
    cloud_share_record_name: str | None = None
    is_cloud_enabled: bool = False
    is_sharing_enabled: bool = False
    share_participants_summary: str = ""
    last_sync_at: int | None = None
    last_sync_error: str | None = None
    sync_log: list[str] = field(default_factory=list)

    @property
    def location_status(self) -> RecordLocationStatus:
        """Visibility of the record: shared > cloud > local."""
        if self.cloud_share_record_name or self.is_sharing_enabled:
            return RecordLocationStatus.SHARED
        if self.is_cloud_enabled:
            return RecordLocationStatus.CLOUD
        return RecordLocationStatus.LOCAL

    @property
    def display_name(self) -> str:
        """Human readable name used in lists and import feedback."""
        if self.is_pet:
            name = self.personal_name.strip()
            return name or "Pet"

        parts = [
            self.personal_family_name.strip(),
            self.personal_given_name.strip(),
            self.personal_nick_name.strip(),
        ]
        parts = [p for p in parts if p]
        return " - ".join(parts) if parts else "Person"

    @property
    def sort_key(self) -> str:
        """Humans first, then pets, each by display name."""
        prefix = "1-" if self.is_pet else "0-"
        return prefix + self.display_name.lower()

    def append_sync_log(self, line: str, limit: int = SYNC_LOG_LIMIT) -> None:
        """Append a diagnostic line, dropping the oldest beyond limit."""
        self.sync_log.append(line)
        if len(self.sync_log) > limit:
            del self.sync_log[: len(self.sync_log) - limit]

    def content_dict(self) -> dict[str, Any]:
        """Content fields and collections as plain values."""
        data: dict[str, Any] = {name: getattr(self, name) for name in self.CONTENT_FIELDS}
        for name in self.COLLECTIONS:
            data[name] = [entry.to_dict() for entry in getattr(self, name)]
        return data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage and API responses."""
        data = self.content_dict()
        data.update(
            {
                "uuid": self.uuid,
                "created_at": self.created_at,
                "updated_at": self.updated_at,
                "cloud_record_name": self.cloud_record_name,
                "cloud_share_record_name": self.cloud_share_record_name,
                "is_cloud_enabled": self.is_cloud_enabled,
                "is_sharing_enabled": self.is_sharing_enabled,
                "share_participants_summary": self.share_participants_summary,
                "last_sync_at": self.last_sync_at,
                "last_sync_error": self.last_sync_error,
                "sync_log": list(self.sync_log),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalRecord:
        """Create from dictionary produced by to_dict()."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            entry_cls = cls.COLLECTIONS.get(key)
            if entry_cls is not None:
                value = [entry_cls.from_dict(item) for item in value or []]
            kwargs[key] = value
        return cls(**kwargs)
