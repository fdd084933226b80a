"""
Record translation between remote field bags and LocalRecord.

This is the only place that knows remote field names. The merge engine
works with RecordPatch objects and never touches raw remote fields.

Pure functions with no I/O - fully testable.

Invariants:
    - to_local() only contains fields present (and decodable) remotely
    - to_remote(record) then to_local() restores every content field
    - Child collections travel as JSON strings of camelCase objects

How to change safely:
    - New remote fields: add the local attribute to LocalRecord, the
      remote name is derived (snake_case -> camelCase)
    - Bump SCHEMA_VERSION only for incompatible remote layout changes
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..remote.base import RemoteRecord
from ..store.records import LocalRecord, camel_case

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Remote keys for child collections, by local attribute.
COLLECTION_KEYS: dict[str, str] = {
    "blood": "bloodEntries",
    "drugs": "drugEntries",
    "vaccinations": "vaccinationEntries",
    "allergy": "allergyEntries",
    "illness": "illnessEntries",
    "risks": "riskEntries",
    "medical_history": "medicalHistoryEntries",
    "medical_documents": "medicalDocumentEntries",
    "human_doctors": "humanDoctorEntries",
    "weights": "weightEntries",
    "pet_yearly_costs": "petYearlyCostEntries",
    "emergency_contacts": "emergencyContactEntries",
}

# Remote names that do not follow plain camelCase.
REMOTE_KEY_OVERRIDES: dict[str, str] = {"personal_animal_id": "personalAnimalID"}

BOOL_FIELDS = frozenset({"is_pet"})
TIMESTAMP_FIELDS = frozenset({"personal_birthdate"})


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str) and value.lower() in ("1", "true", "0", "false"):
        return value.lower() in ("1", "true")
    raise ValueError(f"not a boolean: {value!r}")


def _as_timestamp(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"not a timestamp: {value!r}")
    return int(value)


def _as_required_timestamp(value: Any) -> int:
    if value is None:
        raise ValueError("missing timestamp")
    return _as_timestamp(value)  # type: ignore[return-value]


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"not a string: {value!r}")
    return value


def remote_key(name: str) -> str:
    """Remote field name for a local content attribute."""
    return REMOTE_KEY_OVERRIDES.get(name) or camel_case(name)


def _converter(name: str) -> Callable[[Any], Any]:
    if name in BOOL_FIELDS:
        return _as_bool
    if name in TIMESTAMP_FIELDS:
        return _as_timestamp
    return _as_str


@dataclass
class RecordPatch:
    """Sparse set of field assignments for one LocalRecord.

    Attributes:
        uuid: Record the patch belongs to
        values: Local attribute name -> new value
    """

    uuid: str
    values: dict[str, Any] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __len__(self) -> int:
        return len(self.values)

    def set(self, name: str, value: Any) -> None:
        self.values[name] = value

    def apply(self, record: LocalRecord) -> None:
        """Assign every patched field on record."""
        for name, value in self.values.items():
            setattr(record, name, copy.deepcopy(value))


class RecordTranslator:
    """Maps RemoteRecord field bags to and from LocalRecord.

    Example:
        >>> translator = RecordTranslator()
        >>> patch = translator.to_local(remote_record)
        >>> patch.apply(local_record)
    """

    def extract_uuid(self, remote: RemoteRecord) -> Optional[str]:
        """Local identity carried by a remote record, if any."""
        value = remote.fields.get("uuid")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def is_tombstone(self, remote: RemoteRecord) -> bool:
        """Whether the record is a soft-deletion marker."""
        try:
            return _as_bool(remote.fields.get("isDeleted", False))
        except ValueError:
            return False

    def to_local(self, remote: RemoteRecord) -> RecordPatch:
        """Build the patch described by a remote record.

        Raises:
            ValueError: If the remote record has no uuid
        """
        uuid = self.extract_uuid(remote)
        if uuid is None:
            raise ValueError(f"Remote record {remote.record_name} has no uuid")

        patch = RecordPatch(uuid=uuid)
        fields = remote.fields

        if "createdAt" in fields:
            self._assign(patch, remote, "created_at", "createdAt", _as_required_timestamp)

        for name in LocalRecord.CONTENT_FIELDS:
            key = remote_key(name)
            if key in fields:
                self._assign(patch, remote, name, key, _converter(name))

        for name, key in COLLECTION_KEYS.items():
            if key in fields:
                entries = self._decode_collection(remote, name, key)
                if entries is not None:
                    patch.set(name, entries)

        if "isSharingEnabled" in fields:
            self._assign(patch, remote, "is_sharing_enabled", "isSharingEnabled", _as_bool)

        return patch

    def _assign(
        self,
        patch: RecordPatch,
        remote: RemoteRecord,
        name: str,
        key: str,
        convert: Callable[[Any], Any],
    ) -> None:
        try:
            patch.set(name, convert(remote.fields[key]))
        except ValueError as e:
            logger.warning(
                "Ignoring undecodable remote field",
                extra={"record": remote.record_name, "field": key, "error": str(e)},
            )

    def _decode_collection(self, remote: RemoteRecord, name: str, key: str) -> Optional[list]:
        raw = remote.fields[key]
        entry_cls = LocalRecord.COLLECTIONS[name]
        try:
            items = json.loads(raw) if isinstance(raw, str) else raw
            if not isinstance(items, list):
                raise ValueError("expected a JSON array")
            return [entry_cls.from_dict(item) for item in items]
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(
                "Ignoring undecodable remote collection",
                extra={"record": remote.record_name, "field": key, "error": str(e)},
            )
            return None

    def to_remote(self, record: LocalRecord) -> dict[str, Any]:
        """Field bag for pushing a record, inverse of to_local()."""
        fields: dict[str, Any] = {
            "uuid": record.uuid,
            "createdAt": record.created_at,
            "updatedAt": record.updated_at,
        }
        for name in LocalRecord.CONTENT_FIELDS:
            value = getattr(record, name)
            fields[remote_key(name)] = (1 if value else 0) if name in BOOL_FIELDS else value

        for name, key in COLLECTION_KEYS.items():
            fields[key] = json.dumps([entry.to_dict() for entry in getattr(record, name)])

        fields["schemaVersion"] = SCHEMA_VERSION
        return fields
