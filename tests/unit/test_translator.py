"""
Unit tests for RecordTranslator.

Tests cover:
- Field mapping remote -> local
- Partial and undecodable fields
- Child collections
- Tombstones
"""

import json

import pytest

from recordsync.remote.base import RemoteRecord, Zone
from recordsync.store.records import LocalRecord, VaccinationEntry
from recordsync.sync.translator import SCHEMA_VERSION, RecordTranslator, remote_key

ZONE = Zone("SimplyHealthShareZone")


def remote(fields, name="r1", updated_at=100):
    return RemoteRecord(record_name=name, zone=ZONE, fields=fields, updated_at=updated_at)


class TestRecordTranslator:
    """Tests for RecordTranslator."""

    @pytest.fixture
    def translator(self):
        return RecordTranslator()

    def test_extract_uuid(self, translator):
        """uuid field is the local identity."""
        assert translator.extract_uuid(remote({"uuid": " u1 "})) == "u1"
        assert translator.extract_uuid(remote({"uuid": ""})) is None
        assert translator.extract_uuid(remote({})) is None

    def test_to_local_requires_uuid(self, translator):
        """Records without uuid cannot be translated."""
        with pytest.raises(ValueError):
            translator.to_local(remote({"personalGivenName": "Ada"}))

    def test_maps_present_fields_only(self, translator):
        """Absent remote fields are not part of the patch."""
        patch = translator.to_local(remote({"uuid": "u1", "personalGivenName": "Ada"}))

        assert patch.uuid == "u1"
        assert patch.values == {"personal_given_name": "Ada"}

    def test_animal_id_key(self, translator):
        """personalAnimalID keeps its remote spelling."""
        assert remote_key("personal_animal_id") == "personalAnimalID"
        patch = translator.to_local(remote({"uuid": "u1", "personalAnimalID": "chip-7"}))
        assert patch.values["personal_animal_id"] == "chip-7"

    def test_bool_from_number(self, translator):
        """isPet arrives as 0/1."""
        patch = translator.to_local(remote({"uuid": "u1", "isPet": 1}))
        assert patch.values["is_pet"] is True

    def test_undecodable_field_skipped(self, translator):
        """A field with the wrong type is ignored, the rest is kept."""
        patch = translator.to_local(
            remote({"uuid": "u1", "personalGivenName": 42, "ownerName": "Bo"})
        )

        assert "personal_given_name" not in patch
        assert patch.values["owner_name"] == "Bo"

    def test_collection_decoding(self, translator):
        """Collections are JSON arrays of camelCase objects."""
        raw = json.dumps([{"date": 10.0, "name": "Rabies", "place": "Vet"}])
        patch = translator.to_local(remote({"uuid": "u1", "vaccinationEntries": raw}))

        assert patch.values["vaccinations"] == [
            VaccinationEntry(date=10.0, name="Rabies", place="Vet")
        ]

    def test_bad_collection_omitted(self, translator):
        """Undecodable collections leave the local collection untouched."""
        patch = translator.to_local(remote({"uuid": "u1", "bloodEntries": "{not json"}))
        assert "blood" not in patch

    def test_apply_patch(self, translator):
        """Applying a patch only touches patched fields."""
        record = LocalRecord(uuid="u1", personal_given_name="Old", owner_name="Keep")
        translator.to_local(remote({"uuid": "u1", "personalGivenName": "New"})).apply(record)

        assert record.personal_given_name == "New"
        assert record.owner_name == "Keep"

    def test_tombstone(self, translator):
        """isDeleted marks a soft deletion."""
        assert translator.is_tombstone(remote({"uuid": "u1", "isDeleted": 1}))
        assert not translator.is_tombstone(remote({"uuid": "u1"}))
        assert not translator.is_tombstone(remote({"uuid": "u1", "isDeleted": "maybe"}))

    def test_to_remote_restores_content(self, translator):
        """Content survives to_remote then to_local."""
        record = LocalRecord(
            uuid="u1",
            is_pet=True,
            personal_name="Rex",
            personal_birthdate=1700000000000,
            vaccinations=[VaccinationEntry(name="Rabies")],
        )
        fields = translator.to_remote(record)

        assert fields["isPet"] == 1
        assert fields["schemaVersion"] == SCHEMA_VERSION

        restored = LocalRecord(uuid="u1")
        translator.to_local(remote(fields)).apply(restored)

        assert restored.content_dict() == record.content_dict()
        assert restored.created_at == record.created_at
