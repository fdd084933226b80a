"""
Unit tests for the LocalRecord schema.

Tests cover:
- Location status precedence
- Display names and ordering
- Sync log bounds
- Dictionary conversion
"""

from recordsync.store.records import (
    BloodEntry,
    LocalRecord,
    RecordLocationStatus,
    WeightEntry,
    camel_case,
    snake_case,
)


class TestLocationStatus:
    """Tests for sharing/cloud/local precedence."""

    def test_sharing_flag_dominates_cloud(self):
        """isSharingEnabled without cloud mirroring reports shared."""
        record = LocalRecord(is_cloud_enabled=False, is_sharing_enabled=True)
        assert record.location_status == RecordLocationStatus.SHARED

    def test_share_record_name_reports_shared(self):
        """A share identity alone reports shared."""
        record = LocalRecord(cloud_share_record_name="s1")
        assert record.location_status == RecordLocationStatus.SHARED

    def test_cloud_without_share(self):
        """Cloud mirroring without a share reports cloud."""
        record = LocalRecord(is_cloud_enabled=True, is_sharing_enabled=False)
        assert record.location_status == RecordLocationStatus.CLOUD

    def test_local_only(self):
        """Both flags false reports local."""
        record = LocalRecord()
        assert record.location_status == RecordLocationStatus.LOCAL


class TestDisplayName:
    """Tests for display names and sort order."""

    def test_person_name_parts(self):
        """Family, given and nick name joined with dashes."""
        record = LocalRecord(
            personal_family_name="Lovelace",
            personal_given_name="Ada",
            personal_nick_name="",
        )
        assert record.display_name == "Lovelace - Ada"

    def test_person_fallback(self):
        """Unnamed humans are 'Person'."""
        assert LocalRecord().display_name == "Person"

    def test_pet_name(self):
        """Pets use personal_name."""
        record = LocalRecord(is_pet=True, personal_name=" Rex ")
        assert record.display_name == "Rex"

    def test_pet_fallback(self):
        """Unnamed pets are 'Pet'."""
        assert LocalRecord(is_pet=True).display_name == "Pet"

    def test_humans_sort_before_pets(self):
        """Sort key puts humans first."""
        pet = LocalRecord(is_pet=True, personal_name="Aaron")
        human = LocalRecord(personal_given_name="Zoe")
        assert sorted([pet, human], key=lambda r: r.sort_key) == [human, pet]


class TestSyncLog:
    """Tests for the bounded sync log."""

    def test_append_keeps_newest(self):
        """Oldest lines are dropped beyond the limit."""
        record = LocalRecord()
        for i in range(5):
            record.append_sync_log(f"line {i}", limit=3)

        assert record.sync_log == ["line 2", "line 3", "line 4"]


class TestConversion:
    """Tests for dictionary conversion."""

    def test_case_helpers(self):
        """snake_case and camel_case are inverses for field names."""
        assert camel_case("personal_health_insurance_number") == "personalHealthInsuranceNumber"
        assert snake_case("personalHealthInsuranceNumber") == "personal_health_insurance_number"

    def test_entry_uses_camel_case(self):
        """Entries serialize with camelCase keys."""
        entry = WeightEntry(uuid="w1", date=1.5, weight_kg=12.0)
        assert entry.to_dict() == {"uuid": "w1", "date": 1.5, "weightKg": 12.0, "comment": ""}

    def test_entry_ignores_unknown_keys(self):
        """Unknown keys from newer clients are dropped."""
        entry = BloodEntry.from_dict({"name": "A+", "futureField": 1})
        assert entry.name == "A+"

    def test_record_round_trip(self):
        """to_dict/from_dict preserve content and sync fields."""
        record = LocalRecord(
            uuid="u1",
            personal_given_name="Ada",
            blood=[BloodEntry(name="0-")],
            cloud_record_name="r1",
            sync_log=["x"],
        )

        restored = LocalRecord.from_dict(record.to_dict())

        assert restored == record
