"""
Unit tests for reconciliation differ module.

Tests discrepancy counting between desired and committed states.
"""

import pytest


class TestStateDiffer:
    """Test discrepancy detection."""

    @pytest.fixture
    def differ(self):
        """Create a StateDiffer instance."""
        from ledger_sync.reconciliation.differ import StateDiffer
        return StateDiffer()

    def test_no_discrepancies(self, differ):
        """Test identical states yield only unchanged records."""
        records = [{"title": "A"}, {"title": "B"}]

        summary = differ.summarize(records, [dict(r) for r in records])

        assert summary == {"added": 0, "removed": 0, "changed": 0, "unchanged": 2}

    def test_positional_added_records(self, differ):
        """Test trailing desired records count as added."""
        summary = differ.summarize(
            [{"title": "A"}, {"title": "B"}, {"title": "C"}],
            [{"title": "A"}]
        )

        assert summary["added"] == 2
        assert summary["removed"] == 0
        assert summary["unchanged"] == 1

    def test_positional_removed_records(self, differ):
        """Test trailing committed records count as removed."""
        summary = differ.summarize([{"title": "A"}], [{"title": "A"}, {"title": "B"}])

        assert summary["removed"] == 1
        assert summary["added"] == 0

    def test_positional_changed_records(self, differ):
        """Test pairs with differing values count as changed."""
        summary = differ.summarize(
            [{"title": "A"}, {"title": "B2"}],
            [{"title": "A"}, {"title": "B"}]
        )

        assert summary["changed"] == 1
        assert summary["unchanged"] == 1

    def test_ignore_time_field(self, differ):
        """Test committed stamps do not count as changes when ignored."""
        summary = differ.summarize(
            [{"title": "A"}],
            [{"title": "A", "Time": "2024-01-01T00:00:00.000Z"}],
            ignore_fields=["Time"]
        )

        assert summary["changed"] == 0

    def test_keyed_pairing(self, differ):
        """Test identifier pairing is insensitive to order."""
        desired = [{"Id": 2, "title": "B"}, {"Id": 1, "title": "A"}, {"Id": 3, "title": "C"}]
        committed = [{"Id": 1, "title": "A"}, {"Id": 2, "title": "old"}, {"Id": 4, "title": "D"}]

        summary = differ.summarize(desired, committed, key_field="Id")

        assert summary == {"added": 1, "removed": 1, "changed": 1, "unchanged": 1}

    def test_keyed_pairing_missing_key_raises(self, differ):
        """Test records without an identifier are rejected."""
        with pytest.raises(ValueError, match="Invalid record at index 0"):
            differ.summarize([{"title": "A"}], [], key_field="Id")


class TestKeyHelpers:
    """Test key extraction and indexing."""

    @pytest.fixture
    def differ(self):
        from ledger_sync.reconciliation.differ import StateDiffer
        return StateDiffer()

    def test_extract_key(self, differ):
        """Test keys are returned as strings."""
        assert differ.extract_key({"Id": 7}, "Id") == "7"

    def test_extract_key_missing_field(self, differ):
        """Test a missing key field raises KeyError."""
        with pytest.raises(KeyError, match="Key field 'Id' not found"):
            differ.extract_key({"title": "A"}, "Id")

    def test_extract_key_null(self, differ):
        """Test a NULL key raises ValueError."""
        with pytest.raises(ValueError, match="NULL"):
            differ.extract_key({"Id": None}, "Id")

    def test_build_key_index_last_wins(self, differ):
        """Test duplicates resolve to the last occurrence."""
        index = differ.build_key_index([{"Id": 1, "v": "a"}, {"Id": 1, "v": "b"}], "Id")

        assert index == {"1": {"Id": 1, "v": "b"}}

    def test_find_duplicates(self, differ):
        """Test duplicate identifiers are reported with counts."""
        duplicates = differ.find_duplicates(
            [{"Id": 1}, {"Id": 2}, {"Id": 1}, {"Id": 1}],
            "Id"
        )

        assert duplicates == [{"key": "1", "count": 3}]
