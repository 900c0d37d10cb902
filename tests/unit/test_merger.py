"""
Unit tests for the state merger.
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from ledger_sync.reconciliation.merger import TIME_FIELD, StateMerger, format_timestamp

STAMP = "2024-03-01T12:00:00.000Z"
OLD_STAMP = "2023-12-31T08:15:30.250Z"


class TestFormatTimestamp:
    """Test timestamp formatting."""

    def test_millisecond_precision_with_z_suffix(self):
        moment = datetime(2024, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

        assert format_timestamp(moment) == "2024-03-01T12:00:00.123Z"

    def test_naive_datetime_treated_as_utc(self):
        assert format_timestamp(datetime(2024, 3, 1, 12, 0, 0)) == STAMP

    def test_other_timezone_converted(self):
        plus_two = timezone(timedelta(hours=2))
        moment = datetime(2024, 3, 1, 14, 0, 0, tzinfo=plus_two)

        assert format_timestamp(moment) == STAMP


class TestStateMerger:
    """Test suite for StateMerger."""

    @pytest.fixture
    def merger(self, clock):
        return StateMerger(clock=clock)

    def test_new_records_are_stamped(self, merger):
        """Test records with no committed counterpart get a fresh stamp."""
        result = merger.merge([{"title": "A"}, {"title": "B"}], [])

        assert result == [
            {"title": "A", TIME_FIELD: STAMP},
            {"title": "B", TIME_FIELD: STAMP},
        ]

    def test_existing_stamp_preserved(self, merger):
        """Test the committed stamp is carried over even when fields change."""
        result = merger.merge(
            [{"title": "A (moved)"}],
            [{"title": "A", TIME_FIELD: OLD_STAMP}]
        )

        assert result == [{"title": "A (moved)", TIME_FIELD: OLD_STAMP}]

    def test_counterpart_without_stamp_gets_fresh_one(self, merger):
        """Test a committed record lacking a stamp does not block stamping."""
        result = merger.merge([{"title": "A"}], [{"title": "A"}])

        assert result[0][TIME_FIELD] == STAMP

    def test_desired_fields_win(self, merger):
        """Test every non-stamp field comes from the desired record."""
        result = merger.merge(
            [{"title": "A"}],
            [{"title": "A", "room": "gone", TIME_FIELD: OLD_STAMP}]
        )

        assert result == [{"title": "A", TIME_FIELD: OLD_STAMP}]

    def test_desired_stamp_is_overridden(self, merger):
        """Test a stray Time value in the desired record never survives."""
        result = merger.merge([{"title": "A", TIME_FIELD: "bogus"}], [])

        assert result[0][TIME_FIELD] == STAMP

    def test_positional_pairing(self, merger):
        """Test stamps pair by position and trailing records are stamped."""
        result = merger.merge(
            [{"title": "A"}, {"title": "B"}, {"title": "C"}],
            [{"title": "x", TIME_FIELD: "t1"}, {"title": "y", TIME_FIELD: "t2"}]
        )

        assert [r[TIME_FIELD] for r in result] == ["t1", "t2", STAMP]

    def test_removed_records_dropped(self, merger):
        """Test committed records beyond the desired ones are not carried."""
        result = merger.merge([{"title": "A"}], [{"title": "A", TIME_FIELD: "t1"}, {"title": "B", TIME_FIELD: "t2"}])

        assert len(result) == 1

    def test_inputs_not_mutated(self, merger):
        desired = [{"title": "A"}]
        committed = [{"title": "A", TIME_FIELD: OLD_STAMP}]

        merger.merge(desired, committed)

        assert desired == [{"title": "A"}]
        assert committed == [{"title": "A", TIME_FIELD: OLD_STAMP}]

    def test_one_stamp_per_merge(self, clock):
        """Test every new record in one merge shares the same stamp."""
        calls = []

        def counting_clock():
            calls.append(1)
            return clock()

        StateMerger(clock=counting_clock).merge([{"a": 1}, {"a": 2}, {"a": 3}], [])

        assert len(calls) == 1


class TestKeyedMerge:
    """Test merging by identifier."""

    @pytest.fixture
    def merger(self, clock):
        return StateMerger(clock=clock)

    def test_reordered_records_keep_their_stamps(self, merger):
        """Test stamps follow the identifier, not the position."""
        committed = [
            {"Id": "r1", "title": "A", TIME_FIELD: "t1"},
            {"Id": "r2", "title": "B", TIME_FIELD: "t2"},
        ]
        desired = [{"Id": "r2", "title": "B"}, {"Id": "r1", "title": "A"}]

        result = merger.merge(desired, committed, key_field="Id")

        assert result == [
            {"Id": "r2", "title": "B", TIME_FIELD: "t2"},
            {"Id": "r1", "title": "A", TIME_FIELD: "t1"},
        ]

    def test_inserted_record_stamped(self, merger):
        """Test a record inserted mid-table gets a fresh stamp."""
        committed = [{"Id": 1, TIME_FIELD: "t1"}, {"Id": 2, TIME_FIELD: "t2"}]
        desired = [{"Id": 1}, {"Id": 3}, {"Id": 2}]

        result = merger.merge(desired, committed, key_field="Id")

        assert [r[TIME_FIELD] for r in result] == ["t1", STAMP, "t2"]

    def test_missing_key_raises(self, merger):
        with pytest.raises(ValueError, match="no value for key field 'Id'"):
            merger.merge([{"title": "A"}], [], key_field="Id")

    def test_duplicate_keys_pair_in_row_order(self, merger, caplog):
        """Test repeated identifiers each keep the stamp of their own occurrence."""
        committed = [
            {"Id": "r1", "slot": "am", TIME_FIELD: "t1"},
            {"Id": "r1", "slot": "pm", TIME_FIELD: "t2"},
        ]
        desired = [
            {"Id": "r1", "slot": "am"},
            {"Id": "r1", "slot": "pm"},
            {"Id": "r1", "slot": "eve"},
        ]

        with caplog.at_level(logging.WARNING, logger="ledger_sync.reconciliation.merger"):
            result = merger.merge(desired, committed, key_field="Id")

        assert [r[TIME_FIELD] for r in result] == ["t1", "t2", STAMP]
        assert "Duplicate Id values in desired records: r1" in caplog.text
