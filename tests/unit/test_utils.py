"""Unit tests for shared helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from callbrain.utils import (
    generate_16_char_uuid,
    resolve_relative_date,
    speaker_label,
    to_epoch_seconds,
)

# Monday
REFERENCE = date(2026, 10, 12)


@pytest.mark.unit
class TestResolveRelativeDate:
    def test_weekday_resolves_to_next_occurrence(self):
        assert resolve_relative_date("Friday", REFERENCE) == date(2026, 10, 16)
        assert resolve_relative_date("by friday", REFERENCE) == date(2026, 10, 16)

    def test_same_weekday_means_next_week(self):
        assert resolve_relative_date("Monday", REFERENCE) == date(2026, 10, 19)

    def test_today_and_tomorrow(self):
        assert resolve_relative_date("today", REFERENCE) == REFERENCE
        assert resolve_relative_date("Tomorrow", REFERENCE) == REFERENCE + timedelta(days=1)

    def test_iso_date_passes_through(self):
        assert resolve_relative_date("2026-11-02", REFERENCE) == date(2026, 11, 2)

    @pytest.mark.parametrize("raw", [None, "", "null", "N/A", "sometime soon"])
    def test_unresolvable_values(self, raw):
        assert resolve_relative_date(raw, REFERENCE) is None


@pytest.mark.unit
class TestHelpers:
    def test_speaker_label(self):
        assert speaker_label(1) == "Me"
        assert speaker_label(2) == "Speaker 2"
        assert speaker_label(5) == "Speaker 5"

    def test_uuid_length_and_uniqueness(self):
        ids = {generate_16_char_uuid() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(value) == 16 for value in ids)

    def test_epoch_seconds_treats_naive_as_utc(self):
        aware = datetime(2026, 10, 12, 9, 0, tzinfo=timezone.utc)
        naive = datetime(2026, 10, 12, 9, 0)
        assert to_epoch_seconds(naive) == to_epoch_seconds(aware)
