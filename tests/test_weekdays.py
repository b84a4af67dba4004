"""Tests for studyfit.core.weekdays — weekday translation and logical day."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studyfit.core.weekdays import (
    PLATFORM_WEEKDAY,
    day_key_of,
    day_key_to_weekday,
    has_passed_this_week,
    logical_day_key,
    logical_ymd,
    next_occurrence,
    to_platform_weekday,
    weekday_to_day_key,
)

KST = ZoneInfo("Asia/Seoul")

# 2026-03-04 is a Wednesday.
WED_10AM = datetime(2026, 3, 4, 10, 0, tzinfo=KST)


# ---------------------------------------------------------------------------
# Weekday numbering
# ---------------------------------------------------------------------------


class TestPlatformWeekday:
    @pytest.mark.parametrize(
        "day_key,platform",
        [("mon", 2), ("tue", 3), ("wed", 4), ("thu", 5), ("fri", 6), ("sat", 7), ("sun", 1)],
    )
    def test_every_day_maps_through_table(self, day_key, platform):
        weekday = day_key_to_weekday(day_key)
        assert to_platform_weekday(weekday) == platform
        assert PLATFORM_WEEKDAY[weekday] == platform

    def test_platform_numbering_matches_calendar(self):
        # Platform 1=Sunday: the platform day of a date equals (isoweekday % 7) + 1.
        for offset in range(7):
            moment = datetime(2026, 3, 2 + offset, tzinfo=KST)
            weekday = day_key_to_weekday(day_key_of(moment))
            assert to_platform_weekday(weekday) == moment.isoweekday() % 7 + 1

    def test_table_is_a_bijection(self):
        assert sorted(PLATFORM_WEEKDAY.values()) == list(range(1, 8))

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            to_platform_weekday(0)
        with pytest.raises(ValueError):
            to_platform_weekday(8)


class TestDayKeys:
    def test_round_trip(self):
        for weekday in range(1, 8):
            assert day_key_to_weekday(weekday_to_day_key(weekday)) == weekday

    def test_unknown_day_key(self):
        with pytest.raises(KeyError):
            day_key_to_weekday("xyz")

    def test_day_key_of(self):
        assert day_key_of(WED_10AM) == "wed"


# ---------------------------------------------------------------------------
# Logical day boundary
# ---------------------------------------------------------------------------


class TestLogicalDay:
    def test_before_offset_is_previous_day(self):
        early = datetime(2026, 3, 4, 2, 30, tzinfo=KST)  # Wed 02:30
        assert logical_day_key(early, 240) == "tue"
        assert logical_ymd(early, 240) == "2026-03-03"

    def test_at_offset_is_same_day(self):
        at_four = datetime(2026, 3, 4, 4, 0, tzinfo=KST)
        assert logical_day_key(at_four, 240) == "wed"

    def test_zero_offset_is_calendar_day(self):
        midnight = datetime(2026, 3, 4, 0, 0, tzinfo=KST)
        assert logical_day_key(midnight, 0) == "wed"

    def test_monday_early_is_sunday(self):
        mon_early = datetime(2026, 3, 2, 1, 0, tzinfo=KST)
        assert logical_day_key(mon_early, 240) == "sun"


# ---------------------------------------------------------------------------
# Occurrence diagnostics
# ---------------------------------------------------------------------------


class TestOccurrences:
    def test_passed_earlier_in_week(self):
        assert has_passed_this_week(WED_10AM, 1, 9, 0) is True   # Mon 09:00
        assert has_passed_this_week(WED_10AM, 3, 9, 0) is True   # Wed 09:00

    def test_not_passed_later_in_week(self):
        assert has_passed_this_week(WED_10AM, 3, 11, 0) is False
        assert has_passed_this_week(WED_10AM, 7, 9, 0) is False

    def test_next_occurrence_later_today(self):
        nxt = next_occurrence(WED_10AM, 3, 11, 30)
        assert nxt == datetime(2026, 3, 4, 11, 30, tzinfo=KST)

    def test_next_occurrence_passed_today_rolls_a_week(self):
        nxt = next_occurrence(WED_10AM, 3, 9, 0)
        assert nxt == datetime(2026, 3, 11, 9, 0, tzinfo=KST)

    def test_exactly_now_rolls_a_week(self):
        nxt = next_occurrence(WED_10AM, 3, 10, 0)
        assert nxt == datetime(2026, 3, 11, 10, 0, tzinfo=KST)

    def test_next_occurrence_other_day(self):
        assert next_occurrence(WED_10AM, 1, 8, 0) == datetime(2026, 3, 9, 8, 0, tzinfo=KST)
        assert next_occurrence(WED_10AM, 5, 8, 0) == datetime(2026, 3, 6, 8, 0, tzinfo=KST)
