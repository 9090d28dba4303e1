"""Tests for release_tracker.application.week_calendar."""

from datetime import date, datetime, timedelta, timezone

import pytest

from release_tracker.application.domain import WEEK_SPAN, WeekIdentifier, WeekRange
from release_tracker.application.week_calendar import (
    format_date,
    format_range,
    is_window_boundary,
    iso_week_number,
    week_identifier,
    week_range,
    week_title,
    weeks_between,
)


# ── Week identity ────────────────────────────────────────────────────


class TestWeekIdentifier:
    """ISO week numbering, including the year boundary cases."""

    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2023, 12, 31), 52),
            (date(2024, 1, 1), 1),
            (date(2024, 12, 30), 1),
            (date(2024, 12, 9), 50),
            (date(2021, 1, 1), 53),
        ],
    )
    def test_iso_week_number(self, day, expected):
        assert iso_week_number(day) == expected

    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2023, 12, 31), "2023-52"),
            (date(2024, 1, 1), "2024-01"),
            (date(2024, 12, 30), "2025-01"),
            (date(2021, 1, 1), "2020-53"),
            (date(2024, 12, 16), "2024-51"),
        ],
    )
    def test_identifier_uses_the_iso_year(self, day, expected):
        assert str(week_identifier(day)) == expected

    def test_aware_datetimes_are_converted_to_utc(self):
        # Sunday evening in New York is already Monday in UTC.
        eastern = timezone(timedelta(hours=-5))
        moment = datetime(2024, 12, 15, 23, 30, tzinfo=eastern)

        assert str(week_identifier(moment)) == "2024-51"
        assert is_window_boundary(moment)

    def test_naive_datetimes_are_taken_as_utc(self):
        assert str(week_identifier(datetime(2024, 12, 15, 23, 30))) == "2024-50"


# ── Week range ───────────────────────────────────────────────────────


class TestWeekRange:
    """Monday-to-Sunday ranges."""

    def test_range_spans_monday_to_sunday_end_of_day(self):
        span = week_range(date(2024, 12, 11))

        assert span.start == datetime(2024, 12, 9, tzinfo=timezone.utc)
        assert span.end == datetime(2024, 12, 15, 23, 59, 59, tzinfo=timezone.utc)
        assert span.end - span.start == WEEK_SPAN

    def test_every_day_of_a_week_maps_to_the_same_range(self):
        monday = date(2024, 12, 30)
        ranges = {week_range(monday + timedelta(days=offset)) for offset in range(7)}

        assert ranges == {WeekRange.from_monday(monday)}

    def test_range_start_belongs_to_the_same_week(self):
        day = date(2023, 11, 1)
        for offset in range(800):
            current = day + timedelta(days=offset)
            assert week_identifier(week_range(current).start) == week_identifier(current)

    def test_identifier_range_matches_calendar_range(self):
        assert WeekIdentifier(2025, 1).range() == week_range(date(2025, 1, 2))


# ── Labels ───────────────────────────────────────────────────────────


class TestFormatting:
    """Human-readable labels."""

    @pytest.mark.parametrize(
        "monday, expected",
        [
            (date(2024, 12, 2), "December 2-8, 2024"),
            (date(2024, 11, 25), "November 25 - December 1, 2024"),
            (date(2024, 12, 30), "December 30, 2024 - January 5, 2025"),
        ],
    )
    def test_format_range(self, monday, expected):
        assert format_range(WeekRange.from_monday(monday)) == expected

    def test_week_title(self):
        assert week_title(date(2024, 12, 4)) == "Week 49: December 2-8, 2024"

    def test_format_date(self):
        moment = datetime(2024, 12, 16, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        assert format_date(moment) == "2024-12-15"


# ── Boundary and ranges of weeks ─────────────────────────────────────


class TestBoundary:
    """Rotation boundary detection."""

    @pytest.mark.parametrize(
        "day, expected",
        [
            (date(2024, 12, 16), True),
            (date(2024, 12, 15), False),
            (date(2024, 12, 17), False),
        ],
    )
    def test_only_mondays_are_boundaries(self, day, expected):
        assert is_window_boundary(day) is expected


class TestWeeksBetween:
    """Listing the weeks of a date range."""

    def test_lists_weeks_across_the_year_boundary(self):
        weeks = weeks_between(date(2024, 12, 25), date(2025, 1, 8))
        assert [str(week) for week in weeks] == ["2024-52", "2025-01", "2025-02"]

    def test_single_day_range(self):
        assert weeks_between(date(2024, 12, 9), date(2024, 12, 9)) == [
            WeekIdentifier(2024, 50)
        ]

    def test_reversed_range_raises(self):
        with pytest.raises(ValueError, match="before"):
            weeks_between(date(2024, 12, 20), date(2024, 12, 1))
