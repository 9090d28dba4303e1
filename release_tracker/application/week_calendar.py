"""
Calendar helpers for ISO week identity and human-readable week labels.

All values are handled in UTC: naive datetimes are taken as UTC, aware ones
are converted before the calendar date is read.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Union

from .domain import WeekIdentifier, WeekRange

DateLike = Union[date, datetime]

_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def _utc_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def iso_week_number(value: DateLike) -> int:
    """Week containing the year's first Thursday is week 1; weeks start Monday."""
    return _utc_date(value).isocalendar()[1]


def week_range(value: DateLike) -> WeekRange:
    day = _utc_date(value)
    return WeekRange.from_monday(day - timedelta(days=day.weekday()))


def week_identifier(value: DateLike) -> WeekIdentifier:
    """
    Returns the ISO week of a date.

    The year is the ISO year, so a late-December date that belongs to week 1
    reports the following year, and an early-January date in week 52/53
    reports the previous one.
    """
    year, week, _ = _utc_date(value).isocalendar()
    return WeekIdentifier(year=year, week_number=week)


def format_range(span: WeekRange) -> str:
    """
    Formats a range as a label.

    Examples:
        - Same month: "December 2-8, 2024"
        - Cross month: "November 25 - December 1, 2024"
        - Cross year: "December 30, 2024 - January 5, 2025"
    """
    start, end = _utc_date(span.start), _utc_date(span.end)
    start_month = _MONTH_NAMES[start.month - 1]
    end_month = _MONTH_NAMES[end.month - 1]

    if start.year == end.year and start.month == end.month:
        return f"{start_month} {start.day}-{end.day}, {start.year}"

    if start.year == end.year:
        return f"{start_month} {start.day} - {end_month} {end.day}, {end.year}"

    return (
        f"{start_month} {start.day}, {start.year} - "
        f"{end_month} {end.day}, {end.year}"
    )


def format_date(value: DateLike) -> str:
    return _utc_date(value).isoformat()


def is_window_boundary(value: DateLike) -> bool:
    """True on Mondays, the day the rolling window is due to rotate."""
    return _utc_date(value).weekday() == 0


def week_title(value: DateLike) -> str:
    """Returns a title such as "Week 49: December 2-8, 2024"."""
    return f"Week {iso_week_number(value)}: {format_range(week_range(value))}"


def weeks_between(start: DateLike, end: DateLike) -> List[WeekIdentifier]:
    """Lists every ISO week that intersects the inclusive range [start, end]."""
    first, last = week_identifier(start), week_identifier(end)
    if last < first:
        raise ValueError(f"End date {format_date(end)} is before {format_date(start)}")

    weeks = [first]
    while weeks[-1] < last:
        weeks.append(weeks[-1].shift(1))
    return weeks
