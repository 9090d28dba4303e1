"""
Pydantic models for the JSON files the stores persist.

These records are the on-disk contract read by the static front-end. Any
file that does not match them is treated as corrupt by the stores.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..application.domain import (
    ArchiveEntry,
    CacheEntry,
    ThreeWindow,
    WeekDataset,
    WeekIdentifier,
    WeekRange,
)
from ..application.week_calendar import format_range, week_title


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class DateRangeRecord(BaseModel):
    """A week range stored as two calendar dates."""

    start: date
    end: date

    @classmethod
    def from_domain(cls, span: WeekRange) -> "DateRangeRecord":
        return cls(start=span.start.date(), end=span.end.date())

    def to_domain(self) -> WeekRange:
        return WeekRange.from_monday(self.start)


class WeekDatasetRecord(BaseModel):
    """One week of release data, as written to the slot and archive files."""

    week_id: str
    week_title: str
    week_range: str
    date_range: DateRangeRecord
    market: str
    generated_at: Optional[datetime] = None
    stale: bool = False
    release_count: int = 0
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def from_domain(cls, dataset: WeekDataset, release_count: int) -> "WeekDatasetRecord":
        return cls(
            week_id=str(dataset.id),
            week_title=week_title(dataset.range.start),
            week_range=format_range(dataset.range),
            date_range=DateRangeRecord.from_domain(dataset.range),
            market=dataset.market,
            generated_at=dataset.generated_at,
            stale=dataset.stale,
            release_count=release_count,
            payload=dataset.payload,
        )

    def to_domain(self) -> WeekDataset:
        week_id = WeekIdentifier.parse(self.week_id)
        return WeekDataset(
            id=week_id,
            range=week_id.range(),
            market=self.market,
            generated_at=_as_utc(self.generated_at),
            payload=self.payload,
            stale=self.stale,
        )


class WindowRecord(BaseModel):
    """The three slots of one market, persisted together in one file."""

    market: str
    updated_at: datetime
    last: Optional[WeekDatasetRecord] = None
    current: Optional[WeekDatasetRecord] = None
    next: Optional[WeekDatasetRecord] = None

    def to_domain(self) -> ThreeWindow:
        return ThreeWindow(
            last=self.last.to_domain() if self.last else None,
            current=self.current.to_domain() if self.current else None,
            next=self.next.to_domain() if self.next else None,
        )


class ArchiveEntryRecord(BaseModel):
    week_id: str
    week_title: str
    week_range: str
    date_range: DateRangeRecord
    generated_at: Optional[datetime] = None
    release_count: int = 0
    file_name: str

    @classmethod
    def from_domain(cls, entry: ArchiveEntry) -> "ArchiveEntryRecord":
        return cls(
            week_id=str(entry.id),
            week_title=entry.title,
            week_range=format_range(entry.range),
            date_range=DateRangeRecord.from_domain(entry.range),
            generated_at=entry.generated_at,
            release_count=entry.release_count,
            file_name=f"{entry.id}.json",
        )

    def to_domain(self) -> ArchiveEntry:
        week_id = WeekIdentifier.parse(self.week_id)
        return ArchiveEntry(
            id=week_id,
            title=self.week_title,
            range=week_id.range(),
            generated_at=_as_utc(self.generated_at),
            release_count=self.release_count,
        )


class ArchiveIndexRecord(BaseModel):
    """The navigation index of a market's archive, newest first."""

    archives: List[ArchiveEntryRecord] = Field(default_factory=list)
    last_updated: Optional[datetime] = None
    total_archives: int = 0


class CacheRecord(BaseModel):
    """A cached provider response with its validity window."""

    market: str
    week_id: str
    stored_at: datetime
    expires_at: datetime
    payload: Dict[str, Any]

    @classmethod
    def from_domain(cls, entry: CacheEntry) -> "CacheRecord":
        return cls(
            market=entry.market,
            week_id=str(entry.week_id),
            stored_at=entry.stored_at,
            expires_at=entry.expires_at,
            payload=entry.payload,
        )

    def to_domain(self) -> CacheEntry:
        return CacheEntry(
            market=self.market,
            week_id=WeekIdentifier.parse(self.week_id),
            payload=self.payload,
            stored_at=_as_utc(self.stored_at),
            expires_at=_as_utc(self.expires_at),
        )
