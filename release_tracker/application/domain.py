"""
This module defines the core domain models for the application.

These classes represent the pure, technology-agnostic entities and data
structures that the application's business logic operates on, together with
the ports (interfaces) that infrastructure adapters implement.
"""

import dataclasses
import enum
import re
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
)

T = TypeVar("T")

Clock = Callable[[], datetime]
ReleaseDataset = Dict[str, Any]

WEEK_SPAN = timedelta(days=6, hours=23, minutes=59, seconds=59)

_WEEK_ID_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def utc_now() -> datetime:
    """Default clock for the application."""
    return datetime.now(timezone.utc)


# --- Value Types ---

@dataclasses.dataclass(frozen=True, order=True)
class WeekIdentifier:
    """
    An ISO calendar week, ordered by year then week number.

    The canonical string form is ``YYYY-WW`` and is only used when the value
    crosses a persistence or display boundary.
    """

    year: int
    week_number: int

    def __post_init__(self):
        if not 1 <= self.week_number <= 53:
            raise ValueError(f"Week number {self.week_number} is out of range (1-53).")
        # Rejects week 53 for years that only have 52 ISO weeks.
        date.fromisocalendar(self.year, self.week_number, 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.week_number:02d}"

    @classmethod
    def parse(cls, value: str) -> "WeekIdentifier":
        """Parses the canonical ``YYYY-WW`` form."""
        match = _WEEK_ID_PATTERN.match(value.strip())
        if not match:
            raise ValueError(f"Invalid week identifier: {value!r}")
        return cls(year=int(match.group(1)), week_number=int(match.group(2)))

    def monday(self) -> date:
        return date.fromisocalendar(self.year, self.week_number, 1)

    def shift(self, weeks: int) -> "WeekIdentifier":
        """Returns the identifier ``weeks`` weeks later (or earlier if negative)."""
        year, week, _ = (self.monday() + timedelta(weeks=weeks)).isocalendar()
        return WeekIdentifier(year=year, week_number=week)

    def range(self) -> "WeekRange":
        return WeekRange.from_monday(self.monday())


@dataclasses.dataclass(frozen=True)
class WeekRange:
    """Monday 00:00:00 through Sunday 23:59:59 of one ISO week, in UTC."""

    start: datetime
    end: datetime

    @classmethod
    def from_monday(cls, monday: date) -> "WeekRange":
        start = datetime.combine(monday, time.min, tzinfo=timezone.utc)
        return cls(start=start, end=start + WEEK_SPAN)


@dataclasses.dataclass(frozen=True)
class Market:
    """A tracked country/locale with independent window, cache and archive."""

    id: str
    name: str
    platforms: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, market_id: str, raw: Mapping[str, Any]) -> "Market":
        return cls(
            id=market_id,
            name=raw.get("name", market_id),
            platforms=tuple(raw.get("platforms", ())),
        )


class Slot(str, enum.Enum):
    """One of the three positions of the rolling window."""

    LAST = "last"
    CURRENT = "current"
    NEXT = "next"


class Freshness(str, enum.Enum):
    """What a consumer can expect from a slot's data."""

    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


# --- Domain Models ---

@dataclasses.dataclass(frozen=True)
class WeekDataset:
    """
    Release data for one market and one week.

    The payload is opaque to the core. A dataset without a payload is a
    dated placeholder waiting to be populated.
    """

    id: WeekIdentifier
    range: WeekRange
    market: str
    generated_at: Optional[datetime] = None
    payload: Optional[ReleaseDataset] = None
    stale: bool = False

    @classmethod
    def placeholder(cls, market: str, week_id: WeekIdentifier) -> "WeekDataset":
        return cls(id=week_id, range=week_id.range(), market=market)

    @property
    def is_empty(self) -> bool:
        return self.payload is None

    @property
    def freshness(self) -> Freshness:
        if self.payload is None:
            return Freshness.MISSING
        return Freshness.STALE if self.stale else Freshness.FRESH


@dataclasses.dataclass(frozen=True)
class ThreeWindow:
    """The last/current/next slots of one market. Empty slots are None."""

    last: Optional[WeekDataset] = None
    current: Optional[WeekDataset] = None
    next: Optional[WeekDataset] = None

    @property
    def is_complete(self) -> bool:
        return None not in (self.last, self.current, self.next)

    def slot(self, slot: Slot) -> Optional[WeekDataset]:
        return getattr(self, Slot(slot).value)

    def with_slot(self, slot: Slot, dataset: Optional[WeekDataset]) -> "ThreeWindow":
        return dataclasses.replace(self, **{Slot(slot).value: dataset})


@dataclasses.dataclass(frozen=True)
class ArchiveEntry:
    """Navigation metadata for one archived week."""

    id: WeekIdentifier
    title: str
    range: WeekRange
    generated_at: Optional[datetime]
    release_count: int = 0


@dataclasses.dataclass(frozen=True)
class CacheEntry:
    """A stored provider response. Never mutated, only replaced or deleted."""

    market: str
    week_id: WeekIdentifier
    payload: ReleaseDataset
    stored_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class CacheStatus(str, enum.Enum):
    HIT = "hit"
    MISS = "miss"
    EXPIRED = "expired"
    CORRUPT = "corrupt"


@dataclasses.dataclass(frozen=True)
class CacheLookup:
    """The outcome of a cache read, including why nothing usable was found."""

    status: CacheStatus
    entry: Optional[CacheEntry] = None

    @property
    def payload(self) -> Optional[ReleaseDataset]:
        if self.status is CacheStatus.HIT and self.entry is not None:
            return self.entry.payload
        return None


@dataclasses.dataclass(frozen=True)
class RotationResult:
    """The outcome of one rotation attempt."""

    rotated: bool
    archived_id: Optional[WeekIdentifier] = None
    new_current_id: Optional[WeekIdentifier] = None
    new_next_id: Optional[WeekIdentifier] = None
    reason: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str) -> "RotationResult":
        return cls(rotated=False, reason=reason)


def count_releases(payload: Optional[ReleaseDataset]) -> int:
    """Counts the entries of a release dataset, for logging and indexing only."""
    if not isinstance(payload, dict):
        return 0
    total = 0
    for group_key, items_key in (("platforms", "releases"), ("categories", "movies")):
        for group in payload.get(group_key) or []:
            if isinstance(group, dict):
                total += len(group.get(items_key) or [])
    return total


# --- Ports (Interfaces) ---

class ReleaseProvider(ABC):
    """A port for any source of weekly release data."""

    @abstractmethod
    async def fetch_releases(
        self, market: Market, week_range: WeekRange
    ) -> ReleaseDataset:
        """Fetches the releases of one market for one week."""
        pass


class CacheStore(ABC):
    """A port for TTL-bound storage of provider responses."""

    @abstractmethod
    async def read(
        self, market: str, week_id: WeekIdentifier
    ) -> Optional[CacheEntry]:
        """Returns the stored entry, valid or not."""
        pass

    @abstractmethod
    async def lookup(self, market: str, week_id: WeekIdentifier) -> CacheLookup:
        """Reads an entry and evaluates it against the current time."""
        pass

    @abstractmethod
    async def write(
        self, market: str, week_id: WeekIdentifier, payload: ReleaseDataset
    ) -> CacheEntry:
        """Creates or replaces the entry for a key."""
        pass

    async def read_valid(
        self, market: str, week_id: WeekIdentifier
    ) -> Optional[ReleaseDataset]:
        """Returns the payload only if the entry exists and has not expired."""
        return (await self.lookup(market, week_id)).payload

    @abstractmethod
    async def clear(self, market: str, week_id: WeekIdentifier):
        """Removes one entry."""
        pass

    @abstractmethod
    async def clear_all(self) -> int:
        """Removes every entry and returns how many were removed."""
        pass


class WindowStore(ABC):
    """A port for the per-market three-slot window and its archive."""

    @abstractmethod
    async def load(self, market: str) -> ThreeWindow:
        pass

    @abstractmethod
    async def save(self, market: str, window: ThreeWindow):
        """Persists all three slots as one atomic update."""
        pass

    @abstractmethod
    async def initialize(self, market: str, reference: datetime) -> ThreeWindow:
        pass

    @abstractmethod
    async def upsert_archive_entry(
        self, market: str, dataset: WeekDataset
    ) -> ArchiveEntry:
        pass

    @abstractmethod
    async def has_archive_entry(self, market: str, week_id: WeekIdentifier) -> bool:
        pass

    @abstractmethod
    async def read_archive_entry(
        self, market: str, week_id: WeekIdentifier
    ) -> Optional[WeekDataset]:
        pass

    @abstractmethod
    async def read_archive_index(self, market: str) -> List[ArchiveEntry]:
        pass


class RetryPolicy(ABC):
    """A port for running an operation with classification-driven retries."""

    @abstractmethod
    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        on_fail: Optional[Callable[[BaseException], None]] = None,
    ) -> T:
        pass

    @abstractmethod
    def is_retryable(self, error: BaseException) -> bool:
        pass
