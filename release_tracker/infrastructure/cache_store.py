"""File-backed implementation of the CacheStore port."""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from ..application.domain import (
    CacheEntry,
    CacheLookup,
    CacheStatus,
    CacheStore,
    Clock,
    ReleaseDataset,
    WeekIdentifier,
    utc_now,
)
from .files import write_text_atomic
from .storage_models import CacheRecord

DEFAULT_TTL_HOURS = 24


class FileCacheStore(CacheStore):
    """
    Stores one JSON file per (market, week) under the cache directory.

    Expired entries are left on disk and discarded at read time; only
    `clear` and `clear_all` delete files. Unreadable files are reported as
    corrupt and never raised, since the cache is an optimization.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        clock: Clock = utc_now,
    ):
        """Initializes the cache store."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.cache_dir = Path(cache_dir)
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock

    def _entry_path(self, market: str, week_id: WeekIdentifier) -> Path:
        return self.cache_dir / market / f"{week_id}.json"

    def _blocking_read(self, path: Path) -> Optional[CacheRecord]:
        if not path.exists():
            return None
        return CacheRecord.model_validate_json(path.read_text(encoding="utf-8"))

    async def _read_entry(
        self, market: str, week_id: WeekIdentifier
    ) -> CacheLookup:
        path = self._entry_path(market, week_id)
        try:
            record = await asyncio.to_thread(self._blocking_read, path)
            if record is None:
                return CacheLookup(CacheStatus.MISS)
            entry = record.to_domain()
        except (ValueError, OSError) as e:
            self.logger.warning(f"Cache read error for {market}/{week_id}: {e}")
            return CacheLookup(CacheStatus.CORRUPT)

        if entry.market != market or entry.week_id != week_id:
            self.logger.warning(
                f"Cache file {path.name} holds {entry.market}/{entry.week_id}, "
                f"expected {market}/{week_id}"
            )
            return CacheLookup(CacheStatus.CORRUPT)

        return CacheLookup(CacheStatus.HIT, entry)

    async def read(
        self, market: str, week_id: WeekIdentifier
    ) -> Optional[CacheEntry]:
        return (await self._read_entry(market, week_id)).entry

    async def lookup(self, market: str, week_id: WeekIdentifier) -> CacheLookup:
        """
        Reads an entry and checks it against the clock.

        Returns:
            A lookup whose status says whether the entry was found, expired,
            missing or corrupt. Expired lookups still carry the entry so the
            caller can use it as a stale fallback.
        """

        result = await self._read_entry(market, week_id)

        if result.status is CacheStatus.MISS:
            self.logger.info(f"Cache miss: {market}/{week_id} (not found)")
            return result

        if result.entry is None:
            return result

        if not result.entry.is_valid(self.clock()):
            self.logger.info(
                f"Cache expired: {market}/{week_id} "
                f"(expired {result.entry.expires_at.isoformat()})"
            )
            return CacheLookup(CacheStatus.EXPIRED, result.entry)

        self.logger.info(f"Cache hit: {market}/{week_id}")
        return result

    async def write(
        self, market: str, week_id: WeekIdentifier, payload: ReleaseDataset
    ) -> CacheEntry:
        now = self.clock()
        entry = CacheEntry(
            market=market,
            week_id=week_id,
            payload=payload,
            stored_at=now,
            expires_at=now + self.ttl,
        )
        content = CacheRecord.from_domain(entry).model_dump_json(indent=2)
        await asyncio.to_thread(
            write_text_atomic, self._entry_path(market, week_id), content
        )
        self.logger.info(
            f"Cache saved: {market}/{week_id} "
            f"(expires {entry.expires_at.isoformat()})"
        )
        return entry

    async def clear(self, market: str, week_id: WeekIdentifier):
        path = self._entry_path(market, week_id)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        self.logger.info(f"Cache cleared: {market}/{week_id}")

    def _blocking_clear_all(self) -> int:
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob("*/*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    async def clear_all(self) -> int:
        removed = await asyncio.to_thread(self._blocking_clear_all)
        self.logger.info(f"Cache cleared: all files ({removed})")
        return removed
