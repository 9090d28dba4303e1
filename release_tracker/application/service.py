"""
The core application service, containing the window maintenance logic.

This module defines the main orchestrator (ReleaseWindowService), which keeps
each market's rolling window current: it rotates the window at the weekly
boundary and populates slots from the cache or, through the retry policy,
from the release provider.
"""

import asyncio
import collections
import dataclasses
import logging
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tqdm.asyncio import tqdm_asyncio
from tqdm.contrib.logging import logging_redirect_tqdm

from .domain import *
from .exceptions import (
    ConfigurationError,
    DataUnavailableError,
    ReleaseTrackerError,
    StorageError,
)
from .transition import WeekTransitionEngine
from .week_calendar import week_range, weeks_between

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SLOTS = (Slot.CURRENT, Slot.NEXT, Slot.LAST)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ReleaseWindowService:
    """Orchestrates rotation and refresh of every market's window."""

    def __init__(
        self,
        provider: ReleaseProvider,
        cache_store: CacheStore,
        window_store: WindowStore,
        transition_engine: WeekTransitionEngine,
        retry_policy: RetryPolicy,
        markets: Iterable[Market],
        refresh_slots: Sequence[Union[Slot, str]] = DEFAULT_REFRESH_SLOTS,
        concurrent_markets: int = 2,
        max_catch_up_weeks: int = 60,
        clock: Clock = utc_now,
    ):
        """Initializes the service with its ports and tuning knobs."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.provider = provider
        self.cache_store = cache_store
        self.window_store = window_store
        self.transition_engine = transition_engine
        self.retry_policy = retry_policy
        self.markets = {market.id: market for market in markets}
        self.concurrent_markets = concurrent_markets
        self.max_catch_up_weeks = max_catch_up_weeks
        self.clock = clock
        self._locks = collections.defaultdict(asyncio.Lock)

        # The current slot is always refreshed first; it is the one callers ask for.
        others = [Slot(slot) for slot in refresh_slots if Slot(slot) is not Slot.CURRENT]
        self.refresh_order = (Slot.CURRENT, *dict.fromkeys(others))

    def _market(self, market_id: str) -> Market:
        try:
            return self.markets[market_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown market {market_id!r}. "
                f"Configured markets: {', '.join(sorted(self.markets))}"
            ) from None

    # --- Fetching ---

    async def _fetch(
        self, market: Market, week_id: WeekIdentifier
    ) -> Tuple[ReleaseDataset, datetime]:
        """Returns a payload and its generation time, cache first."""

        lookup = await self.cache_store.lookup(market.id, week_id)
        if lookup.payload is not None:
            return lookup.payload, lookup.entry.stored_at

        target_range = week_id.range()
        payload = await self.retry_policy.run(
            lambda: self.provider.fetch_releases(market, target_range),
            on_fail=lambda error: self.logger.error(
                f"Giving up on {market.id}/{week_id} after retries: {error}"
            ),
        )
        self.logger.info(
            f"Fetched {count_releases(payload)} releases for {market.id}/{week_id}"
        )

        try:
            entry = await self.cache_store.write(market.id, week_id, payload)
        except StorageError as e:
            self.logger.warning(f"Could not cache {market.id}/{week_id}: {e}")
            return payload, self.clock()
        return payload, entry.stored_at

    async def _fallback(
        self, market: Market, dataset: WeekDataset
    ) -> Optional[WeekDataset]:
        """Picks the newest stale data available for a slot, if any."""

        candidates = []
        if not dataset.is_empty:
            candidates.append(dataset)

        entry = await self.cache_store.read(market.id, dataset.id)
        if entry is not None:
            candidates.append(
                WeekDataset(
                    id=dataset.id,
                    range=dataset.range,
                    market=market.id,
                    generated_at=entry.stored_at,
                    payload=entry.payload,
                )
            )

        if not candidates:
            return None

        newest = max(
            candidates,
            key=lambda candidate: candidate.generated_at or _EPOCH,
        )
        return dataclasses.replace(newest, stale=True)

    def needs_refresh(self, dataset: WeekDataset, now: datetime) -> bool:
        """
        A slot is refreshed when it is missing, stale, or was fetched before
        the week that contains `now`; a fetch stays fresh for the rest of the
        week it was made in.
        """
        if dataset.freshness is not Freshness.FRESH or dataset.generated_at is None:
            return True
        return dataset.generated_at < week_range(now).start

    async def _refresh_slot(
        self,
        market: Market,
        window: ThreeWindow,
        slot: Slot,
        now: datetime,
    ) -> ThreeWindow:
        dataset = window.slot(slot)
        if dataset is None or not self.needs_refresh(dataset, now):
            return window

        try:
            payload, generated_at = await self._fetch(market, dataset.id)
        except Exception as error:
            if not self.retry_policy.is_retryable(error):
                raise

            refreshed = await self._fallback(market, dataset)
            if refreshed is None:
                if slot is Slot.CURRENT:
                    raise DataUnavailableError(
                        f"No data available for {market.id}/{dataset.id}: {error}"
                    ) from error
                self.logger.error(
                    f"No data available for the {slot.value} slot "
                    f"{market.id}/{dataset.id}: {error}"
                )
                return window

            self.logger.warning(
                f"Serving stale data for {market.id}/{dataset.id} "
                f"(generated {refreshed.generated_at}) after: {error}"
            )
        else:
            refreshed = WeekDataset(
                id=dataset.id,
                range=dataset.range,
                market=market.id,
                generated_at=generated_at,
                payload=payload,
            )

        window = window.with_slot(slot, refreshed)
        await self.window_store.save(market.id, window)
        return window

    # --- Rotation ---

    async def _catch_up(self, market_id: str, window: ThreeWindow, now: datetime):
        """Rotates one week at a time until the window reaches now's week."""

        for _ in range(self.max_catch_up_weeks):
            if not self.transition_engine.needs_rotation(window, now):
                return window

            result = await self.transition_engine.rotate(market_id, now)
            window = await self.window_store.load(market_id)
            if not result.rotated:
                return window

        self.logger.warning(
            f"Stopped catching up {market_id} after {self.max_catch_up_weeks} "
            f"rotations; current is {window.current.id}"
        )
        return window

    # --- Public API ---

    async def ensure_up_to_date(
        self, market_id: str, now: Optional[datetime] = None
    ) -> WeekDataset:
        """
        Brings a market's window up to date and returns its current slot.

        Args:
            market_id: The market to update.
            now: The instant to evaluate at; defaults to the service clock.

        Returns:
            The current week's dataset, possibly stale.

        Raises:
            DataUnavailableError: If the current week has no data at all.
            ReleaseTrackerError: If the provider fails permanently.
        """

        now = now or self.clock()
        market = self._market(market_id)

        async with self._locks[market.id]:
            window = await self.window_store.load(market.id)
            if not window.is_complete:
                window = await self.window_store.initialize(market.id, now)

            window = await self._catch_up(market.id, window, now)

            for slot in self.refresh_order:
                window = await self._refresh_slot(market, window, slot, now)

        current = window.current
        self.logger.info(
            f"{market.name}: current week {current.id} is {current.freshness.value} "
            f"({count_releases(current.payload)} releases)"
        )
        return current

    async def get(self, market_id: str, slot: Union[Slot, str]) -> Optional[WeekDataset]:
        window = await self.window_store.load(self._market(market_id).id)
        return window.slot(Slot(slot))

    async def freshness(self, market_id: str, slot: Union[Slot, str]) -> Freshness:
        dataset = await self.get(market_id, slot)
        return dataset.freshness if dataset else Freshness.MISSING

    async def archive_index(self, market_id: str) -> List[ArchiveEntry]:
        return await self.window_store.read_archive_index(self._market(market_id).id)

    async def read_archive(
        self, market_id: str, week_id: WeekIdentifier
    ) -> Optional[WeekDataset]:
        return await self.window_store.read_archive_entry(
            self._market(market_id).id, week_id
        )

    async def backfill(
        self,
        market_id: str,
        start: Union[date, datetime],
        end: Union[date, datetime],
        save_as_current: bool = False,
    ) -> List[WeekIdentifier]:
        """
        Fetches every week that intersects [start, end] into the archive.

        Unlike rotation, an explicit backfill replaces existing archive copies.

        Args:
            market_id: The market to backfill.
            start: First day of the range.
            end: Last day of the range.
            save_as_current: Also replace the current slot when a fetched
                week is the window's current week.

        Returns:
            The archived week identifiers, oldest first.
        """

        market = self._market(market_id)
        weeks = weeks_between(start, end)
        self.logger.info(
            f"Backfilling {market.name} for {len(weeks)} week(s): "
            f"{weeks[0]} to {weeks[-1]}"
        )

        archived = []
        async with self._locks[market.id]:
            for week_id in weeks:
                payload, generated_at = await self._fetch(market, week_id)
                dataset = WeekDataset(
                    id=week_id,
                    range=week_id.range(),
                    market=market.id,
                    generated_at=generated_at,
                    payload=payload,
                )
                await self.window_store.upsert_archive_entry(market.id, dataset)
                archived.append(week_id)

                if save_as_current:
                    window = await self.window_store.load(market.id)
                    if window.current is not None and window.current.id == week_id:
                        await self.window_store.save(
                            market.id, window.with_slot(Slot.CURRENT, dataset)
                        )
                        self.logger.info(f"Saved {market.id}/{week_id} as current week")

        return archived

    async def _ensure_isolated(
        self,
        market_id: str,
        now: Optional[datetime],
        semaphore: asyncio.Semaphore,
    ) -> Union[WeekDataset, Exception]:
        """Runs one market, returning its error instead of raising it."""
        async with semaphore:
            try:
                return await self.ensure_up_to_date(market_id, now)
            except ReleaseTrackerError as e:
                self.logger.error(f"Market {market_id} failed: {e}")
                return e
            except Exception as e:
                self.logger.exception(f"Market {market_id} failed unexpectedly")
                return e

    async def refresh_markets(
        self, market_ids: Optional[Sequence[str]] = None, now: Optional[datetime] = None
    ) -> Dict[str, Union[WeekDataset, Exception]]:
        """Updates several markets concurrently; one failure does not stop the rest."""

        market_ids = list(market_ids or self.markets)
        logger.info(f"Refreshing markets: {market_ids}")

        semaphore = asyncio.Semaphore(self.concurrent_markets)
        tasks = [
            asyncio.create_task(self._ensure_isolated(market_id, now, semaphore))
            for market_id in market_ids
        ]

        with logging_redirect_tqdm():
            results = await tqdm_asyncio.gather(
                *tasks, desc="Markets", unit="market"
            )

        return dict(zip(market_ids, results))
