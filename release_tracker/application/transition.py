"""
The week transition engine.

Rolls a market's three-slot window forward at the weekly boundary: the
outgoing last week is archived, next becomes current, current becomes last,
and a new empty next slot is allocated.
"""

import asyncio
import collections
import logging
from datetime import datetime

from .domain import RotationResult, ThreeWindow, WeekDataset, WindowStore
from .week_calendar import is_window_boundary, week_identifier

NOT_BOUNDARY = "not_boundary"
WINDOW_UNINITIALIZED = "window_uninitialized"
ALREADY_CURRENT_WEEK = "already_current_week"
WINDOW_AHEAD = "window_ahead"


class WeekTransitionEngine:
    """Detects and performs window rotations, one market at a time."""

    def __init__(self, window_store: WindowStore):
        """Initializes the engine with the store it rotates."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.window_store = window_store
        self._locks = collections.defaultdict(asyncio.Lock)

    def needs_rotation(self, window: ThreeWindow, now: datetime) -> bool:
        """True on a boundary day when the stored current week is not now's week."""
        if not is_window_boundary(now) or not window.is_complete:
            return False
        return window.current.id != week_identifier(now)

    async def needs_rotation_for(self, market: str, now: datetime) -> bool:
        return self.needs_rotation(await self.window_store.load(market), now)

    def _skip_reason(self, window: ThreeWindow, now: datetime) -> str:
        if not is_window_boundary(now):
            return NOT_BOUNDARY
        if not window.is_complete:
            return WINDOW_UNINITIALIZED
        target = week_identifier(now)
        if window.current.id == target:
            return ALREADY_CURRENT_WEEK
        if window.current.id > target:
            return WINDOW_AHEAD
        return ""

    async def _archive_outgoing(self, market: str, outgoing: WeekDataset):
        """Backfills the archive with the outgoing week, never overwriting it."""

        if outgoing.is_empty:
            self.logger.info(f"Outgoing week {market}/{outgoing.id} has no data to archive")
            return None

        if await self.window_store.has_archive_entry(market, outgoing.id):
            self.logger.info(
                f"Archive for {market}/{outgoing.id} already exists. Skipping."
            )
            return None

        await self.window_store.upsert_archive_entry(market, outgoing)
        return outgoing.id

    async def rotate(self, market: str, now: datetime) -> RotationResult:
        """
        Shifts the window forward by one week if a rotation is due.

        The check is repeated after acquiring the market's lock, so a caller
        that loses a race observes the rotated window and skips. The new slots
        are computed before anything is written, and the window is saved in a
        single write, so a failure leaves the previous window in place.

        Args:
            market: The market to rotate.
            now: The instant the rotation is evaluated at.

        Returns:
            The rotation outcome, or a skipped result with its reason.
        """

        async with self._locks[market]:
            window = await self.window_store.load(market)

            reason = self._skip_reason(window, now)
            if reason:
                if reason == WINDOW_AHEAD:
                    self.logger.warning(
                        f"Window for {market} is ahead of {week_identifier(now)} "
                        f"(current={window.current.id}); not rotating"
                    )
                return RotationResult.skipped(reason)

            new_window = ThreeWindow(
                last=window.current,
                current=window.next,
                next=WeekDataset.placeholder(market, window.next.id.shift(1)),
            )

            archived_id = await self._archive_outgoing(market, window.last)
            await self.window_store.save(market, new_window)

        self.logger.info(
            f"Rotated {market}: last={new_window.last.id}, "
            f"current={new_window.current.id}, next={new_window.next.id}"
            + (f", archived {archived_id}" if archived_id else "")
        )

        return RotationResult(
            rotated=True,
            archived_id=archived_id,
            new_current_id=new_window.current.id,
            new_next_id=new_window.next.id,
        )
