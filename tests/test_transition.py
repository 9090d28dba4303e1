"""Tests for release_tracker.application.transition."""

import asyncio
from datetime import timedelta

import pytest

from release_tracker.application.domain import ThreeWindow, WeekIdentifier
from release_tracker.application.exceptions import StorageError
from release_tracker.application.transition import (
    ALREADY_CURRENT_WEEK,
    NOT_BOUNDARY,
    WINDOW_AHEAD,
    WINDOW_UNINITIALIZED,
    WeekTransitionEngine,
)
from release_tracker.infrastructure.window_store import FileWindowStore


@pytest.fixture
def week50_window(make_dataset):
    """last=W49 and current=W50 populated, next=W51 still empty."""
    return ThreeWindow(
        last=make_dataset("2024-49", titles=("Week 49 show",)),
        current=make_dataset("2024-50", titles=("Week 50 show",)),
        next=make_dataset("2024-51", titles=None),
    )


class FailingSaveStore(FileWindowStore):
    """A window store whose saves fail once `fail_saves` is set."""

    fail_saves = False

    async def save(self, market, window):
        if self.fail_saves:
            raise StorageError("disk full")
        await super().save(market, window)


# ── Detection ────────────────────────────────────────────────────────


class TestNeedsRotation:
    """When a rotation is due."""

    def test_due_on_a_boundary_with_an_old_current_week(self, engine, week50_window, clock):
        assert engine.needs_rotation(week50_window, clock())

    def test_not_due_off_the_boundary(self, engine, week50_window, clock):
        clock.advance(days=1)
        assert not engine.needs_rotation(week50_window, clock())

    def test_not_due_when_current_is_already_this_week(self, engine, make_dataset, clock):
        window = ThreeWindow(
            last=make_dataset("2024-50"),
            current=make_dataset("2024-51"),
            next=make_dataset("2024-52", titles=None),
        )
        assert not engine.needs_rotation(window, clock())

    def test_not_due_for_an_incomplete_window(self, engine, make_dataset, clock):
        assert not engine.needs_rotation(ThreeWindow(current=make_dataset("2024-50")), clock())

    @pytest.mark.asyncio
    async def test_needs_rotation_for_reads_the_store(
        self, engine, window_store, week50_window, clock
    ):
        await window_store.save("us", week50_window)

        assert await engine.needs_rotation_for("us", clock())
        assert not await engine.needs_rotation_for("india", clock())


# ── Rotation ─────────────────────────────────────────────────────────


class TestRotate:
    """Shifting the window forward by one week."""

    @pytest.mark.asyncio
    async def test_rotation_shifts_slots_and_archives_the_outgoing_week(
        self, engine, window_store, week50_window, clock
    ):
        await window_store.save("us", week50_window)

        result = await engine.rotate("us", clock())

        assert result.rotated
        assert result.archived_id == WeekIdentifier(2024, 49)
        assert result.new_current_id == WeekIdentifier(2024, 51)
        assert result.new_next_id == WeekIdentifier(2024, 52)

        window = await window_store.load("us")
        assert window.last == week50_window.current
        assert window.current == week50_window.next
        assert window.next.id == WeekIdentifier(2024, 52)
        assert window.next.is_empty

        archived = await window_store.read_archive_entry("us", WeekIdentifier(2024, 49))
        assert archived == week50_window.last
        assert [str(entry.id) for entry in await window_store.read_archive_index("us")] == [
            "2024-49"
        ]

    @pytest.mark.asyncio
    async def test_rotation_is_idempotent(self, engine, window_store, week50_window, clock):
        await window_store.save("us", week50_window)
        await engine.rotate("us", clock())
        after_first = await window_store.load("us")

        clock.advance(hours=5)
        result = await engine.rotate("us", clock())

        assert not result.rotated
        assert result.reason == ALREADY_CURRENT_WEEK
        assert await window_store.load("us") == after_first
        assert len(await window_store.read_archive_index("us")) == 1

    @pytest.mark.asyncio
    async def test_skipped_off_the_boundary(self, engine, window_store, week50_window, clock):
        await window_store.save("us", week50_window)
        clock.advance(days=2)

        result = await engine.rotate("us", clock())

        assert result.reason == NOT_BOUNDARY
        assert await window_store.load("us") == week50_window

    @pytest.mark.asyncio
    async def test_skipped_for_an_uninitialized_window(self, engine, clock):
        result = await engine.rotate("us", clock())

        assert not result.rotated
        assert result.reason == WINDOW_UNINITIALIZED

    @pytest.mark.asyncio
    async def test_skipped_when_the_window_is_ahead(
        self, engine, window_store, make_dataset, clock
    ):
        window = ThreeWindow(
            last=make_dataset("2025-02"),
            current=make_dataset("2025-03"),
            next=make_dataset("2025-04", titles=None),
        )
        await window_store.save("us", window)

        result = await engine.rotate("us", clock())

        assert result.reason == WINDOW_AHEAD
        assert await window_store.load("us") == window

    @pytest.mark.asyncio
    async def test_empty_outgoing_week_is_not_archived(
        self, engine, window_store, make_dataset, clock
    ):
        await window_store.save(
            "us",
            ThreeWindow(
                last=make_dataset("2024-49", titles=None),
                current=make_dataset("2024-50"),
                next=make_dataset("2024-51", titles=None),
            ),
        )

        result = await engine.rotate("us", clock())

        assert result.rotated
        assert result.archived_id is None
        assert await window_store.read_archive_index("us") == []

    @pytest.mark.asyncio
    async def test_existing_archive_is_never_overwritten(
        self, engine, window_store, make_dataset, week50_window, clock
    ):
        original = make_dataset("2024-49", titles=("Archived first",))
        await window_store.upsert_archive_entry("us", original)
        await window_store.save("us", week50_window)

        result = await engine.rotate("us", clock())

        assert result.rotated
        assert result.archived_id is None
        assert await window_store.read_archive_entry("us", original.id) == original

    @pytest.mark.asyncio
    async def test_failed_save_leaves_the_window_unchanged(
        self, tmp_path, clock, week50_window
    ):
        store = FailingSaveStore(tmp_path / "data", clock=clock)
        engine = WeekTransitionEngine(store)
        await store.save("us", week50_window)
        store.fail_saves = True

        with pytest.raises(StorageError):
            await engine.rotate("us", clock())

        assert await store.load("us") == week50_window

    @pytest.mark.asyncio
    async def test_concurrent_rotations_apply_once(
        self, engine, window_store, week50_window, clock
    ):
        await window_store.save("us", week50_window)

        results = await asyncio.gather(
            engine.rotate("us", clock()),
            engine.rotate("us", clock() + timedelta(minutes=1)),
        )

        assert sorted(result.rotated for result in results) == [False, True]
        window = await window_store.load("us")
        assert window.current.id == WeekIdentifier(2024, 51)
        assert len(await window_store.read_archive_index("us")) == 1
