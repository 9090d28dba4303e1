"""File-backed implementation of the WindowStore port."""

import asyncio
import collections
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..application.domain import (
    ArchiveEntry,
    Clock,
    Slot,
    ThreeWindow,
    WeekDataset,
    WeekIdentifier,
    WindowStore,
    count_releases,
    utc_now,
)
from ..application.week_calendar import week_identifier, week_title
from .files import write_text_atomic
from .storage_models import (
    ArchiveEntryRecord,
    ArchiveIndexRecord,
    WeekDatasetRecord,
    WindowRecord,
)

DEFAULT_ARCHIVE_LIMIT = 52

_WINDOW_FILE = "window.json"
_INDEX_FILE = "archive-index.json"
_ARCHIVE_DIR = "archive"
_ARCHIVE_FILE_PATTERN = re.compile(r"^\d{4}-\d{2}\.json$")


def _sort_and_split(entries: List[ArchiveEntry], limit: int):
    """Orders entries newest first and splits them at the archive bound."""
    ordered = sorted(entries, key=lambda entry: entry.id, reverse=True)
    return ordered[:limit], ordered[limit:]


class FileWindowStore(WindowStore):
    """
    Persists each market under its own directory:

        <data_dir>/<market>/window.json          the three slots, one file
        <data_dir>/<market>/archive/YYYY-WW.json archived datasets
        <data_dir>/<market>/archive-index.json   navigation index, newest first

    The window file is replaced atomically, so readers never see a partially
    rotated window. Archive index updates are serialized per market.
    """

    def __init__(
        self,
        data_dir: Path,
        archive_limit: int = DEFAULT_ARCHIVE_LIMIT,
        clock: Clock = utc_now,
    ):
        """Initializes the window store."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.data_dir = Path(data_dir)
        self.archive_limit = archive_limit
        self.clock = clock
        self._locks = collections.defaultdict(asyncio.Lock)

    # --- Paths ---

    def _window_path(self, market: str) -> Path:
        return self.data_dir / market / _WINDOW_FILE

    def _index_path(self, market: str) -> Path:
        return self.data_dir / market / _INDEX_FILE

    def _archive_path(self, market: str, week_id: WeekIdentifier) -> Path:
        return self.data_dir / market / _ARCHIVE_DIR / f"{week_id}.json"

    @staticmethod
    def _to_record(dataset: Optional[WeekDataset]) -> Optional[WeekDatasetRecord]:
        if dataset is None:
            return None
        return WeekDatasetRecord.from_domain(dataset, count_releases(dataset.payload))

    # --- Window ---

    def _blocking_load(self, market: str) -> ThreeWindow:
        path = self._window_path(market)
        if not path.exists():
            return ThreeWindow()
        record = WindowRecord.model_validate_json(path.read_text(encoding="utf-8"))
        return record.to_domain()

    async def load(self, market: str) -> ThreeWindow:
        """Reads the persisted slots; missing or unreadable slots are None."""
        try:
            return await asyncio.to_thread(self._blocking_load, market)
        except (ValueError, OSError) as e:
            self.logger.warning(
                f"Window file for {market} is unreadable, treating it as empty: {e}"
            )
            return ThreeWindow()

    async def save(self, market: str, window: ThreeWindow):
        record = WindowRecord(
            market=market,
            updated_at=self.clock(),
            last=self._to_record(window.last),
            current=self._to_record(window.current),
            next=self._to_record(window.next),
        )
        await asyncio.to_thread(
            write_text_atomic,
            self._window_path(market),
            record.model_dump_json(indent=2),
        )

    async def initialize(self, market: str, reference: datetime) -> ThreeWindow:
        """
        Fills every empty slot with a dated placeholder.

        Placeholders are placed around the stored current week when there is
        one, otherwise around the reference date, so the slots stay adjacent.
        Slots that already hold a dataset are kept.

        Args:
            market: The market to initialize.
            reference: The date used when no current slot exists.

        Returns:
            The complete window, as saved.
        """

        async with self._locks[market]:
            window = await self.load(market)
            if window.is_complete:
                return window

            anchor = window.current.id if window.current else week_identifier(reference)
            expected = {
                Slot.LAST: anchor.shift(-1),
                Slot.CURRENT: anchor,
                Slot.NEXT: anchor.shift(1),
            }
            for slot, week_id in expected.items():
                if window.slot(slot) is None:
                    window = window.with_slot(
                        slot, WeekDataset.placeholder(market, week_id)
                    )

            await self.save(market, window)
            self.logger.info(
                f"Initialized window for {market}: last={window.last.id}, "
                f"current={window.current.id}, next={window.next.id}"
            )
            return window

    # --- Archive ---

    def _blocking_read_index(self, market: str) -> Optional[List[ArchiveEntry]]:
        """Returns the stored index, [] if absent, or None if it is corrupt."""
        path = self._index_path(market)
        if not path.exists():
            return []
        try:
            record = ArchiveIndexRecord.model_validate_json(
                path.read_text(encoding="utf-8")
            )
            return [entry.to_domain() for entry in record.archives]
        except (ValueError, OSError) as e:
            self.logger.warning(f"Archive index for {market} is unreadable: {e}")
            return None

    def _blocking_scan_archive(self, market: str) -> List[ArchiveEntry]:
        archive_dir = self.data_dir / market / _ARCHIVE_DIR
        if not archive_dir.exists():
            return []

        entries = []
        for path in sorted(archive_dir.iterdir()):
            if not _ARCHIVE_FILE_PATTERN.match(path.name):
                continue
            try:
                dataset = WeekDatasetRecord.model_validate_json(
                    path.read_text(encoding="utf-8")
                ).to_domain()
            except (ValueError, OSError) as e:
                self.logger.warning(f"Skipping archive file {path.name}: {e}")
                continue
            entries.append(self._entry_for(dataset))
        return entries

    def _blocking_write_index(self, market: str, entries: List[ArchiveEntry]):
        record = ArchiveIndexRecord(
            archives=[ArchiveEntryRecord.from_domain(entry) for entry in entries],
            last_updated=self.clock(),
            total_archives=len(entries),
        )
        write_text_atomic(self._index_path(market), record.model_dump_json(indent=2))

    @staticmethod
    def _entry_for(dataset: WeekDataset) -> ArchiveEntry:
        return ArchiveEntry(
            id=dataset.id,
            title=week_title(dataset.range.start),
            range=dataset.range,
            generated_at=dataset.generated_at,
            release_count=count_releases(dataset.payload),
        )

    def _blocking_upsert(self, market: str, dataset: WeekDataset) -> ArchiveEntry:
        entry = self._entry_for(dataset)
        write_text_atomic(
            self._archive_path(market, dataset.id),
            self._to_record(dataset).model_dump_json(indent=2),
        )

        entries = self._blocking_read_index(market)
        if entries is None:
            entries = self._blocking_scan_archive(market)

        entries = [existing for existing in entries if existing.id != entry.id]
        entries.append(entry)
        kept, dropped = _sort_and_split(entries, self.archive_limit)

        for old in dropped:
            self._archive_path(market, old.id).unlink(missing_ok=True)
            self.logger.info(f"Dropped archive {market}/{old.id} beyond the archive bound")

        self._blocking_write_index(market, kept)
        return entry

    async def upsert_archive_entry(
        self, market: str, dataset: WeekDataset
    ) -> ArchiveEntry:
        """
        Archives a dataset, replacing any entry with the same week.

        The index is re-sorted newest first and truncated to the archive
        bound; datasets of dropped entries are deleted with them.
        """

        async with self._locks[market]:
            entry = await asyncio.to_thread(self._blocking_upsert, market, dataset)
        self.logger.info(
            f"Archived {market}/{entry.id} ({entry.release_count} releases)"
        )
        return entry

    async def read_archive_index(self, market: str) -> List[ArchiveEntry]:
        entries = await asyncio.to_thread(self._blocking_read_index, market)
        if entries is None:
            entries = await asyncio.to_thread(self._blocking_scan_archive, market)
            entries, _ = _sort_and_split(entries, self.archive_limit)
        return entries

    async def has_archive_entry(self, market: str, week_id: WeekIdentifier) -> bool:
        return any(entry.id == week_id for entry in await self.read_archive_index(market))

    def _blocking_read_dataset(self, path: Path) -> Optional[WeekDataset]:
        if not path.exists():
            return None
        return WeekDatasetRecord.model_validate_json(
            path.read_text(encoding="utf-8")
        ).to_domain()

    async def read_archive_entry(
        self, market: str, week_id: WeekIdentifier
    ) -> Optional[WeekDataset]:
        path = self._archive_path(market, week_id)
        try:
            return await asyncio.to_thread(self._blocking_read_dataset, path)
        except (ValueError, OSError) as e:
            self.logger.warning(f"Archive file {path.name} is unreadable: {e}")
            return None

    async def rebuild_archive_index(self, market: str) -> List[ArchiveEntry]:
        """Regenerates the index from the archived dataset files."""

        async with self._locks[market]:
            entries = await asyncio.to_thread(self._blocking_scan_archive, market)
            kept, _ = _sort_and_split(entries, self.archive_limit)
            await asyncio.to_thread(self._blocking_write_index, market, kept)

        self.logger.info(
            f"Archive index for {market} rebuilt with {len(kept)} entries"
        )
        return kept
