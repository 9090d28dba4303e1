"""Atomic file writes shared by the file-backed stores."""

import contextlib
import os
from pathlib import Path
from typing import Generator

from ..application.exceptions import StorageError


@contextlib.contextmanager
def atomic_target(destination: Path) -> Generator[Path, None, None]:
    """Provides a temporary '.part' path and ensures cleanup."""
    part_path = destination.with_suffix(destination.suffix + ".part")
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        yield part_path
    finally:
        part_path.unlink(missing_ok=True)


def write_text_atomic(destination: Path, content: str):
    """
    Replaces a file's content so readers see either the old or the new text.

    Raises:
        StorageError: If the file cannot be written.
    """
    try:
        with atomic_target(destination) as part_path:
            part_path.write_text(content, encoding="utf-8")
            os.replace(part_path, destination)
    except OSError as e:
        raise StorageError(f"Failed to write {destination}: {e}") from e
