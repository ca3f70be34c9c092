"""Directory walking for the library scanner."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, NamedTuple

from .logging_config import get_logger

logger = get_logger(__name__)


class WalkEntry(NamedTuple):
    path: Path
    extension: str  # lower-cased, with the leading dot ("" when absent)


def _log_walk_error(exc: OSError) -> None:
    logger.error(f"✗ Unable to read {exc.filename}: {exc.strerror or exc}")


def walk_files(root: Path) -> Iterator[WalkEntry]:
    """Yield every file under root, depth first, in name order.

    The generator is lazy; call it again to restart the walk. Unreadable
    directories are logged and skipped without stopping the rest of the walk.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
        dirnames.sort()
        dir_path = Path(dirpath)
        for name in sorted(filenames):
            yield WalkEntry(dir_path / name, os.path.splitext(name)[1].lower())


def list_directory(path: Path) -> list[str]:
    """One-level listing used to count the pages of an image folder."""
    return sorted(os.listdir(path))
