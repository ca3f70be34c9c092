"""Utility functions for Devourer."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable

from .logging_config import get_logger

logger = get_logger(__name__)


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + filename.

    Example: /very/long/path/to/folder/file.cbz -> folder/file.cbz
    """
    return f"{path.parent.name}/{path.name}"


def preview_path(previews_dir: Path, issue_id: int) -> Path:
    return previews_dir / f"{issue_id}_preview.jpg"


def cover_path(covers_dir: Path, series_id: int) -> Path:
    return covers_dir / f"{series_id}.jpg"


def delete_previews(issue_ids: Iterable[int], previews_dir: Path) -> int:
    """Delete preview files for given issue ids.

    Returns count of deleted previews.
    """
    deleted = 0
    for issue_id in issue_ids:
        path = preview_path(previews_dir, issue_id)
        if path.exists():
            try:
                path.unlink()
                deleted += 1
            except OSError as exc:
                logger.error(f"Failed to delete preview {path}: {exc}")
    return deleted


def remove_from_disk(path: Path) -> bool:
    """Remove a backing archive file or image folder. Failures are logged."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        else:
            return False
    except OSError as exc:
        logger.error(f"✗ Failed to remove {short_path(path)}: {exc}")
        return False
    logger.info(f"[-] Removed from disk: {short_path(path)}")
    return True
