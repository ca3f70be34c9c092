"""Per-entry classification for the library scanner.

Decides whether a walked file is skipped, is an archive issue, or belongs to a
loose image folder. Sibling images collapse into one folder issue.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable, NamedTuple, Optional

from .logging_config import get_logger
from .path_utils import normalize, relative_parts
from .walker import WalkEntry

logger = get_logger(__name__)


ARCHIVE_EXTENSIONS = {".zip", ".cbz", ".rar", ".cbr", ".7z", ".cb7"}
LOOSE_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


class WorkKind(str, Enum):
    ARCHIVE = "archive"
    IMAGE_FOLDER = "folder"


class Classification(NamedTuple):
    kind: WorkKind
    series_name: str
    series_path: Path
    issue_path: Path  # archive file, or the image directory
    chapter_name: str  # fed to the title parser
    source: Path  # the walked file itself
    extension: str


def is_archive(extension: str) -> bool:
    return extension.lower() in ARCHIVE_EXTENSIONS


def is_loose_image(extension: str) -> bool:
    return extension.lower() in LOOSE_IMAGE_EXTENSIONS


class PathClassifier:
    """Classifies walk entries for one library during one scan.

    Holds the per-scan set of image directories already turned into an issue;
    create a fresh classifier for every scan.
    """

    def __init__(
        self,
        library_root: Path,
        reserved_names: Iterable[str],
        ignore_patterns: Iterable[str] = (),
    ):
        self.library_root = normalize(library_root)
        self.reserved_names = {name.lower() for name in reserved_names}
        self.ignore_patterns = set(ignore_patterns)
        self.seen_dirs: set[Path] = set()

    def _is_skipped(self, parts: tuple[str, ...]) -> bool:
        for part in parts:
            if part.lower() in self.reserved_names:
                return True
            # macOS resource forks (._*) and configured junk names
            if part.startswith("._") or part in self.ignore_patterns:
                return True
        return False

    def classify(self, entry: WalkEntry) -> Optional[Classification]:
        """Return a Classification, or None when the entry should be skipped."""
        path = normalize(entry.path)
        try:
            parts = relative_parts(path, self.library_root)
        except ValueError:
            logger.warning(f"Skipping {path}: outside library root {self.library_root}")
            return None

        if self._is_skipped(parts):
            return None

        if len(parts) < 2:
            logger.warning(f"Skipping {path.name}: not inside a series folder")
            return None

        series_name = parts[0]
        series_path = self.library_root / series_name

        if is_archive(entry.extension):
            return Classification(
                kind=WorkKind.ARCHIVE,
                series_name=series_name,
                series_path=series_path,
                issue_path=path,
                chapter_name=path.name[: -len(entry.extension)],
                source=path,
                extension=entry.extension,
            )

        if is_loose_image(entry.extension):
            chapter_dir = path.parent
            if chapter_dir in self.seen_dirs:
                return None
            self.seen_dirs.add(chapter_dir)
            return Classification(
                kind=WorkKind.IMAGE_FOLDER,
                series_name=series_name,
                series_path=series_path,
                issue_path=chapter_dir,
                chapter_name=chapter_dir.name,
                source=path,
                extension=entry.extension,
            )

        logger.debug(f"Ignoring {path.name}: unsupported extension")
        return None
