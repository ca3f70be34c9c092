"""Archive handling utilities for Devourer.

Provides a unified interface for reading zip-family (zip/cbz), RAR (rar/cbr)
and 7-zip (7z/cb7) archives, with format fallback detection. The inspection
and extraction routines below are written once against that interface.
"""

from __future__ import annotations

import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import BinaryIO, List, NamedTuple, Optional, Protocol, Tuple

import py7zr
import rarfile

from .errors import ArchiveCorruptError, NotFoundError, PathViolationError
from .logging_config import get_logger
from .path_utils import member_target
from .walker import list_directory

logger = get_logger(__name__)


IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS


class Archive(Protocol):
    def list_members(self) -> List[Tuple[str, bool]]:
        """Return (name, is_directory) pairs in archive order."""
        ...

    def open_member(self, name: str) -> BinaryIO:
        """Open a single member for reading without unpacking the rest."""
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "Archive":
        ...

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class ZipArchiveWrapper:
    def __init__(self, path: Path):
        self.zf = zipfile.ZipFile(path, mode="r")

    def list_members(self) -> List[Tuple[str, bool]]:
        return [(info.filename, info.is_dir()) for info in self.zf.infolist()]

    def open_member(self, name: str) -> BinaryIO:
        return self.zf.open(name)

    def close(self) -> None:
        self.zf.close()

    def __enter__(self) -> "ZipArchiveWrapper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RarArchiveWrapper:
    def __init__(self, path: Path):
        self.rf = rarfile.RarFile(path, mode="r")

    def list_members(self) -> List[Tuple[str, bool]]:
        return [(info.filename, info.is_dir()) for info in self.rf.infolist()]

    def open_member(self, name: str) -> BinaryIO:
        return self.rf.open(name)

    def close(self) -> None:
        self.rf.close()

    def __enter__(self) -> "RarArchiveWrapper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SevenZipArchiveWrapper:
    """7-zip access through py7zr.

    py7zr only extracts to disk, so members land in a private scratch
    directory removed on close. The first request extracts just that member;
    any further request unpacks the remainder in one pass.
    """

    def __init__(self, path: Path):
        self.sz = py7zr.SevenZipFile(path, mode="r")
        self._scratch: Optional[Path] = None
        self._extract_calls = 0
        self._extracted_all = False

    def list_members(self) -> List[Tuple[str, bool]]:
        return [(info.filename, info.is_directory) for info in self.sz.list()]

    def _scratch_dir(self) -> Path:
        if self._scratch is None:
            self._scratch = Path(tempfile.mkdtemp(prefix="devourer-7z-"))
        return self._scratch

    def _extract(self, targets: Optional[List[str]]) -> None:
        if self._extract_calls:
            self.sz.reset()
        self.sz.extract(path=self._scratch_dir(), targets=targets)
        self._extract_calls += 1
        if targets is None:
            self._extracted_all = True

    def open_member(self, name: str) -> BinaryIO:
        target = member_target(self._scratch_dir(), name)
        if not target.exists() and not self._extracted_all:
            self._extract([name] if self._extract_calls == 0 else None)
        if not target.is_file():
            raise KeyError(f"There is no item named {name!r} in the archive")
        return target.open("rb")

    def close(self) -> None:
        self.sz.close()
        if self._scratch is not None:
            shutil.rmtree(self._scratch, ignore_errors=True)
            self._scratch = None

    def __enter__(self) -> "SevenZipArchiveWrapper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


ZIP_EXTENSIONS = {".zip", ".cbz"}
RAR_EXTENSIONS = {".rar", ".cbr"}
SEVEN_ZIP_EXTENSIONS = {".7z", ".cb7"}

_BACKENDS = (ZipArchiveWrapper, RarArchiveWrapper, SevenZipArchiveWrapper)


def _primary_backend(suffix: str):
    if suffix in ZIP_EXTENSIONS:
        return ZipArchiveWrapper
    if suffix in RAR_EXTENSIONS:
        return RarArchiveWrapper
    if suffix in SEVEN_ZIP_EXTENSIONS:
        return SevenZipArchiveWrapper
    raise ValueError(f"Unsupported archive format: {suffix}")


def get_archive(path: Path) -> Archive:
    """Open an archive, detecting format by extension with fallback.

    Tries the expected format first (cbz→zip, cbr→rar, cb7→7z), then the
    others (handles misnamed files). Raises ArchiveCorruptError when no
    backend can open it.
    """
    if not path.exists():
        raise NotFoundError(f"File not found: {path}")

    primary = _primary_backend(path.suffix.lower())
    candidates = [primary] + [backend for backend in _BACKENDS if backend is not primary]

    first_error: Optional[Exception] = None
    for backend in candidates:
        try:
            return backend(path)
        except Exception as exc:
            if first_error is None:
                first_error = exc

    raise ArchiveCorruptError(f"Unable to open {path.name}: {first_error}") from first_error


class Inspection(NamedTuple):
    page_count: int
    cover_name: Optional[str]
    cover_bytes: Optional[bytes]


def inspect_archive(path: Path) -> Inspection:
    """Count pages and pull the first image member of an archive.

    Member names are sorted by plain string order (page10 before page2), and
    only the chosen image is read. The page count is the number of
    non-directory members whether or not an image was found or readable.
    """
    with get_archive(path) as archive:
        try:
            names = sorted(name for name, is_dir in archive.list_members() if not is_dir)
        except Exception as exc:
            raise ArchiveCorruptError(f"Unable to list {path.name}: {exc}") from exc

        cover_name = next((name for name in names if is_image(name)), None)
        if cover_name is None:
            logger.warning(f"No images found in archive {path.name}")
            return Inspection(len(names), None, None)

        try:
            with archive.open_member(cover_name) as stream:
                cover_bytes = stream.read()
        except Exception as exc:
            logger.error(f"✗ {path.name} - unable to extract {cover_name}: {exc}")
            return Inspection(len(names), cover_name, None)

        return Inspection(len(names), cover_name, cover_bytes)


def count_folder_pages(folder: Path) -> int:
    """Page count of a loose image folder: its one-level entry count."""
    try:
        return len(list_directory(folder))
    except OSError as exc:
        logger.error(f"✗ Unable to list {folder}: {exc}")
        return 0


def extract_all(archive: Archive, dest_dir: Path) -> int:
    """Unpack every member into dest_dir. Returns the number of files written.

    Any member whose name would land outside dest_dir aborts the extraction
    with PathViolationError.
    """
    written = 0
    for name, is_dir in archive.list_members():
        try:
            target = member_target(dest_dir, name)
        except ValueError as exc:
            raise PathViolationError(str(exc)) from exc

        if is_dir:
            target.mkdir(parents=True, exist_ok=True)
            continue

        target.parent.mkdir(parents=True, exist_ok=True)
        with archive.open_member(name) as src, target.open("wb") as dst:
            shutil.copyfileobj(src, dst)
        written += 1
    return written
