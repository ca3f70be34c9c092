"""On-demand delivery of issues.

Resolves an issue to its file, enforces that it stays inside its library
root, and either passes the original bytes through or repackages the content
into a zip (image folders, RAR and 7-zip archives). Never touches the catalog.
"""

from __future__ import annotations

import os
import tempfile
import zipfile
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote

from sqlmodel import Session

from .archive import RAR_EXTENSIONS, SEVEN_ZIP_EXTENSIONS, extract_all, get_archive
from .database import get_engine
from .errors import (
    ArchiveCorruptError,
    DevourerError,
    IOFailureError,
    NotFoundError,
    PathViolationError,
)
from .logging_config import get_logger
from .path_utils import is_confined, normalize
from .repository import Repository
from .utils import short_path

logger = get_logger(__name__)


NORMALIZED_EXTENSION = ".zip"
NORMALIZED_MEDIA_TYPE = "application/zip"
PASSTHROUGH_MEDIA_TYPE = "application/octet-stream"

# Formats most reader clients cannot open; repackaged before sending
REPACKAGED_EXTENSIONS = RAR_EXTENSIONS | SEVEN_ZIP_EXTENSIONS

CHUNK_SIZE = 64 * 1024


def content_disposition(filename: str) -> str:
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        return f"attachment; filename*=utf-8''{quote(filename)}"
    return f'attachment; filename="{filename}"'


class Delivery:
    """A file ready to send. Temporary files are deleted once, on close."""

    def __init__(self, path: Path, filename: str, media_type: str, temporary: bool = False):
        self.path = path
        self.filename = filename
        self.media_type = media_type
        self.temporary = temporary
        self._closed = False

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Description": "File Transfer",
            "Content-Disposition": content_disposition(self.filename),
            "Content-Length": str(self.path.stat().st_size),
        }

    def iter_bytes(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        try:
            with self.path.open("rb") as handle:
                while True:
                    chunk = handle.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.temporary:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error(f"Failed to remove temporary file {self.path}: {exc}")

    def __enter__(self) -> "Delivery":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def resolve_issue_path(repo: Repository, series_id: int, issue_id: int) -> Path:
    """Look up an issue's path and check it against its library root.

    Raises:
        NotFoundError: unknown series/issue, issue of another series, or file gone.
        PathViolationError: the stored path escapes the library root.
    """
    series = repo.get_series(series_id)
    if series is None:
        raise NotFoundError("Series not found.")

    library = repo.get_library(series.library_id)
    if library is None:
        raise NotFoundError("Library not found.")

    issue = repo.get_issue(issue_id)
    if issue is None or issue.series_id != series.id:
        raise NotFoundError("File not found.")

    path = normalize(issue.path)
    if not is_confined(path, library.path):
        logger.warning(f"Rejected path outside library {library.name}: {issue.path}")
        raise PathViolationError("File path is not within the library path.")

    if not path.exists():
        raise NotFoundError("File not found.")
    return path


def _temp_zip_path() -> Path:
    fd, name = tempfile.mkstemp(prefix="devourer-", suffix=NORMALIZED_EXTENSION)
    os.close(fd)
    return Path(name)


def zip_directory(source_dir: Path, zip_path: Path) -> int:
    """Write every file under source_dir into zip_path. Returns the entry count."""
    count = 0
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for dirpath, dirnames, filenames in os.walk(source_dir):
            dirnames.sort()
            for name in sorted(filenames):
                file_path = Path(dirpath) / name
                zf.write(file_path, arcname=file_path.relative_to(source_dir).as_posix())
                count += 1
    return count


def package_directory(source_dir: Path) -> Path:
    """Zip a directory into a fresh temporary file and return its path."""
    zip_path = _temp_zip_path()
    try:
        zip_directory(source_dir, zip_path)
    except BaseException:
        zip_path.unlink(missing_ok=True)
        raise
    return zip_path


def repackage_archive(path: Path) -> Path:
    """Fully extract a RAR/7-zip archive to scratch space and re-zip it."""
    with tempfile.TemporaryDirectory(prefix="devourer-unpack-") as scratch:
        with get_archive(path) as archive:
            try:
                extract_all(archive, Path(scratch))
            except DevourerError:
                raise
            except Exception as exc:
                raise ArchiveCorruptError(f"Failed to extract {path.name}: {exc}") from exc
        return package_directory(Path(scratch))


def prepare_delivery(path: Path) -> Delivery:
    """Decide how to send a resolved path and build any temporary container."""
    try:
        if path.is_dir():
            logger.debug(f"Packaging folder {short_path(path)}")
            return Delivery(
                package_directory(path),
                f"{path.name}{NORMALIZED_EXTENSION}",
                NORMALIZED_MEDIA_TYPE,
                temporary=True,
            )

        if path.suffix.lower() in REPACKAGED_EXTENSIONS:
            logger.debug(f"Repackaging {short_path(path)}")
            return Delivery(
                repackage_archive(path),
                f"{path.stem}{NORMALIZED_EXTENSION}",
                NORMALIZED_MEDIA_TYPE,
                temporary=True,
            )
    except OSError as exc:
        raise IOFailureError(f"Failed to package {path.name}: {exc}") from exc

    return Delivery(path, path.name, PASSTHROUGH_MEDIA_TYPE)


def open_issue_delivery(series_id: int, issue_id: int, repo: Optional[Repository] = None) -> Delivery:
    """Resolve and prepare an issue for streaming."""
    if repo is not None:
        return prepare_delivery(resolve_issue_path(repo, series_id, issue_id))

    with Session(get_engine()) as session:
        path = resolve_issue_path(Repository(session), series_id, issue_id)
    return prepare_delivery(path)
