"""Catalog synchronization for Devourer.

Turns classified filesystem entries into Series and Issue rows. The path is
the dedup key for both, so rescanning an unchanged library adds nothing.
Enrichment runs once, right after a Series row is first created.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional, Tuple

from .archive import count_folder_pages, inspect_archive
from .classifier import Classification, WorkKind
from .config import DevourerConfig
from .errors import DevourerError, MetadataUnavailableError
from .logging_config import get_logger
from .metadata import MetadataClient
from .models import FOLDER_FORMAT, Issue, Library, Series
from .repository import Repository
from .thumbnails import generate_preview
from .titles import parse_volume_chapter
from .utils import cover_path, short_path

logger = get_logger(__name__)


class SyncOutcome(str, Enum):
    ADDED = "added"
    EXISTING = "existing"
    FAILED = "failed"


class CatalogSynchronizer:
    """Find-or-create Series/Issues for one library scan."""

    def __init__(
        self,
        repo: Repository,
        config: DevourerConfig,
        library: Library,
        metadata_client: Optional[MetadataClient] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.config = config
        self.library = library
        self.metadata_client = metadata_client
        self._sleep = sleep
        self.series_added = 0

    def ensure_series(self, item: Classification) -> Tuple[Series, bool]:
        """Return (series, created) for the item's series path."""
        series = self.repo.get_series_by_path(item.series_path)
        if series is not None:
            return series, False

        series = self.repo.create_series(self.library.id, item.series_name, item.series_path)
        self.repo.commit()
        logger.info(f"[+] New series: {series.title}")
        self.series_added += 1

        if self.metadata_client is not None:
            self._enrich(series)
        return series, True

    def _enrich(self, series: Series) -> None:
        try:
            match = self.metadata_client.find_series(series.title)
        except MetadataUnavailableError as exc:
            logger.warning(f"No metadata for {series.title}: {exc}")
        else:
            self.repo.set_series_metadata(series, match.raw)
            self.repo.commit()

            cover_url = match.data.cover_url
            if cover_url:
                dest = cover_path(self.config.covers_dir, series.id)
                try:
                    self.metadata_client.download_image(cover_url, dest)
                except MetadataUnavailableError as exc:
                    logger.warning(f"Cover download failed for {series.title}: {exc}")
                else:
                    self.repo.set_series_cover(series, dest)
                    self.repo.commit()
        finally:
            # Informal rate limit of the lookup service
            self._sleep(self.config.metadata.delay_seconds)

    def sync(self, item: Classification) -> SyncOutcome:
        """Catalog one classified entry. Only brand-new issues are inspected."""
        series, _ = self.ensure_series(item)

        if self.repo.get_issue_by_path(item.issue_path) is not None:
            logger.debug(f"Issue already catalogued: {short_path(item.issue_path)}")
            return SyncOutcome.EXISTING

        volume, chapter = parse_volume_chapter(item.chapter_name)
        if item.kind is WorkKind.ARCHIVE:
            file_format = item.extension.lstrip(".")
        else:
            file_format = FOLDER_FORMAT

        issue = self.repo.create_issue(
            series_id=series.id,
            path=item.issue_path,
            file_format=file_format,
            volume=volume,
            chapter=chapter,
        )
        self.repo.commit()

        if item.kind is WorkKind.ARCHIVE:
            ok = self._process_archive(issue, item)
        else:
            ok = self._process_folder(issue, item)
        self.repo.commit()

        status = "✓" if ok else "✗"
        logger.debug(
            f"{status} {short_path(item.issue_path)} "
            f"(v{volume} c{chapter}, {issue.total_pages} pages)"
        )
        return SyncOutcome.ADDED if ok else SyncOutcome.FAILED

    def _process_archive(self, issue: Issue, item: Classification) -> bool:
        try:
            inspection = inspect_archive(item.issue_path)
        except DevourerError as exc:
            logger.error(f"✗ {item.issue_path.name} - CORRUPT: {exc.message}")
            return False

        if inspection.cover_bytes is not None:
            generate_preview(inspection.cover_bytes, inspection.cover_name, issue.id, self.config)

        self.repo.set_total_pages(issue, inspection.page_count)
        return True

    def _process_folder(self, issue: Issue, item: Classification) -> bool:
        generate_preview(item.source, item.source.name, issue.id, self.config)
        self.repo.set_total_pages(issue, count_folder_pages(item.issue_path))
        return True
