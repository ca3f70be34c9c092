"""Data Access Layer for Devourer.

Encapsulates database operations using SQLModel/SQLAlchemy.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, func

from .errors import ConflictError, InvalidInputError, NotFoundError
from .models import (
    SCAN_BUSY,
    SCAN_IDLE,
    SCAN_LOCK_KEY,
    Issue,
    Library,
    ScanState,
    Series,
)
from .path_utils import normalize


class Repository:
    """Data access layer over the catalog tables.

    Paths are accepted as Path objects and stored as absolute, normalized strings.
    Callers control when to commit.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    # --- Libraries ---

    def list_libraries(self) -> List[Library]:
        return list(self.session.exec(select(Library).order_by(Library.name)).all())

    def get_library(self, library_id: int) -> Optional[Library]:
        return self.session.get(Library, library_id)

    def create_library(self, name: str, path: Path) -> Library:
        """Insert a library row. The root must be an existing directory."""
        name = name.strip()
        if not name:
            raise InvalidInputError("Library name is required.")
        root = normalize(path)
        if not root.is_dir():
            raise InvalidInputError(f"Library path is not a directory: {root}")

        duplicate = self.session.exec(
            select(Library).where((Library.name == name) | (Library.path == str(root)))
        ).first()
        if duplicate:
            raise ConflictError("A library with this name or path already exists.")

        library = Library(name=name, path=str(root))
        self.session.add(library)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("A library with this name or path already exists.") from exc
        self.session.refresh(library)
        return library

    # --- Series ---

    def get_series(self, series_id: int) -> Optional[Series]:
        return self.session.get(Series, series_id)

    def get_series_by_path(self, path: Path) -> Optional[Series]:
        statement = select(Series).where(Series.path == str(normalize(path)))
        return self.session.exec(statement).first()

    def create_series(self, library_id: int, title: str, path: Path) -> Series:
        series = Series(title=title, path=str(normalize(path)), library_id=library_id)
        self.session.add(series)
        self.session.flush()
        self.session.refresh(series)
        return series

    def list_series_with_counts(self, library_id: int) -> List[Tuple[Series, int]]:
        """Return (series, issue_count) pairs for a library, ordered by title."""
        issue_count = (
            select(Issue.series_id, func.count(Issue.id).label("issue_count"))
            .group_by(Issue.series_id)
            .subquery()
        )
        statement = (
            select(Series, func.coalesce(issue_count.c.issue_count, 0))
            .outerjoin(issue_count, issue_count.c.series_id == Series.id)
            .where(Series.library_id == library_id)
            .order_by(Series.title)
        )
        return [(series, count) for series, count in self.session.exec(statement).all()]

    def set_series_metadata(self, series: Series, raw: str) -> None:
        series.manga_data = raw
        self.session.add(series)
        self.session.flush()

    def set_series_cover(self, series: Series, cover: Path) -> None:
        series.cover = str(cover)
        self.session.add(series)
        self.session.flush()

    def delete_series(self, series: Series) -> List[Issue]:
        """Hard-delete a series; its issues go with it. Returns the deleted issues."""
        issues = list(series.issues)
        self.session.delete(series)
        self.session.flush()
        return issues

    # --- Issues ---

    def get_issue(self, issue_id: int) -> Optional[Issue]:
        return self.session.get(Issue, issue_id)

    def get_issue_by_path(self, path: Path) -> Optional[Issue]:
        statement = select(Issue).where(Issue.path == str(normalize(path)))
        return self.session.exec(statement).first()

    def create_issue(
        self,
        *,
        series_id: int,
        path: Path,
        file_format: str,
        volume: int,
        chapter: int,
    ) -> Issue:
        issue = Issue(
            series_id=series_id,
            path=str(normalize(path)),
            file_format=file_format,
            volume=volume,
            chapter=chapter,
        )
        self.session.add(issue)
        self.session.flush()
        self.session.refresh(issue)
        return issue

    def set_total_pages(self, issue: Issue, total_pages: int) -> None:
        issue.total_pages = total_pages
        self.session.add(issue)
        self.session.flush()

    def list_issues(self, series_id: int) -> List[Issue]:
        statement = (
            select(Issue)
            .where(Issue.series_id == series_id)
            .order_by(Issue.volume, Issue.chapter, Issue.path)
        )
        return list(self.session.exec(statement).all())

    def set_current_page(self, issue: Issue, page: int) -> Issue:
        """Move the page cursor. Reaching the last page marks the issue read."""
        if page < 0 or page > issue.total_pages:
            raise InvalidInputError(
                f"Page {page} is out of range (0-{issue.total_pages})."
            )
        issue.current_page = page
        issue.is_read = page == issue.total_pages
        self.session.add(issue)
        self.session.flush()
        return issue

    def mark_issue_read(self, issue: Issue) -> Issue:
        issue.current_page = issue.total_pages
        issue.is_read = True
        self.session.add(issue)
        self.session.flush()
        return issue

    def mark_series_read(self, series_id: int) -> int:
        issues = self.list_issues(series_id)
        for issue in issues:
            self.mark_issue_read(issue)
        return len(issues)

    def delete_issue(self, issue: Issue) -> None:
        self.session.delete(issue)
        self.session.flush()

    # --- Scan state ---

    def get_scan_state(self) -> ScanState:
        state = self.session.exec(
            select(ScanState).where(ScanState.key == SCAN_LOCK_KEY)
        ).first()
        if state is None:
            raise NotFoundError("Scan status not found.")
        return state

    def try_acquire_scan_lock(self) -> bool:
        """Compare-and-set the scan flag from idle to busy.

        Returns True if this caller flipped it. The conditional UPDATE is the
        serialization point between near-simultaneous scan requests.
        """
        statement = (
            update(ScanState)
            .where(ScanState.key == SCAN_LOCK_KEY, ScanState.value == SCAN_IDLE)
            .values(value=SCAN_BUSY, updated_at=datetime.now(timezone.utc))
        )
        result = self.session.exec(statement)
        return result.rowcount == 1

    def release_scan_lock(self) -> None:
        statement = (
            update(ScanState)
            .where(ScanState.key == SCAN_LOCK_KEY)
            .values(value=SCAN_IDLE, updated_at=datetime.now(timezone.utc))
        )
        self.session.exec(statement)

    # --- Read methods (used by main/cleanup) ---

    def count_rows(self) -> Tuple[int, int, int]:
        """Return (libraries, series, issues) counts."""
        libraries = self.session.exec(select(func.count()).select_from(Library)).one()
        series = self.session.exec(select(func.count()).select_from(Series)).one()
        issues = self.session.exec(select(func.count()).select_from(Issue)).one()
        return libraries, series, issues

    def count_read_issues(self) -> int:
        statement = select(func.count()).select_from(Issue).where(Issue.is_read == True)  # noqa: E712
        return self.session.exec(statement).one()

    def get_issue_ids(self) -> set[int]:
        return set(self.session.exec(select(Issue.id)).all())

    def get_series_ids(self) -> set[int]:
        return set(self.session.exec(select(Series.id)).all())
