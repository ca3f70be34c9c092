"""SQLModel database models for Devourer."""

from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel, Relationship

SCAN_LOCK_KEY = "scan_lock"
SCAN_IDLE = "0"
SCAN_BUSY = "1"

FOLDER_FORMAT = "folder"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LibraryBase(SQLModel):
    name: str = Field(unique=True, index=True)
    path: str = Field(unique=True, index=True)


class Library(LibraryBase, table=True):
    __tablename__ = "libraries"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)

    series: List["Series"] = Relationship(
        back_populates="library",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class SeriesBase(SQLModel):
    title: str = Field(index=True)
    path: str = Field(unique=True, index=True)
    cover: Optional[str] = None
    # Raw JSON of the selected lookup result; decode with metadata.parse_manga_data
    manga_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    library_id: int = Field(foreign_key="libraries.id", index=True)


class Series(SeriesBase, table=True):
    __tablename__ = "series"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)

    library: Optional[Library] = Relationship(back_populates="series")
    issues: List["Issue"] = Relationship(
        back_populates="series",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class IssueBase(SQLModel):
    path: str = Field(unique=True, index=True)
    file_format: str
    volume: int = 0
    chapter: int = 0
    total_pages: int = 0
    current_page: int = 0
    is_read: bool = False
    series_id: int = Field(foreign_key="series.id", index=True)


class Issue(IssueBase, table=True):
    __tablename__ = "issues"
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)

    series: Optional[Series] = Relationship(back_populates="issues")

    @property
    def is_folder(self) -> bool:
        return self.file_format == FOLDER_FORMAT


class ScanState(SQLModel, table=True):
    """Persisted busy/idle flag guarding library scans ("1" busy, "0" idle)."""

    __tablename__ = "scan_state"
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    value: str = SCAN_IDLE
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def busy(self) -> bool:
        return self.value == SCAN_BUSY
