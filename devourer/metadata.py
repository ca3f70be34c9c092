"""Series metadata lookup against the Jikan (MyAnimeList) API.

Jikan API: https://api.jikan.moe/v4
- GET /manga?q={name} - search manga by title

The selected result is stored on the Series as an opaque JSON blob; the
pydantic models below are a typed view over the few fields Devourer reads.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, NamedTuple, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .errors import MetadataUnavailableError
from .logging_config import get_logger

logger = get_logger(__name__)


class MangaTitle(BaseModel):
    model_config = {"extra": "ignore"}

    type: Optional[str] = None
    title: str = ""


class MangaImage(BaseModel):
    model_config = {"extra": "ignore"}

    image_url: Optional[str] = None
    small_image_url: Optional[str] = None
    large_image_url: Optional[str] = None


class MangaImages(BaseModel):
    model_config = {"extra": "ignore"}

    jpg: MangaImage = MangaImage()
    webp: MangaImage = MangaImage()


class MangaData(BaseModel):
    """The subset of a Jikan manga entry Devourer reads."""

    model_config = {"extra": "ignore"}

    mal_id: int = 0
    title: Optional[str] = None
    titles: List[MangaTitle] = []
    images: MangaImages = MangaImages()
    synopsis: Optional[str] = None

    @property
    def primary_title(self) -> Optional[str]:
        if self.titles:
            return self.titles[0].title
        return self.title

    @property
    def cover_url(self) -> Optional[str]:
        return self.images.jpg.large_image_url or None


class MetadataMatch(NamedTuple):
    raw: str  # the selected entry as JSON, persisted verbatim
    data: MangaData


def parse_manga_data(blob: Optional[str]) -> Optional[MangaData]:
    """Decode a stored metadata blob. Returns None when empty or unreadable."""
    if not blob:
        return None
    try:
        return MangaData.model_validate_json(blob)
    except ValidationError as exc:
        logger.warning(f"Unreadable metadata blob: {exc.error_count()} errors")
        return None


def select_entry(name: str, entries: List[dict[str, Any]]) -> dict[str, Any]:
    """Pick the entry whose primary title equals `name` (case-insensitive), else the first."""
    wanted = name.casefold()
    for entry in entries:
        try:
            title = MangaData.model_validate(entry).primary_title
        except ValidationError:
            continue
        if title and title.casefold() == wanted:
            return entry
    return entries[0]


class MetadataClient:
    """Thin Jikan client. One request per lookup, no retries."""

    def __init__(self, base_url: str = "https://api.jikan.moe/v4", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def find_series(self, name: str) -> MetadataMatch:
        """Search by plain series name and return the best match.

        Raises:
            MetadataUnavailableError: on transport errors, bad responses or no results.
        """
        url = f"{self.base_url}/manga"
        logger.debug(f"Looking up metadata for {name!r}")

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url, params={"q": name})
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise MetadataUnavailableError(
                f"Lookup for {name!r} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise MetadataUnavailableError(f"Lookup for {name!r} failed: {exc}") from exc
        except ValueError as exc:
            raise MetadataUnavailableError(f"Lookup for {name!r} returned invalid JSON") from exc

        entries = payload.get("data") if isinstance(payload, dict) else None
        if not entries:
            raise MetadataUnavailableError(f"No results found for {name!r}")

        entry = select_entry(name, entries)
        try:
            data = MangaData.model_validate(entry)
        except ValidationError as exc:
            raise MetadataUnavailableError(f"Unexpected result shape for {name!r}") from exc

        return MetadataMatch(json.dumps(entry), data)

    def download_image(self, url: str, dest: Path) -> Path:
        """Stream an image to dest. Leaves no partial file behind on failure."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with partial.open("wb") as handle:
                        for chunk in response.iter_bytes():
                            handle.write(chunk)
            partial.replace(dest)
        except (httpx.HTTPError, OSError) as exc:
            partial.unlink(missing_ok=True)
            raise MetadataUnavailableError(f"Failed to download {url}: {exc}") from exc
        return dest
