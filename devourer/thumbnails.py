"""Preview generation for Devourer.

Decodes the representative page of an issue and stores a fixed-width JPEG
under `previews/{issue_id}_preview.jpg`. Reruns overwrite the same file.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Union

from PIL import Image, UnidentifiedImageError
from sqlmodel import Session

from .config import DevourerConfig
from .database import get_engine
from .logging_config import get_logger
from .repository import Repository
from .utils import preview_path

logger = get_logger(__name__)


# Extension → Pillow decoder name
DECODERS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".gif": "GIF",
}


def decode_image(source: Union[bytes, Path, BinaryIO], name: str) -> Image.Image:
    """Decode an image, choosing the decoder from the file extension of `name`.

    Raises ValueError for extensions outside the supported four formats.
    """
    suffix = Path(name).suffix.lower()
    decoder = DECODERS.get(suffix)
    if decoder is None:
        raise ValueError(f"Unsupported image format: {suffix}")

    if isinstance(source, bytes):
        source = BytesIO(source)
    with Image.open(source, formats=[decoder]) as im:
        im.load()
        return im.convert("RGB")


def scaled_size(width: int, src_width: int, src_height: int) -> tuple[int, int]:
    """Target size for a fixed width: height = width * src_height / src_width, truncated."""
    height = int(width * src_height / src_width)
    return width, max(height, 1)


def render_preview(image: Image.Image, dest: Path, width: int, quality: int) -> Path:
    """Resample with nearest-neighbour to `width` and write a JPEG to dest."""
    size = scaled_size(width, image.width, image.height)
    resized = image.resize(size, Image.Resampling.NEAREST)
    dest.parent.mkdir(parents=True, exist_ok=True)
    resized.save(dest, format="JPEG", quality=quality)
    return dest


def generate_preview(
    source: Union[bytes, Path],
    name: str,
    issue_id: int,
    config: DevourerConfig,
) -> bool:
    """Generate the preview for one issue.

    Args:
        source: Raw image bytes (archive member) or a path (loose image)
        name: File name of the image, used to pick the decoder
        issue_id: Issue id for the preview filename

    Returns True if successful, False otherwise. Failures are logged only.
    """
    dest = preview_path(config.previews_dir, issue_id)
    try:
        image = decode_image(source, name)
        render_preview(image, dest, config.previews.width, config.previews.quality)
    except (OSError, ValueError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
        logger.error(f"✗ Preview for issue {issue_id} from {Path(name).name}: {exc}")
        return False
    return True


def cleanup_orphaned_previews(config: DevourerConfig) -> int:
    """Remove preview and cover files that don't belong to any catalog row.

    Returns count of deleted files.
    """
    with Session(get_engine()) as session:
        repo = Repository(session)
        valid_issue_ids = repo.get_issue_ids()
        valid_series_ids = repo.get_series_ids()

    deleted = 0
    if config.previews_dir.exists():
        for preview_file in config.previews_dir.glob("*_preview.jpg"):
            issue_id = preview_file.name.split("_", 1)[0]
            if not issue_id.isdigit() or int(issue_id) in valid_issue_ids:
                continue
            try:
                preview_file.unlink()
                deleted += 1
            except OSError as exc:
                logger.error(f"Failed to remove preview {preview_file}: {exc}")

    if config.covers_dir.exists():
        for cover_file in config.covers_dir.glob("*.jpg"):
            if not cover_file.stem.isdigit() or int(cover_file.stem) in valid_series_ids:
                continue
            try:
                cover_file.unlink()
                deleted += 1
            except OSError as exc:
                logger.error(f"Failed to remove cover {cover_file}: {exc}")

    return deleted
