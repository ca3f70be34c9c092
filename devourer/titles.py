"""Volume/chapter extraction from chapter-level names.

Best effort: anything ambiguous degrades to 0 instead of raising.
"""

from __future__ import annotations

import re
from typing import Tuple

ANNOTATION_RE = re.compile(r"\[.*?\]|\(.*?\)|\{.*?\}")
VOLUME_RE = re.compile(r"(?:v|vol|volume)\.?(\d+)", re.IGNORECASE)
CHAPTER_RE = re.compile(r"c(\d+)", re.IGNORECASE)
STANDALONE_NUMBER_RE = re.compile(r"(?<!\d)(\d{2,4})(?!\d)")


def clean_name(name: str) -> str:
    """Drop [group], (year) and {tag} annotations."""
    return ANNOTATION_RE.sub("", name).strip()


def parse_volume_chapter(name: str) -> Tuple[int, int]:
    """Return (volume, chapter) parsed from a file or folder name.

    >>> parse_volume_chapter("Series - c012 [Group]")
    (0, 12)
    >>> parse_volume_chapter("OnePiece - v1 c001")
    (1, 1)
    >>> parse_volume_chapter("Berserk 105 (2003)")
    (0, 105)
    """
    cleaned = clean_name(name)
    volume = 0
    chapter = 0

    match = VOLUME_RE.search(cleaned)
    if match:
        volume = int(match.group(1))

    match = CHAPTER_RE.search(cleaned)
    if match:
        chapter = int(match.group(1))
    elif volume == 0:
        # Bare numbers only count as chapters when nothing claimed a volume
        numbers = STANDALONE_NUMBER_RE.findall(cleaned)
        if numbers:
            chapter = int(numbers[-1])

    return volume, chapter
