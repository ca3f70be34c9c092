"""Path utilities shared by the scanner and the streaming layer.

All paths stored in the database are absolute, normalized strings. A Series
path is always `<library root>/<first segment under the root>`.
"""

from __future__ import annotations

import os
from pathlib import Path, PurePath
from typing import Tuple


def normalize(path: os.PathLike | str) -> Path:
    """Return an absolute, lexically normalized path (no `.`/`..` segments).

    Symlinks are not resolved.

    Example:
        >>> normalize("/library/Comics/../Manga/./OnePiece")
        Path("/library/Manga/OnePiece")
    """
    return Path(os.path.normpath(os.path.abspath(os.fspath(path))))


def relative_parts(path: Path, library_root: Path) -> Tuple[str, ...]:
    """Return the segments of `path` below `library_root`.

    Raises ValueError if `path` is not under the root.

    Example:
        >>> relative_parts(Path("/lib/OnePiece/v01/001.jpg"), Path("/lib"))
        ("OnePiece", "v01", "001.jpg")
    """
    return PurePath(path).relative_to(library_root).parts


def is_confined(path: os.PathLike | str, library_root: os.PathLike | str) -> bool:
    """Return True if `path` stays inside `library_root`.

    Checked twice: lexically after normalization (catches `..` segments) and
    after resolving symlinks (catches links pointing out of the library).
    Comparison is per path segment, so `/lib2` is not inside `/lib`.
    """
    lexical_path = normalize(path)
    lexical_root = normalize(library_root)
    if not lexical_path.is_relative_to(lexical_root):
        return False

    real_path = Path(os.path.realpath(lexical_path))
    real_root = Path(os.path.realpath(lexical_root))
    return real_path.is_relative_to(real_root)


def member_target(dest_dir: Path, member_name: str) -> Path:
    """Return where an archive member would land inside `dest_dir`.

    Raises ValueError for absolute names or names that climb out of `dest_dir`.
    """
    name = member_name.replace("\\", "/")
    if name.startswith("/") or PurePath(name).drive:
        raise ValueError(f"Absolute member path: {member_name}")

    target = normalize(dest_dir / name)
    if not target.is_relative_to(normalize(dest_dir)) or target == normalize(dest_dir):
        raise ValueError(f"Member path escapes extraction directory: {member_name}")
    return target
