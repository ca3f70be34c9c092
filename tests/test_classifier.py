from pathlib import Path

import pytest

from devourer.classifier import PathClassifier, WorkKind
from devourer.walker import WalkEntry

RESERVED = (".yacreaderlibrary", "covers", "cover")
IGNORED = (".DS_Store", "Thumbs.db", "@eaDir")


def _entry(path: Path) -> WalkEntry:
    return WalkEntry(path, path.suffix.lower())


@pytest.fixture
def classifier(library_root):
    return PathClassifier(library_root, RESERVED, IGNORED)


def test_archive_issue(classifier, library_root):
    path = library_root / "OnePiece" / "OnePiece - v1 c001.cbz"

    item = classifier.classify(_entry(path))

    assert item.kind is WorkKind.ARCHIVE
    assert item.series_name == "OnePiece"
    assert item.series_path == library_root / "OnePiece"
    assert item.issue_path == path
    assert item.chapter_name == "OnePiece - v1 c001"
    assert item.extension == ".cbz"


def test_series_is_first_segment_for_nested_archives(classifier, library_root):
    path = library_root / "Berserk" / "Deluxe" / "Berserk v01.7z"

    item = classifier.classify(_entry(path))

    assert item.series_name == "Berserk"
    assert item.series_path == library_root / "Berserk"
    assert item.chapter_name == "Berserk v01"


def test_sibling_images_collapse_to_one_folder_issue(classifier, library_root):
    chapter = library_root / "Naruto" / "Chapter 700"
    first = classifier.classify(_entry(chapter / "001.jpg"))
    second = classifier.classify(_entry(chapter / "002.jpg"))
    third = classifier.classify(_entry(chapter / "003.png"))

    assert first.kind is WorkKind.IMAGE_FOLDER
    assert first.issue_path == chapter
    assert first.chapter_name == "Chapter 700"
    assert first.source == chapter / "001.jpg"
    assert second is None
    assert third is None


def test_fresh_classifier_forgets_seen_folders(library_root):
    path = library_root / "Naruto" / "Chapter 700" / "001.jpg"
    assert PathClassifier(library_root, RESERVED).classify(_entry(path)) is not None
    assert PathClassifier(library_root, RESERVED).classify(_entry(path)) is not None


@pytest.mark.parametrize(
    "relative",
    [
        "covers/OnePiece.jpg",
        "OnePiece/Cover/001.jpg",
        ".yacreaderlibrary/library.ydb",
        "OnePiece/._OnePiece v1.cbz",
        "OnePiece/@eaDir/thumb.jpg",
        "OnePiece/Thumbs.db",
        "OnePiece/notes.txt",
        "OnePiece/page.gif",
        "loose.cbz",
    ],
)
def test_skipped_entries(classifier, library_root, relative):
    assert classifier.classify(_entry(library_root / relative)) is None


def test_outside_root_is_skipped(classifier, tmp_path):
    assert classifier.classify(_entry(tmp_path / "elsewhere" / "x" / "a.cbz")) is None


def test_extension_match_is_case_insensitive(classifier, library_root):
    item = classifier.classify(_entry(library_root / "Akira" / "Akira 01.CBR"))
    assert item.kind is WorkKind.ARCHIVE
    assert item.chapter_name == "Akira 01"
