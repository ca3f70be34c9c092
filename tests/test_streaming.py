import io
import os
import zipfile

import pytest
from sqlmodel import Session

from conftest import image_bytes
from devourer.database import get_engine
from devourer.errors import NotFoundError, PathViolationError
from devourer.repository import Repository
from devourer.streaming import (
    NORMALIZED_MEDIA_TYPE,
    PASSTHROUGH_MEDIA_TYPE,
    content_disposition,
    open_issue_delivery,
    prepare_delivery,
)


def _catalog(library_root, series_name, issue_path, file_format="cbz"):
    """Insert library/series/issue rows directly and return (series_id, issue_id)."""
    with Session(get_engine()) as session:
        repo = Repository(session)
        library = repo.get_library(1) or repo.create_library("Main", library_root)
        series = repo.get_series_by_path(library_root / series_name) or repo.create_series(
            library.id, series_name, library_root / series_name
        )
        issue = repo.create_issue(
            series_id=series.id,
            path=issue_path,
            file_format=file_format,
            volume=0,
            chapter=0,
        )
        repo.commit()
        return series.id, issue.id


def _read(delivery) -> bytes:
    return b"".join(delivery.iter_bytes())


def test_zip_passes_through_unchanged(test_db, library_root, make_zip):
    path = make_zip(library_root / "OnePiece" / "OnePiece - v1 c001.cbz", {"001.png": image_bytes()})
    series_id, issue_id = _catalog(library_root, "OnePiece", path)

    delivery = open_issue_delivery(series_id, issue_id)

    assert delivery.media_type == PASSTHROUGH_MEDIA_TYPE
    assert delivery.filename == "OnePiece - v1 c001.cbz"
    assert delivery.temporary is False
    assert _read(delivery) == path.read_bytes()
    assert path.exists()


def test_image_folder_is_zipped(test_db, library_root, make_image_folder):
    folder = make_image_folder(library_root / "Naruto" / "Chapter 700", 3)
    (folder / "extras").mkdir()
    (folder / "extras" / "note.txt").write_text("x")
    series_id, issue_id = _catalog(library_root, "Naruto", folder, file_format="folder")

    delivery = open_issue_delivery(series_id, issue_id)
    temp_path = delivery.path

    assert delivery.media_type == NORMALIZED_MEDIA_TYPE
    assert delivery.filename == "Chapter 700.zip"
    assert delivery.headers["Content-Disposition"] == 'attachment; filename="Chapter 700.zip"'
    body = _read(delivery)

    with zipfile.ZipFile(io.BytesIO(body)) as zf:
        assert sorted(zf.namelist()) == ["001.png", "002.png", "003.png", "extras/note.txt"]
    assert not temp_path.exists()


def test_7z_is_repackaged_as_zip(test_db, library_root, make_7z):
    path = make_7z(
        library_root / "Berserk" / "Berserk v01.cb7",
        {"001.png": image_bytes(), "sub/002.png": image_bytes(color="blue")},
    )
    series_id, issue_id = _catalog(library_root, "Berserk", path, file_format="cb7")

    delivery = open_issue_delivery(series_id, issue_id)

    assert delivery.filename == "Berserk v01.zip"
    assert delivery.media_type == NORMALIZED_MEDIA_TYPE
    with zipfile.ZipFile(io.BytesIO(_read(delivery))) as zf:
        assert zf.read("001.png") == image_bytes()
        assert zf.read("sub/002.png") == image_bytes(color="blue")


def test_rar_named_zip_container_is_repackaged(test_db, library_root, make_zip):
    # misnamed archive: zip bytes behind a .cbr extension still normalize
    path = make_zip(library_root / "Akira" / "Akira 01.cbr", {"001.png": image_bytes()})
    series_id, issue_id = _catalog(library_root, "Akira", path, file_format="cbr")

    delivery = open_issue_delivery(series_id, issue_id)

    assert delivery.filename == "Akira 01.zip"
    with zipfile.ZipFile(io.BytesIO(_read(delivery))) as zf:
        assert zf.namelist() == ["001.png"]


def test_issue_of_another_series_is_not_found(test_db, library_root, make_zip):
    a = make_zip(library_root / "A" / "1.cbz", {"001.png": image_bytes()})
    b = make_zip(library_root / "B" / "1.cbz", {"001.png": image_bytes()})
    series_a, _ = _catalog(library_root, "A", a)
    _, issue_b = _catalog(library_root, "B", b)

    with pytest.raises(NotFoundError):
        open_issue_delivery(series_a, issue_b)


def test_unknown_ids_are_not_found(test_db):
    with pytest.raises(NotFoundError):
        open_issue_delivery(1, 1)


def test_missing_file_is_not_found(test_db, library_root):
    series_id, issue_id = _catalog(library_root, "Gone", library_root / "Gone" / "1.cbz")

    with pytest.raises(NotFoundError):
        open_issue_delivery(series_id, issue_id)


def test_path_outside_library_is_rejected(test_db, library_root, tmp_path, make_zip):
    outside = make_zip(tmp_path / "secret" / "1.cbz", {"001.png": image_bytes()})
    series_id, issue_id = _catalog(library_root, "Evil", library_root / "Evil" / ".." / ".." / "secret" / "1.cbz")

    with pytest.raises(PathViolationError):
        open_issue_delivery(series_id, issue_id)
    assert outside.exists()


def test_symlink_escaping_library_is_rejected(test_db, library_root, tmp_path, make_zip):
    outside = make_zip(tmp_path / "secret" / "1.cbz", {"001.png": image_bytes()})
    (library_root / "Evil").mkdir()
    link = library_root / "Evil" / "1.cbz"
    os.symlink(outside, link)
    series_id, issue_id = _catalog(library_root, "Evil", link)

    with pytest.raises(PathViolationError):
        open_issue_delivery(series_id, issue_id)


def test_archive_with_escaping_member_is_rejected(tmp_path, make_zip):
    path = make_zip(tmp_path / "dl" / "evil.cbr", {"ok.png": b"y", "../../evil.png": b"x"})

    with pytest.raises(PathViolationError):
        prepare_delivery(path)
    assert not (tmp_path / "evil.png").exists()


def test_close_is_idempotent(tmp_path, make_image_folder):
    folder = make_image_folder(tmp_path / "Chapter 1", 1)
    delivery = prepare_delivery(folder)

    delivery.close()
    delivery.close()

    assert not delivery.path.exists()


def test_content_disposition_non_latin_name():
    assert content_disposition("ワンピース.zip") == (
        "attachment; filename*=utf-8''%E3%83%AF%E3%83%B3%E3%83%94%E3%83%BC%E3%82%B9.zip"
    )
