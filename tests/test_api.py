import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from conftest import image_bytes
from devourer.api import app
from devourer.database import get_engine
from devourer.repository import Repository
from devourer.utils import cover_path, preview_path


@pytest.fixture
def client(test_config, test_db, monkeypatch):
    monkeypatch.setattr("devourer.api.get_config", lambda: test_config)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def scanned(client, library_root, make_zip, make_image_folder):
    """A library with one archive series and one image-folder series, fully scanned."""
    pages = {f"{index:03d}.jpg": image_bytes((300, 450), fmt="JPEG") for index in range(1, 21)}
    make_zip(library_root / "OnePiece" / "OnePiece - v1 c001.cbz", pages)
    make_image_folder(library_root / "Naruto" / "Chapter 700", 3)

    response = client.post("/libraries", json={"name": "Main", "path": str(library_root)})
    assert response.status_code == 201
    assert response.json()["scan"] == "started"
    client.app.state.orchestrator.wait(timeout=30)

    with Session(get_engine()) as session:
        repo = Repository(session)
        one_piece = repo.get_series_by_path(library_root / "OnePiece")
        naruto = repo.get_series_by_path(library_root / "Naruto")
        return {
            "library_id": response.json()["library"]["id"],
            "one_piece": one_piece.id,
            "one_piece_issue": repo.list_issues(one_piece.id)[0].id,
            "naruto": naruto.id,
            "naruto_issue": repo.list_issues(naruto.id)[0].id,
        }


def test_list_libraries_empty(client):
    response = client.get("/libraries")
    assert response.status_code == 200
    assert response.json() == []


def test_create_library_rejects_bad_input(client, library_root, tmp_path):
    missing = client.post("/libraries", json={"name": "X", "path": str(tmp_path / "nope")})
    assert missing.status_code == 400
    assert missing.json()["status"] is False

    assert client.post("/libraries", json={"name": "X", "path": str(library_root)}).status_code == 201
    client.app.state.orchestrator.wait(timeout=30)
    duplicate = client.post("/libraries", json={"name": "X", "path": str(library_root)})
    assert duplicate.status_code == 409

    assert client.post("/libraries", json={"name": "Y"}).status_code == 400


def test_library_detail_lists_series_with_counts(client, scanned):
    response = client.get(f"/library/{scanned['library_id']}")

    body = response.json()
    assert response.status_code == 200
    assert body["library"]["name"] == "Main"
    assert [(s["title"], s["file_count"]) for s in body["series"]] == [("Naruto", 1), ("OnePiece", 1)]


def test_unknown_library_is_404(client):
    assert client.get("/library/99").status_code == 404
    assert client.post("/library/99/scan").status_code == 404


def test_scan_status_and_conflict(client, scanned):
    assert client.get("/scan-status").json() == {"key": "scan_lock", "value": "0"}

    with Session(get_engine()) as session:
        repo = Repository(session)
        repo.try_acquire_scan_lock()
        repo.commit()

    assert client.get("/scan-status").json()["value"] == "1"
    response = client.post(f"/library/{scanned['library_id']}/scan")
    assert response.status_code == 409
    assert response.json() == {"status": False, "error": "Scan already in progress."}


def test_rescan_accepted(client, scanned):
    response = client.post(f"/library/{scanned['library_id']}/scan")
    assert response.status_code == 202
    client.app.state.orchestrator.wait(timeout=30)
    assert client.get(f"/series/{scanned['one_piece']}/files").json()[0]["total_pages"] == 20


def test_series_and_files(client, scanned):
    series = client.get(f"/series/{scanned['one_piece']}").json()
    assert series["title"] == "OnePiece"
    [issue] = series["files"]
    assert (issue["volume"], issue["chapter"], issue["total_pages"]) == (1, 1, 20)
    assert issue["is_read"] is False

    assert client.get("/series/999").status_code == 404
    assert client.get("/series/999/files").status_code == 404


def test_manga_data_decoded(client, scanned):
    with Session(get_engine()) as session:
        repo = Repository(session)
        series = repo.get_series(scanned["one_piece"])
        repo.set_series_metadata(series, json.dumps({"mal_id": 13, "title": "One Piece", "rank": 1}))
        repo.commit()

    body = client.get(f"/series/{scanned['one_piece']}/manga-data").json()

    assert body["series"]["manga_data"]["rank"] == 1
    assert body["series"]["manga_title"] == "One Piece"
    assert len(body["files"]) == 1
    naruto = client.get(f"/series/{scanned['naruto']}/manga-data").json()
    assert naruto["series"]["manga_data"] is None


def test_page_cursor(client, scanned):
    issue_id = scanned["one_piece_issue"]

    response = client.post(f"/file/{issue_id}/page/7")
    assert response.status_code == 200
    assert (response.json()["current_page"], response.json()["is_read"]) == (7, False)

    response = client.post(f"/file/{issue_id}/page/20")
    assert response.json()["is_read"] is True

    assert client.post(f"/file/{issue_id}/page/21").status_code == 400
    assert client.post(f"/file/{issue_id}/page/abc").status_code == 400
    assert client.post("/file/999/page/1").status_code == 404


def test_mark_as_read(client, scanned):
    assert client.post(f"/file/{scanned['naruto_issue']}/mark-as-read").status_code == 200
    naruto_issue = client.get(f"/file/{scanned['naruto_issue']}").json()
    assert (naruto_issue["current_page"], naruto_issue["is_read"]) == (3, True)

    assert client.post(f"/series/{scanned['one_piece']}/mark-as-read").status_code == 200
    [issue] = client.get(f"/series/{scanned['one_piece']}/files").json()
    assert issue["is_read"] is True


def test_preview_and_cover(client, scanned, test_config):
    response = client.get(f"/file/{scanned['one_piece_issue']}/preview")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"

    assert client.get("/file/999/preview").status_code == 404
    assert client.get(f"/series/{scanned['one_piece']}/cover").status_code == 404

    cover = cover_path(test_config.covers_dir, scanned["one_piece"])
    cover.parent.mkdir(parents=True, exist_ok=True)
    cover.write_bytes(image_bytes(fmt="JPEG"))
    with Session(get_engine()) as session:
        repo = Repository(session)
        repo.set_series_cover(repo.get_series(scanned["one_piece"]), cover)
        repo.commit()
    assert client.get(f"/series/{scanned['one_piece']}/cover").status_code == 200


def test_stream_passthrough(client, scanned, library_root):
    response = client.get(
        "/get-file", params={"seriesId": scanned["one_piece"], "fileId": scanned["one_piece_issue"]}
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/octet-stream"
    assert 'filename="OnePiece - v1 c001.cbz"' in response.headers["content-disposition"]
    assert response.content == (library_root / "OnePiece" / "OnePiece - v1 c001.cbz").read_bytes()


def test_stream_folder_as_zip(client, scanned):
    response = client.get(
        "/get-file", params={"seriesId": scanned["naruto"], "fileId": scanned["naruto_issue"]}
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="Chapter 700.zip"' in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert sorted(zf.namelist()) == ["001.png", "002.png", "003.png"]


@pytest.mark.parametrize(
    "params",
    [{}, {"seriesId": "1"}, {"fileId": "1"}, {"seriesId": "x", "fileId": "1"}, {"seriesId": "1", "fileId": ""}],
)
def test_stream_bad_ids(client, params):
    response = client.get("/get-file", params=params)
    assert response.status_code == 400
    assert response.json()["status"] is False


def test_stream_issue_from_other_series(client, scanned):
    response = client.get(
        "/get-file", params={"seriesId": scanned["one_piece"], "fileId": scanned["naruto_issue"]}
    )
    assert response.status_code == 404


def test_delete_file_keeps_backing_file(client, scanned, library_root, test_config):
    issue_id = scanned["one_piece_issue"]

    assert client.delete(f"/file/{issue_id}").status_code == 200

    assert client.get(f"/file/{issue_id}").status_code == 404
    assert not preview_path(test_config.previews_dir, issue_id).exists()
    assert (library_root / "OnePiece" / "OnePiece - v1 c001.cbz").exists()


def test_delete_series_with_files(client, scanned, library_root):
    response = client.delete(f"/series/{scanned['naruto']}", params={"fileDelete": "true"})

    assert response.status_code == 200
    assert client.get(f"/series/{scanned['naruto']}").status_code == 404
    assert client.get(f"/file/{scanned['naruto_issue']}").status_code == 404
    assert not (library_root / "Naruto" / "Chapter 700").exists()
    assert client.delete(f"/series/{scanned['naruto']}").status_code == 404


def test_shutdown_drains_running_scan(test_config, test_db, monkeypatch, library_root, make_zip):
    monkeypatch.setattr("devourer.api.get_config", lambda: test_config)
    make_zip(library_root / "OnePiece" / "c001.cbz", {"001.png": image_bytes()})

    with TestClient(app) as client:
        response = client.post("/libraries", json={"name": "Main", "path": str(library_root)})
        assert response.json()["scan"] == "started"
        orchestrator = client.app.state.orchestrator

    assert orchestrator.status() == "0"
    with Session(get_engine()) as session:
        assert Repository(session).count_rows() == (1, 1, 1)
