import json

import httpx
import pytest
import respx

from devourer.errors import MetadataUnavailableError
from devourer.metadata import MetadataClient, parse_manga_data, select_entry

BASE_URL = "https://jikan.test/v4"
COVER_URL = "https://cdn.test/images/manga/2/253146l.jpg"


def _entry(mal_id, title, cover=COVER_URL):
    return {
        "mal_id": mal_id,
        "title": title,
        "titles": [{"type": "Default", "title": title}],
        "images": {"jpg": {"image_url": None, "large_image_url": cover}},
        "synopsis": f"About {title}",
        "score": 9.1,
    }


@respx.mock
def test_find_series_prefers_exact_title_match():
    route = respx.get(f"{BASE_URL}/manga").mock(
        return_value=httpx.Response(
            200,
            json={"data": [_entry(1, "One Piece: Party"), _entry(13, "onepiece")]},
        )
    )

    match = MetadataClient(BASE_URL).find_series("OnePiece")

    assert route.called
    assert route.calls.last.request.url.params["q"] == "OnePiece"
    assert match.data.mal_id == 13
    assert match.data.cover_url == COVER_URL
    # unknown fields survive in the stored blob
    assert json.loads(match.raw)["score"] == 9.1


@respx.mock
def test_find_series_falls_back_to_first_entry():
    respx.get(f"{BASE_URL}/manga").mock(
        return_value=httpx.Response(200, json={"data": [_entry(2, "Berserk"), _entry(3, "Other")]})
    )

    match = MetadataClient(BASE_URL).find_series("Berserk Deluxe")

    assert match.data.mal_id == 2


@respx.mock
def test_find_series_no_results():
    respx.get(f"{BASE_URL}/manga").mock(return_value=httpx.Response(200, json={"data": []}))

    with pytest.raises(MetadataUnavailableError):
        MetadataClient(BASE_URL).find_series("Nothing")


@respx.mock
def test_find_series_server_error():
    respx.get(f"{BASE_URL}/manga").mock(return_value=httpx.Response(500, json={"error": "boom"}))

    with pytest.raises(MetadataUnavailableError):
        MetadataClient(BASE_URL).find_series("OnePiece")


@respx.mock
def test_find_series_transport_error():
    respx.get(f"{BASE_URL}/manga").mock(side_effect=httpx.ConnectTimeout)

    with pytest.raises(MetadataUnavailableError):
        MetadataClient(BASE_URL).find_series("OnePiece")


@respx.mock
def test_find_series_invalid_json():
    respx.get(f"{BASE_URL}/manga").mock(return_value=httpx.Response(200, content=b"<html>"))

    with pytest.raises(MetadataUnavailableError):
        MetadataClient(BASE_URL).find_series("OnePiece")


@respx.mock
def test_download_image(tmp_path):
    respx.get(COVER_URL).mock(return_value=httpx.Response(200, content=b"\xff\xd8jpeg"))
    dest = tmp_path / "covers" / "5.jpg"

    result = MetadataClient(BASE_URL).download_image(COVER_URL, dest)

    assert result == dest
    assert dest.read_bytes() == b"\xff\xd8jpeg"


@respx.mock
def test_download_image_failure_leaves_nothing(tmp_path):
    respx.get(COVER_URL).mock(return_value=httpx.Response(404))
    dest = tmp_path / "covers" / "5.jpg"

    with pytest.raises(MetadataUnavailableError):
        MetadataClient(BASE_URL).download_image(COVER_URL, dest)

    assert not dest.exists()
    assert list(dest.parent.iterdir()) == []


def test_select_entry_skips_malformed_entries():
    entries = [{"titles": "not-a-list"}, _entry(4, "Akira")]
    assert select_entry("akira", entries)["mal_id"] == 4


def test_parse_manga_data():
    blob = json.dumps(_entry(9, "Vagabond"))
    data = parse_manga_data(blob)

    assert data.primary_title == "Vagabond"
    assert data.synopsis == "About Vagabond"
    assert parse_manga_data(None) is None
    assert parse_manga_data("") is None
    assert parse_manga_data("{broken") is None
