import io
import zipfile
from pathlib import Path

import py7zr
import pytest
from PIL import Image

from devourer.config import DevourerConfig, MetadataConfig
from devourer.database import init_db, make_engine


def image_bytes(size=(10, 10), fmt="PNG", color="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Point the global engine at a fresh SQLite file with the full schema.

    The file sits where test_config expects it, so the app lifespan keeps this engine.
    """
    db_file = tmp_path / "data" / "library.db"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = make_engine(f"sqlite:///{db_file}")
    monkeypatch.setattr("devourer.database.DB_PATH", db_file, raising=True)
    monkeypatch.setattr("devourer.database.engine", engine, raising=True)
    init_db()
    yield engine
    engine.dispose()


@pytest.fixture
def test_config(tmp_path) -> DevourerConfig:
    return DevourerConfig(
        metadata=MetadataConfig(enabled=False, delay_seconds=0),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def library_root(tmp_path) -> Path:
    root = tmp_path / "lib"
    root.mkdir()
    return root


@pytest.fixture
def make_zip():
    """Factory: write a zip whose members are {name: bytes or None (directory)}."""

    def _make(path: Path, members: dict) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for name, data in members.items():
                if data is None:
                    zf.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
                else:
                    zf.writestr(name, data)
        return path

    return _make


@pytest.fixture
def make_7z():
    """Factory: write a 7z archive whose members are {name: bytes}."""

    def _make(path: Path, members: dict) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with py7zr.SevenZipFile(path, "w") as archive:
            for name, data in members.items():
                archive.writestr(data, name)
        return path

    return _make


@pytest.fixture
def make_image_folder():
    """Factory: write `count` PNG pages into a folder."""

    def _make(folder: Path, count: int, size=(10, 10)) -> Path:
        folder.mkdir(parents=True, exist_ok=True)
        for index in range(1, count + 1):
            (folder / f"{index:03d}.png").write_bytes(image_bytes(size))
        return folder

    return _make
