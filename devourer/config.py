"""Config management for Devourer.

Reads `config.ini` from DATA_DIR (defaults to the project root, beside main.py).
Libraries themselves live in the database; this file only holds process settings.
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
from typing import Optional

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]

# DATA_DIR holds all persistent state (config.ini, library.db, previews/, covers/).
# Set via env var for Docker; defaults to PROJECT_ROOT for standalone use.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 9024


@dataclasses.dataclass
class PreviewConfig:
    width: int = 480
    quality: int = 75


@dataclasses.dataclass
class ScannerConfig:
    reserved_names: tuple[str, ...] = (".yacreaderlibrary", "covers", "cover")
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")


@dataclasses.dataclass
class MetadataConfig:
    """Series lookup settings. The delay is applied after every enrichment attempt."""

    enabled: bool = True
    base_url: str = "https://api.jikan.moe/v4"
    delay_seconds: float = 1.0
    timeout: float = 5.0


@dataclasses.dataclass
class DevourerConfig:
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    previews: PreviewConfig = dataclasses.field(default_factory=PreviewConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    metadata: MetadataConfig = dataclasses.field(default_factory=MetadataConfig)
    data_dir: pathlib.Path = DATA_DIR

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def database_path(self) -> pathlib.Path:
        return self.data_dir / "library.db"

    @property
    def previews_dir(self) -> pathlib.Path:
        return self.data_dir / "previews"

    @property
    def covers_dir(self) -> pathlib.Path:
        return self.data_dir / "covers"


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> DevourerConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=9024),
    )

    previews = PreviewConfig(
        width=parser.getint("previews", "width", fallback=480),
        quality=parser.getint("previews", "quality", fallback=75),
    )
    if previews.width <= 0:
        raise ValueError(f"previews.width must be positive, got {previews.width}")

    scanner = ScannerConfig(
        reserved_names=_parse_list(
            parser.get(
                "scanner", "reserved_names", fallback=".yacreaderlibrary,covers,cover"
            )
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=".DS_Store,Thumbs.db,@eaDir",
            )
        ),
    )

    metadata = MetadataConfig(
        enabled=_parse_bool(parser.get("metadata", "enabled", fallback="true"), True),
        base_url=parser.get("metadata", "base_url", fallback="https://api.jikan.moe/v4"),
        delay_seconds=parser.getfloat("metadata", "delay_seconds", fallback=1.0),
        timeout=parser.getfloat("metadata", "timeout", fallback=5.0),
    )

    return DevourerConfig(
        server=server,
        previews=previews,
        scanner=scanner,
        metadata=metadata,
        data_dir=path.parent,
    )


def write_default_config(config_path: Optional[pathlib.Path] = None) -> pathlib.Path:
    """Write a config.ini with default settings and create the state folders."""
    path = config_path or DEFAULT_CONFIG_PATH
    defaults = DevourerConfig(data_dir=path.parent)

    parser = configparser.ConfigParser()
    parser["server"] = {
        "host": defaults.server.host,
        "port": str(defaults.server.port),
    }
    parser["previews"] = {
        "width": str(defaults.previews.width),
        "quality": str(defaults.previews.quality),
    }
    parser["scanner"] = {
        "reserved_names": ",".join(defaults.scanner.reserved_names),
        "ignore_patterns": ",".join(defaults.scanner.ignore_patterns),
    }
    parser["metadata"] = {
        "enabled": "true",
        "base_url": defaults.metadata.base_url,
        "delay_seconds": str(defaults.metadata.delay_seconds),
        "timeout": str(defaults.metadata.timeout),
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as handle:
        parser.write(handle)

    defaults.previews_dir.mkdir(parents=True, exist_ok=True)
    defaults.covers_dir.mkdir(parents=True, exist_ok=True)
    return path


_cached_config: Optional[DevourerConfig] = None


def get_config() -> DevourerConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config



def reset_config_cache() -> None:
    """Forget the cached config so the next get_config() rereads config.ini."""
    global _cached_config
    _cached_config = None
