"""Logging configuration for Devourer.

One call to `setup_logging()` at process start wires:
- devourer.log in the data directory (rotating, 10MB x 5, always DEBUG)
- a Rich console handler at the requested level

Library modules only ever call `get_logger(__name__)`.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

LOG_FILENAME = "devourer.log"
LOG_FORMAT = "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Chatty dependencies: per-request and per-decode lines stay out of the console
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "PIL", "py7zr")

_logging_initialized = False


def _default_log_dir() -> Path:
    # Mirrors config.DATA_DIR; importing config here would be circular
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    return Path(__file__).resolve().parents[1]


def _file_handler(log_dir: Path) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / LOG_FILENAME,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    return handler


def _console_handler(level: int) -> RichHandler:
    console = Console(theme=Theme({"logging.level.info": "bold cyan"}))
    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    handler.setLevel(level)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Initialize logging once per process.

    Args:
        log_level: Console level (DEBUG, INFO, WARNING, ERROR). The file gets everything.
        log_dir: Where devourer.log goes; defaults to the data directory.
    """
    global _logging_initialized
    if _logging_initialized:
        return

    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(_file_handler(log_dir or _default_log_dir()))
    root_logger.addHandler(_console_handler(level))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Alembic installs its own handlers from an ini; route it through ours instead
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
