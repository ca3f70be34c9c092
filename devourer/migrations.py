"""Alembic migration helpers for Devourer.

The only module that imports alembic directly; the CLI goes through the
functions below.
"""

from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path
from typing import Optional

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from .config import PROJECT_ROOT
from . import database

MIGRATIONS_DIR = PROJECT_ROOT / "migrations"


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig without an ini file, pointing at migrations/."""
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    return cfg


def _backup_db(db_path: Optional[Path] = None) -> Optional[Path]:
    """Copy library.db → library.db.bak (overwrite previous backup)."""
    db_path = db_path or database.DB_PATH
    if not db_path.exists():
        return None
    backup = db_path.with_suffix(".db.bak")
    shutil.copy2(db_path, backup)
    return backup


def _read_version(db_path: Optional[Path] = None) -> Optional[str]:
    """Return the stamped revision, or None when the DB is unmanaged or missing."""
    db_path = db_path or database.DB_PATH
    if not db_path.exists():
        return None
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        if cur.fetchone() is None:
            return None
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``, backing up an existing library.db first."""
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (create_all) to head.

    No-op when the DB does not exist yet or is already managed.
    """
    if not database.DB_PATH.exists() or _read_version() is not None:
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[str | None, str]:
    """Return (current_revision, head_revision)."""
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"
    return _read_version(), head_rev
