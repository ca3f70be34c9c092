"""Database connection and session management using SQLModel."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import event
from sqlmodel import SQLModel, create_engine, Session, select

from .config import DATA_DIR
from .logging_config import get_logger

logger = get_logger(__name__)

DB_PATH = DATA_DIR / "library.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"


def make_engine(url: str):
    """Create a SQLite engine usable from the API threads and the scan worker."""
    new_engine = create_engine(url, connect_args={"check_same_thread": False})

    @event.listens_for(new_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return new_engine


engine = make_engine(SQLITE_URL)


def get_engine():
    """Return the global engine instance."""
    return engine


def configure_database(db_path: Path) -> None:
    """Point the global engine at db_path, normally `config.database_path`.

    No-op when the engine already targets that file.
    """
    global engine, DB_PATH
    db_path = Path(db_path)
    if db_path == DB_PATH:
        return
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine.dispose()
    DB_PATH = db_path
    engine = make_engine(f"sqlite:///{db_path}")
    logger.debug(f"Database: {db_path}")


def init_db() -> None:
    """Create database tables and the scan-state row."""
    from . import models  # noqa: F401

    with get_engine().connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(get_engine())
    ensure_scan_state()


def ensure_scan_state() -> None:
    """Create the scan_lock row if missing. An existing value is left alone."""
    from .models import SCAN_IDLE, SCAN_LOCK_KEY, ScanState

    with Session(get_engine()) as session:
        state = session.exec(select(ScanState).where(ScanState.key == SCAN_LOCK_KEY)).first()
        if state is None:
            session.add(ScanState(key=SCAN_LOCK_KEY, value=SCAN_IDLE))
            session.commit()


def clear_stale_scan_lock() -> bool:
    """Reset a busy scan_lock left by a server that died mid-scan.

    Only the serving process calls this, once, before it accepts requests.
    Returns True when a stale value was cleared.
    """
    from .models import SCAN_IDLE, SCAN_LOCK_KEY, ScanState

    with Session(get_engine()) as session:
        state = session.exec(select(ScanState).where(ScanState.key == SCAN_LOCK_KEY)).first()
        if state is None or not state.busy:
            return False
        logger.warning("Clearing stale scan lock left by a previous run")
        state.value = SCAN_IDLE
        session.add(state)
        session.commit()
        return True


def reset_database() -> None:
    """Delete the database file and recreate it."""
    get_engine().dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()
    init_db()
