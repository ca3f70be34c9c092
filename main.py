"""Devourer CLI entry point."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from sqlmodel import Session

from devourer.api import run_server
from devourer.config import DEFAULT_CONFIG_PATH, DevourerConfig, load_config, write_default_config
from devourer.database import (
    clear_stale_scan_lock,
    configure_database,
    get_engine,
    init_db,
    reset_database,
)
from devourer.errors import DevourerError
from devourer.logging_config import setup_logging
from devourer.migrations import get_status, run_migrations, stamp_if_needed
from devourer.repository import Repository
from devourer.scanner import ScanOrchestrator
from devourer.thumbnails import cleanup_orphaned_previews


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Devourer manga library CLI")
logger = logging.getLogger("devourer")

STARTUP_BANNER = r"""
     _
  __| | _____   _____  _   _ _ __ ___ _ __
 / _` |/ _ \ \ / / _ \| | | | '__/ _ \ '__|
| (_| |  __/\ V / (_) | |_| | | |  __/ |
 \__,_|\___| \_/ \___/ \__,_|_|  \___|_|
"""


def _ensure_config() -> DevourerConfig:
    try:
        config = load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: devourer init")
        raise typer.Exit(code=1)
    configure_database(config.database_path)
    return config


def _migrate_to_head() -> None:
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.ini"),
) -> None:
    """Create config.ini with default settings and an empty database."""
    config_path = DEFAULT_CONFIG_PATH
    if config_path.exists() and not force:
        typer.echo(f"[ERROR] {config_path} already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)
    write_default_config(config_path)
    configure_database(load_config(config_path).database_path)
    init_db()
    typer.echo(f"[OK] Config created at {config_path}")


@app.command("add-library")
def add_library(
    name: str = typer.Option(..., "--name", help="Library name"),
    path: Path = typer.Option(..., "--path", help="Path to your manga folder"),
) -> None:
    """Register a library root."""
    _ensure_config()
    init_db()
    try:
        with Session(get_engine()) as session:
            repo = Repository(session)
            library = repo.create_library(name, path.expanduser())
            repo.commit()
            typer.echo(f"[OK] Library {library.id}: {library.name} ({library.path})")
    except DevourerError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)


@app.command()
def libraries() -> None:
    """List registered libraries."""
    _ensure_config()
    init_db()
    with Session(get_engine()) as session:
        rows = Repository(session).list_libraries()
        if not rows:
            typer.echo("No libraries registered. Run: devourer add-library --name NAME --path PATH")
            return
        for library in rows:
            typer.echo(f"  [{library.id}] {library.name}  {library.path}")


@app.command()
def scan(
    library: int = typer.Option(..., "--library", help="Library id to scan"),
) -> None:
    """Scan one library and wait for the report."""
    setup_logging()

    config = _ensure_config()
    init_db()

    orchestrator = ScanOrchestrator(config)
    try:
        stats = orchestrator.request_scan(library).result()
    except DevourerError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)
    finally:
        orchestrator.shutdown(wait=True)

    typer.echo(
        "✓ Scan completed: "
        f"{stats['series_added']} series added, "
        f"{stats['issues_added']} issues added, "
        f"{stats['existing']} existing, "
        f"{stats['failed']} failed, "
        f"{stats['skipped']} skipped."
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
) -> None:
    """Start the delivery API."""
    setup_logging()

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _ensure_config()
    init_db()
    _migrate_to_head()
    # This process owns scanning from here on; a busy flag now is a leftover
    clear_stale_scan_lock()

    try:
        run_server(config, host=host, port=port)
    except KeyboardInterrupt:
        pass


@app.command()
def cleanup() -> None:
    """Remove orphaned previews and covers."""
    config = _ensure_config()
    init_db()
    deleted = cleanup_orphaned_previews(config)
    typer.echo(f"[INFO] Removed {deleted} orphaned previews and covers")


@app.command()
def stats() -> None:
    """Show library statistics."""
    config = _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        repo = Repository(session)
        library_count, series_count, issue_count = repo.count_rows()
        read_count = repo.count_read_issues()

    previews = len(list(config.previews_dir.glob("*_preview.jpg"))) if config.previews_dir.exists() else 0
    percent = (read_count / issue_count * 100) if issue_count else 0

    typer.echo("Library Statistics:")
    typer.echo(f"  Libraries: {library_count}")
    typer.echo(f"  Series: {series_count}")
    typer.echo(f"  Issues: {issue_count}")
    typer.echo(f"  Read: {read_count} / {issue_count} ({percent:.0f}%)")
    typer.echo(f"  Previews generated: {previews}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()
    init_db()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind: current {current}, head {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    _migrate_to_head()


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Delete the database, previews and covers."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database, previews and covers. Use --confirm.")
        raise typer.Exit(code=1)

    config = _ensure_config()

    reset_database()
    for folder in (config.previews_dir, config.covers_dir):
        if folder.exists():
            for file_path in folder.glob("*.jpg"):
                file_path.unlink()

    typer.echo("[INFO] Database, previews and covers reset. Libraries must be re-added.")


if __name__ == "__main__":
    app()
