"""Library scanning for Devourer.

Responsible for syncing a library directory tree into the catalog.

Implements:
- the walk → classify → catalog pipeline for one library
- the scan orchestrator: a persisted busy flag plus a single worker thread
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as futures_wait
from pathlib import Path
from typing import Callable, Optional

from sqlmodel import Session

from .catalog import CatalogSynchronizer, SyncOutcome
from .classifier import PathClassifier
from .config import DevourerConfig
from .database import get_engine
from .errors import ConflictError, NotFoundError
from .logging_config import get_logger
from .metadata import MetadataClient
from .repository import Repository
from .walker import walk_files

logger = get_logger(__name__)


def _empty_stats() -> dict:
    return {
        "series_added": 0,
        "issues_added": 0,
        "existing": 0,
        "failed": 0,
        "skipped": 0,
    }


def release_scan_lock() -> None:
    with Session(get_engine()) as session:
        repo = Repository(session)
        repo.release_scan_lock()
        repo.commit()


def scan_library(
    library_id: int,
    config: DevourerConfig,
    metadata_client: Optional[MetadataClient] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Scan one library and sync it to the catalog.

    The caller must hold the scan lock; it is released here no matter how the
    scan ends. Entries are processed strictly in walk order, and a failure on
    one entry is logged and counted without stopping the scan.

    :return: Dictionary with scan statistics.
    """
    stats = _empty_stats()
    try:
        with Session(get_engine()) as session:
            repo = Repository(session)
            library = repo.get_library(library_id)
            if library is None:
                raise NotFoundError(f"Library {library_id} not found.")

            root = Path(library.path)
            if not root.is_dir():
                logger.error(f"✗ Library path does not exist: {root}")
                return stats

            logger.info(f"[SCAN] {library.name} ({root})")

            classifier = PathClassifier(
                root,
                config.scanner.reserved_names,
                config.scanner.ignore_patterns,
            )
            synchronizer = CatalogSynchronizer(
                repo, config, library, metadata_client=metadata_client, sleep=sleep
            )

            for entry in walk_files(root):
                item = classifier.classify(entry)
                if item is None:
                    stats["skipped"] += 1
                    continue

                try:
                    outcome = synchronizer.sync(item)
                except Exception as exc:
                    session.rollback()
                    logger.error(f"✗ {entry.path.name} - {exc}")
                    stats["failed"] += 1
                    continue

                if outcome is SyncOutcome.ADDED:
                    stats["issues_added"] += 1
                elif outcome is SyncOutcome.EXISTING:
                    stats["existing"] += 1
                else:
                    stats["failed"] += 1

            stats["series_added"] = synchronizer.series_added
    finally:
        release_scan_lock()

    logger.info(
        f"Scan complete for library {library_id}: "
        f"{stats['series_added']} series added, {stats['issues_added']} issues added, "
        f"{stats['existing']} existing, {stats['failed']} failed, {stats['skipped']} skipped."
    )
    return stats


class ScanOrchestrator:
    """Accepts scan requests and runs them on a single background worker.

    The persisted scan_lock row decides whether a request is accepted; the
    worker pool gives callers a Future to await and a drain point on shutdown.
    """

    def __init__(
        self,
        config: DevourerConfig,
        metadata_client: Optional[MetadataClient] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        if metadata_client is None and config.metadata.enabled:
            metadata_client = MetadataClient(config.metadata.base_url, config.metadata.timeout)
        self.metadata_client = metadata_client
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="DevourerScan"
        )
        self._sleep = sleep
        self._pending: set[Future] = set()

    def request_scan(self, library_id: int) -> Future:
        """Start a background scan of a library.

        Raises:
            NotFoundError: unknown library.
            ConflictError: a scan is already running; nothing is changed.
        """
        with Session(get_engine()) as session:
            repo = Repository(session)
            if repo.get_library(library_id) is None:
                raise NotFoundError("Library not found.")
            if not repo.try_acquire_scan_lock():
                session.rollback()
                raise ConflictError("Scan already in progress.")
            repo.commit()

        try:
            future = self._executor.submit(
                scan_library, library_id, self.config, self.metadata_client, self._sleep
            )
        except RuntimeError as exc:
            release_scan_lock()
            raise ConflictError("Scanner is shutting down.") from exc

        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        future.add_done_callback(_log_scan_failure)
        logger.info(f"Library scan initiated for library {library_id}")
        return future

    def status(self) -> str:
        """Current persisted scan flag: "1" busy, "0" idle."""
        with Session(get_engine()) as session:
            return Repository(session).get_scan_state().value

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until every accepted scan has finished."""
        futures_wait(list(self._pending), timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_scan_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(f"✗ Library scan failed: {exc}")
