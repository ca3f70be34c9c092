"""FastAPI delivery server for Devourer.

Exposes:
- GET/POST /libraries, GET /library/{id}, POST /library/{id}/scan, GET /scan-status
- GET/DELETE /series/{id}, GET /series/{id}/files, GET /series/{id}/manga-data,
  GET /series/{id}/cover, POST /series/{id}/mark-as-read
- GET/DELETE /file/{id}, GET /file/{id}/preview, POST /file/{id}/page/{page},
  POST /file/{id}/mark-as-read
- GET /get-file?seriesId=&fileId=   (streamed, zip-normalized when needed)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel
from sqlmodel import Session
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware

from .config import DevourerConfig, get_config
from .database import configure_database, get_engine, init_db
from .errors import DevourerError, InvalidInputError, NotFoundError
from .logging_config import get_logger
from .metadata import parse_manga_data
from .models import Issue, Series
from .repository import Repository
from .scanner import ScanOrchestrator
from .streaming import open_issue_delivery
from .utils import cover_path, delete_previews, preview_path, remove_from_disk

logger = get_logger(__name__)


class LibraryCreate(BaseModel):
    name: str
    path: str


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first client that connects, with its full URL."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            logging.getLogger("devourer.request").info(
                'client_connected="%s" ip="%s" url="%s %s"'
                % (client_name, client_ip, request.method, str(request.url))
            )
            request.app.state.logged_first_request = True
        return await call_next(request)


def _get_lan_ip() -> Optional[str]:
    """Return this machine's LAN IP (for the public URL when binding to 0.0.0.0)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    config = get_config()
    configure_database(config.database_path)
    init_db()
    app.state.orchestrator = ScanOrchestrator(config)

    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        logger.info("Started server process [" + str(os.getpid()) + "]")
        public_url = getattr(app.state, "public_url", None)
        if public_url:
            logger.info("Devourer API available at: " + public_url)

    asyncio.create_task(_print_startup_messages())
    try:
        yield
    finally:
        logger.info("Waiting for running scans to finish...")
        await asyncio.to_thread(app.state.orchestrator.shutdown, True)


app = FastAPI(title="Devourer", lifespan=_lifespan)
app.add_middleware(RequestLoggingMiddleware)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": False, "error": message})


@app.exception_handler(DevourerError)
async def devourer_error_handler(request: Request, exc: DevourerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"✗ {request.method} {request.url.path} - {exc.message}")
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "path", "query"))
    message = first.get("msg", "Invalid request.")
    return _error_response(400, f"{location}: {message}" if location else message)


@app.get("/favicon.ico", include_in_schema=False)
def favicon() -> Response:
    return Response(status_code=204)


def _orchestrator(request: Request) -> ScanOrchestrator:
    return request.app.state.orchestrator


def _config() -> DevourerConfig:
    try:
        return get_config()
    except FileNotFoundError as exc:
        logger.error("config.ini not found while serving a request")
        raise DevourerError("Server not configured") from exc


def _series_payload(series: Series) -> dict:
    payload = series.model_dump(exclude={"manga_data"})
    payload["has_manga_data"] = bool(series.manga_data)
    return payload


def _require_series(repo: Repository, series_id: int) -> Series:
    series = repo.get_series(series_id)
    if series is None:
        raise NotFoundError("Series not found.")
    return series


def _require_issue(repo: Repository, issue_id: int) -> Issue:
    issue = repo.get_issue(issue_id)
    if issue is None:
        raise NotFoundError("File not found.")
    return issue


# --- Libraries ---


@app.get("/libraries")
def list_libraries():
    with Session(get_engine()) as session:
        return [library.model_dump() for library in Repository(session).list_libraries()]


@app.post("/libraries", status_code=201)
def create_library(body: LibraryCreate, request: Request):
    """Create a library and kick off its first scan."""
    with Session(get_engine()) as session:
        repo = Repository(session)
        library = repo.create_library(body.name, Path(body.path))
        library_id = library.id
        payload = library.model_dump()
        repo.commit()
    logger.info(f"[+] New library: {body.name} ({payload['path']})")

    try:
        _orchestrator(request).request_scan(library_id)
        scan = "started"
    except DevourerError as exc:
        logger.warning(f"Library {library_id} created but not scanned: {exc.message}")
        scan = "busy"

    return {"status": True, "message": "Library created.", "library": payload, "scan": scan}


@app.get("/library/{library_id}")
def get_library(library_id: int):
    """Library with its series ordered by title, each with an issue count."""
    with Session(get_engine()) as session:
        repo = Repository(session)
        library = repo.get_library(library_id)
        if library is None:
            raise NotFoundError("Library not found.")
        series = []
        for item, file_count in repo.list_series_with_counts(library_id):
            payload = _series_payload(item)
            payload["file_count"] = file_count
            series.append(payload)
        return {"status": True, "library": library.model_dump(), "series": series}


@app.post("/library/{library_id}/scan", status_code=202)
def scan_library(library_id: int, request: Request):
    _orchestrator(request).request_scan(library_id)
    return {"status": True, "message": "Library scan initiated."}


@app.get("/scan-status")
def scan_status(request: Request):
    return {"key": "scan_lock", "value": _orchestrator(request).status()}


# --- Series ---


@app.get("/series/{series_id}")
def get_series(series_id: int):
    with Session(get_engine()) as session:
        repo = Repository(session)
        series = _require_series(repo, series_id)
        payload = _series_payload(series)
        payload["files"] = [issue.model_dump() for issue in repo.list_issues(series_id)]
        return payload


@app.get("/series/{series_id}/files")
def get_series_files(series_id: int):
    with Session(get_engine()) as session:
        repo = Repository(session)
        _require_series(repo, series_id)
        return [issue.model_dump() for issue in repo.list_issues(series_id)]


@app.get("/series/{series_id}/manga-data")
def get_series_manga_data(series_id: int):
    """Series plus its stored lookup result, decoded."""
    with Session(get_engine()) as session:
        repo = Repository(session)
        series = _require_series(repo, series_id)
        payload = series.model_dump(exclude={"manga_data"})
        manga = parse_manga_data(series.manga_data)
        payload["manga_data"] = json.loads(series.manga_data) if manga is not None else None
        payload["manga_title"] = manga.primary_title if manga is not None else None
        files = [issue.model_dump() for issue in repo.list_issues(series_id)]
        return {"series": payload, "files": files}


@app.get("/series/{series_id}/cover")
def get_series_cover(series_id: int):
    with Session(get_engine()) as session:
        series = _require_series(Repository(session), series_id)
        cover = Path(series.cover) if series.cover else None
    if cover is None or not cover.exists():
        raise NotFoundError("Cover not found.")
    return FileResponse(cover, media_type="image/jpeg")


@app.post("/series/{series_id}/mark-as-read")
def mark_series_read(series_id: int):
    with Session(get_engine()) as session:
        repo = Repository(session)
        _require_series(repo, series_id)
        repo.mark_series_read(series_id)
        repo.commit()
    return {"status": True, "message": "Series marked as read."}


@app.delete("/series/{series_id}")
def delete_series(series_id: int, fileDelete: bool = False):
    """Delete a series and its issues; with fileDelete the backing files go too."""
    config = _config()
    with Session(get_engine()) as session:
        repo = Repository(session)
        series = _require_series(repo, series_id)
        title = series.title
        issues = [(issue.id, Path(issue.path)) for issue in repo.delete_series(series)]
        repo.commit()

    delete_previews([issue_id for issue_id, _ in issues], config.previews_dir)
    cover = cover_path(config.covers_dir, series_id)
    if cover.exists():
        remove_from_disk(cover)
    if fileDelete:
        for _, path in issues:
            remove_from_disk(path)

    logger.info(f"[-] Deleted series: {title} ({len(issues)} issues)")
    return {"status": True, "message": "Series deleted."}


# --- Files (issues) ---


@app.get("/file/{issue_id}")
def get_file(issue_id: int):
    with Session(get_engine()) as session:
        return _require_issue(Repository(session), issue_id).model_dump()


@app.get("/file/{issue_id}/preview")
def get_file_preview(issue_id: int):
    path = preview_path(_config().previews_dir, issue_id)
    if not path.exists():
        raise NotFoundError("Preview not found.")
    return FileResponse(path, media_type="image/jpeg")


@app.post("/file/{issue_id}/page/{page}")
def set_current_page(issue_id: int, page: int):
    with Session(get_engine()) as session:
        repo = Repository(session)
        issue = repo.set_current_page(_require_issue(repo, issue_id), page)
        payload = issue.model_dump()
        repo.commit()
    return payload


@app.post("/file/{issue_id}/mark-as-read")
def mark_file_read(issue_id: int):
    with Session(get_engine()) as session:
        repo = Repository(session)
        repo.mark_issue_read(_require_issue(repo, issue_id))
        repo.commit()
    return {"status": True, "message": "File marked as read."}


@app.delete("/file/{issue_id}")
def delete_file(issue_id: int, fileDelete: bool = False):
    config = _config()
    with Session(get_engine()) as session:
        repo = Repository(session)
        issue = _require_issue(repo, issue_id)
        path = Path(issue.path)
        repo.delete_issue(issue)
        repo.commit()

    delete_previews([issue_id], config.previews_dir)
    if fileDelete:
        remove_from_disk(path)
    return {"status": True, "message": "File deleted."}


# --- Streaming ---


def _parse_id(value: Optional[str], label: str) -> int:
    if value is None or value == "":
        raise InvalidInputError(f"{label} id is required")
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidInputError(f"{label} id must be an integer") from exc


@app.get("/get-file")
def get_file_stream(seriesId: Optional[str] = None, fileId: Optional[str] = None):
    """Stream an issue: original bytes, or a zip for folders, RAR and 7-zip."""
    series_id = _parse_id(seriesId, "series")
    issue_id = _parse_id(fileId, "file")

    delivery = open_issue_delivery(series_id, issue_id)
    try:
        headers = delivery.headers
    except OSError:
        delivery.close()
        raise
    return StreamingResponse(
        delivery.iter_bytes(),
        media_type=delivery.media_type,
        headers=headers,
        background=BackgroundTask(delivery.close),
    )


class _AccessFilter(logging.Filter):
    """Hide access log lines for successful requests; keep 4xx/5xx visible."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        return not any(
            pattern in msg
            for pattern in ('" 200', '" 201', '" 202', '" 204', '" 304')
        )


class _UvicornStartupFilter(logging.Filter):
    """Suppress uvicorn startup messages; we print our own in lifespan."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        return not any(
            marker in msg
            for marker in (
                "Started server process",
                "Waiting for application startup",
                "Application startup complete",
                "running on",
            )
        )


def run_server(config: DevourerConfig, host: Optional[str], port: Optional[int]) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    if effective_host == "0.0.0.0":
        public_host = _get_lan_ip() or "0.0.0.0"
    else:
        public_host = effective_host
    app.state.public_url = f"http://{public_host}:{effective_port}/"

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.lifespan"):
        logging.getLogger(name).addFilter(startup_filter)
    logging.getLogger("uvicorn.access").addFilter(_AccessFilter())

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
