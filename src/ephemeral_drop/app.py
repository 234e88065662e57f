"""FastAPI application for ephemeral-drop.

The server only ever handles ciphertext. Keys travel in the share-link
fragment and never reach these routes.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ephemeral_drop import __version__
from ephemeral_drop.admission import AdmissionController, parse_flag
from ephemeral_drop.config import Settings, settings
from ephemeral_drop.db import create_engine, create_session_factory, init_db
from ephemeral_drop.errors import (
    AuthorizationError,
    DropError,
    MissingToken,
    NotFound,
    StorageFault,
    ValidationError,
)
from ephemeral_drop.models import Record
from ephemeral_drop.ratelimit import SlidingWindowLimiter, client_identity
from ephemeral_drop.schemas import DeleteResponse, FileInfo, HealthResponse, UploadResponse
from ephemeral_drop.storage import BlobStore, ObjectStore, iter_file
from ephemeral_drop.tasks import RateLimitCompactor, Reaper

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies ─────────────────────────────────────────────────────────────


def get_store(request: Request) -> ObjectStore:
    store = request.app.state.store
    if store is None:
        raise StorageFault("Store not initialized")
    return store


def get_admission(request: Request) -> AdmissionController:
    return request.app.state.admission


def enforce_rate_limit(request: Request) -> None:
    limiter: SlidingWindowLimiter = request.app.state.limiter
    limiter.hit(client_identity(request.headers))


StoreDep = Annotated[ObjectStore, Depends(get_store)]


def blob_headers(record: Record, size: int) -> dict[str, str]:
    return {
        "Content-Length": str(size),
        "X-Expires-At": str(record.expires_at),
        "X-Burn-After-Read": "1" if record.burn_after_read else "0",
    }


# ── Routes ───────────────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=__version__)


@router.post(
    "/api/file",
    response_model=UploadResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def upload_file(
    store: StoreDep,
    admission: Annotated[AdmissionController, Depends(get_admission)],
    file: Annotated[UploadFile | None, File()] = None,
    expires_in: Annotated[str | None, Form(alias="expiresIn")] = None,
    burn_after_read: Annotated[str | None, Form(alias="burnAfterRead")] = None,
) -> UploadResponse:
    """Store an already-encrypted blob under a TTL."""
    if file is None:
        raise ValidationError("file field is required")
    if file.size is not None:
        admission.check_size(file.size)

    data = await file.read()
    ticket = admission.admit(
        size=len(data),
        expires_in=expires_in,
        burn_after_read=parse_flag(burn_after_read),
        now=store.now(),
    )
    await store.put(
        ticket.id,
        data,
        expires_at=ticket.expires_at,
        burn_after_read=ticket.burn_after_read,
        delete_token=ticket.delete_token,
    )
    return UploadResponse(id=ticket.id, delete_token=ticket.delete_token)


@router.head("/api/file/{object_id}")
async def probe_file(object_id: str, store: StoreDep) -> Response:
    """Metadata headers only; never consumes a burn-after-read object."""
    record = await store.peek(object_id)
    size = await store.blob_size(object_id) if record is not None else None
    if record is None or size is None:
        raise NotFound()
    return Response(
        status_code=200,
        media_type="application/octet-stream",
        headers=blob_headers(record, size),
    )


@router.get("/api/file/{object_id}")
async def download_file(object_id: str, store: StoreDep) -> StreamingResponse:
    """Stream the ciphertext. Burn-after-read objects are consumed here."""
    opened = await store.open_for_read(object_id)
    if opened is None:
        raise NotFound()

    # A burn blob is already unlinked here; the open handle still streams it
    record, fh = opened
    return StreamingResponse(
        iter_file(fh),
        media_type="application/octet-stream",
        headers=blob_headers(record, os.fstat(fh.fileno()).st_size),
    )


@router.get("/api/file/{object_id}/info", response_model=FileInfo)
async def file_info(object_id: str, store: StoreDep) -> FileInfo:
    record = await store.peek(object_id)
    size = await store.blob_size(object_id) if record is not None else None
    if record is None or size is None:
        raise NotFound()
    return FileInfo(size=size, expires_at=record.expires_at, burn_after_read=record.burn_after_read)


@router.get("/delete/{object_id}", response_model=DeleteResponse)
async def delete_file(
    object_id: str,
    store: StoreDep,
    token: Annotated[str | None, Query()] = None,
) -> DeleteResponse:
    """Owner delete. Unknown ids and wrong tokens are indistinguishable."""
    if not token:
        raise MissingToken()
    if not await store.delete_with_token(object_id, token):
        raise AuthorizationError()
    return DeleteResponse(ok=True)


# ── Error handling ───────────────────────────────────────────────────────────


async def handle_drop_error(request: Request, exc: DropError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(ValidationError().to_dict(), status_code=ValidationError.status_code)


# ── Application factory ──────────────────────────────────────────────────────


def create_app(
    config: Settings | None = None,
    *,
    store: ObjectStore | None = None,
    limiter: SlidingWindowLimiter | None = None,
    run_background_tasks: bool = True,
) -> FastAPI:
    """Build the application.

    When ``store`` is omitted, the lifespan handler opens the database and
    blob directory from ``config``. An invalid ``max_ttl`` fails here, at
    startup, rather than on the first upload.
    """
    config = config or settings
    admission = AdmissionController(config.max_file_size, config.max_ttl_seconds)
    limiter = limiter or SlidingWindowLimiter(config.rate_limit_window_s, config.rate_limit_max)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Open storage and run the periodic sweeps for the app's lifetime."""
        engine = None
        if app.state.store is None:
            blobs = BlobStore(config.files_dir)
            blobs.ensure_root()
            engine = create_engine(config.resolved_database_url, echo=config.database_echo)
            await init_db(engine)
            app.state.store = ObjectStore(create_session_factory(engine), blobs)
            logger.info("Storage ready at %s", config.data_dir)

        periodic = []
        if run_background_tasks:
            periodic = [
                Reaper(app.state.store, interval=config.reaper_interval_s),
                RateLimitCompactor(app.state.limiter),
            ]
            for task in periodic:
                task.start()
        try:
            yield
        finally:
            for task in periodic:
                await task.stop()
            if engine is not None:
                await engine.dispose()

    app = FastAPI(
        title="ephemeral-drop",
        description="End-to-end encrypted, expiring file drop",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.admission = admission
    app.state.limiter = limiter
    app.include_router(router)
    app.add_exception_handler(DropError, handle_drop_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    return app
