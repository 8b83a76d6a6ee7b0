"""
FastAPI application for MarketSync.

Endpoints:
    GET  /state?room&key&vt       - 204 when nothing newer than vt, else the view
    PUT  /state?room&key          - merge a batch of operations
    GET  /export?room&key         - export document (404 if the room is empty)
    POST /import?room&key&overwrite - replace a room's state
    GET  /health                  - liveness

Error mapping:
    InvalidRequestError / InvalidBatchError / InvalidDocumentError -> 400
    ImportRejectedError -> 409
    StoreUnavailableError -> 503
    other MarketSyncError -> 500

Invariants:
    - A 4xx response means nothing was written
    - Business conflicts are reported inside a 200 response, never as errors
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import HttpSettings, ServerConfig
from ..errors import (
    ImportRejectedError,
    InvalidBatchError,
    InvalidDocumentError,
    InvalidRequestError,
    MarketSyncError,
)
from ..service import RoomService
from ..store import StoreUnavailableError, create_snapshot_store
from .models import ErrorResponse, HealthResponse, ImportResponse, SubmitRequest, SubmitResponse

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[MarketSyncError], int]] = [
    (InvalidRequestError, 400),
    (InvalidBatchError, 400),
    (InvalidDocumentError, 400),
    (ImportRejectedError, 409),
    (StoreUnavailableError, 503),
]


def status_for(error: MarketSyncError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def _error_response(status: int, message: str, code: str, details: dict[str, Any] | None = None):
    body = ErrorResponse(error=message, error_code=code, details=details or {})
    return JSONResponse(status_code=status, content=body.model_dump())


def get_service(request: Request) -> RoomService:
    return request.app.state.service


def create_app(
    service: RoomService | None = None,
    settings: HttpSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Room service to serve (built from environment config if None)
        settings: HTTP settings (loaded from environment if None)
    """
    settings = settings or HttpSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        room_service = service
        if room_service is None:
            config = ServerConfig.from_env()
            room_service = RoomService(create_snapshot_store(config.store), config=config)

        await room_service.start()
        app.state.service = room_service
        app.state.settings = settings

        yield

        await room_service.stop()

    app = FastAPI(
        title="MarketSync",
        description="Merge and conflict resolution for a shared, versioned economy.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "PUT", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketSyncError)
    async def handle_marketsync_error(request: Request, exc: MarketSyncError):
        status = status_for(exc)
        if status >= 500:
            logger.error(
                f"Request failed: {exc.message}",
                extra={"path": request.url.path, "error_code": exc.code},
            )
        return _error_response(status, exc.message, exc.code, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
        return _error_response(400, "Malformed request", "INVALID_REQUEST", {"errors": errors})

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="healthy", service="marketsync", version=__version__)

    @app.get("/state")
    async def get_state(
        request: Request,
        room: str | None = Query(None),
        key: str | None = Query(None),
        vt: int = Query(0, ge=0, description="Last vTick the client has seen"),
    ):
        """Current room view, or 204 if the client is up to date."""
        view = await get_service(request).read(room, key, client_version=vt)
        if view is None:
            return Response(status_code=204)
        return view.to_dict()

    @app.put("/state", response_model=SubmitResponse)
    async def put_state(
        request: Request,
        body: SubmitRequest,
        room: str | None = Query(None),
        key: str | None = Query(None),
    ):
        """Merge a batch of operations into the room."""
        result = await get_service(request).submit(room, key, body.operations)
        return result.to_dict()

    @app.get("/export")
    async def export_state(
        request: Request,
        room: str | None = Query(None),
        key: str | None = Query(None),
    ):
        document = await get_service(request).export(room, key)
        if document is None:
            return _error_response(404, f"No state for room {room!r}", "NOT_FOUND")
        return document

    @app.post("/import", response_model=ImportResponse)
    async def import_state(
        request: Request,
        room: str | None = Query(None),
        key: str | None = Query(None),
        overwrite: bool = Query(False),
    ):
        """Replace the room's state with an export document."""
        try:
            document = await request.json()
        except ValueError:
            raise InvalidDocumentError("Import body must be JSON")
        result = await get_service(request).import_state(room, key, document, overwrite=overwrite)
        return result.to_dict()

    return app
