"""
GroupUp Backend - FastAPI Application Factory
=============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan owns the two long-lived resources (database engine and
       spatial store).
Who:   uvicorn groupup.main:app

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                         FastAPI App                          │
    │                                                              │
    │  Middleware:  Rate Limit (writes) → Request ID → Logging     │
    │                                                              │
    │  Routes:      /api/groups/*   /api/groups/{id}/files         │
    │               /api/buildings/*   /uploads/*   /health        │
    │                                                              │
    │  State:       app.state.spatial_store  (DuckDB, one per app) │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Create the storage root
    3. Create and open the spatial store; a failure is logged and the app
       starts anyway (building lookups answer null until a reset succeeds)

    Shutdown:
    1. Close the spatial store
    2. Dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from groupup import __version__
from groupup.config import settings
from groupup.database import dispose_engine
from groupup.exceptions import (
    AuthenticationError,
    DatabaseError,
    FileStorageError,
    GroupUpError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitExceededError,
    SpatialStoreError,
    SpatialStoreUnavailableError,
    ValidationError,
)
from groupup.middleware.logging import RequestLoggingMiddleware
from groupup.middleware.rate_limit import RateLimitMiddleware
from groupup.middleware.request_id import RequestIDMiddleware, request_id_var
from groupup.routes import buildings, files, groups, health
from groupup.services.spatial_store import SpatialStore

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Root logger to stdout (Docker captures it), level from LOG_LEVEL.

    Format: 2024-06-10T12:00:00 [INFO] groupup.services.group_service: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)


def build_spatial_store() -> SpatialStore:
    return SpatialStore(
        db_path=settings.spatial_db_path,
        geojson_path=settings.buildings_geojson_path,
        startup_limit=settings.buildings_startup_limit,
        batch_size=settings.buildings_batch_size,
    )


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("GroupUp Backend %s starting up...", __version__)

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    store = build_spatial_store()
    app.state.spatial_store = store
    try:
        await store.initialize()
        bounds = await store.bounds()
        logger.info("Spatial store ready: %d buildings", bounds.total)
    except SpatialStoreError as e:
        logger.error(
            "Spatial store failed to start (%s); building lookups are disabled "
            "until POST /api/buildings/reset succeeds",
            e.context.get("error", e.message),
        )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("GroupUp Backend shutting down...")
    await store.close()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[Dict[str, Any]] = None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def _location_missing(errors) -> bool:
    for err in errors:
        loc = err.get("loc", ())
        if err.get("type") == "missing" and loc and loc[-1] in ("latitude", "longitude"):
            return True
    return False


def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps exception types to status codes and the shared error body.

    Handler hierarchy:
        RequestValidationError  → 400 (malformed JSON / missing fields)
        ValidationError         → 400
        AuthenticationError     → 401
        PermissionDeniedError   → 403 (incl. GroupExpiredError, OutOfRangeError)
        NotFoundError           → 404
        RateLimitExceededError  → 429
        SpatialStoreError       → 500
        DatabaseError           → 500
        FileStorageError        → 500
        GroupUpError (base)     → 500
        Exception (fallback)    → 500

    The 500 handlers log the full context server-side and return only the
    underlying error text as details.error.
    """

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "Location required" if _location_missing(errors) else "Invalid request"
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), message)
        return JSONResponse(
            status_code=400,
            content=_error_body(
                "validation_error", message, {"errors": jsonable_encoder(errors)}
            ),
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content=_error_body("unauthorized", exc.message, exc.context),
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        logger.info("[%s] Permission denied: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=403,
            content=_error_body("permission_denied", exc.message, exc.context),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content=_error_body("not_found", exc.message),
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=_error_body("rate_limit_exceeded", exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    async def _server_error(kind: str, exc: GroupUpError) -> JSONResponse:
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, kind, exc.message, exc.context)
        details = {"error": exc.context["error"]} if "error" in exc.context else None
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", exc.message, details),
        )

    @app.exception_handler(SpatialStoreError)
    async def handle_spatial_error(request: Request, exc: SpatialStoreError):
        kind = (
            "Spatial store unavailable"
            if isinstance(exc, SpatialStoreUnavailableError)
            else "Spatial store error"
        )
        return await _server_error(kind, exc)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        return await _server_error("Database error", exc)

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        return await _server_error("File storage error", exc)

    @app.exception_handler(GroupUpError)
    async def handle_app_error(request: Request, exc: GroupUpError):
        return await _server_error("Application error", exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again later.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="GroupUp API",
        description=(
            "Ephemeral, location-anchored groups: create a group where you stand, "
            "discover and join groups around you, and share files inside them."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Added innermost first; execution order is the reverse:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(groups.router)
    app.include_router(files.router)
    app.include_router(buildings.router)
    app.include_router(health.router)

    return app


app = create_app()
