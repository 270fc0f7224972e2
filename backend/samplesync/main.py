"""Sample Sync API - Main FastAPI Application."""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from samplesync.api.routes import health, sample_sync, samples, webhooks
from samplesync.core.config import settings
from samplesync.core.exceptions import SampleSyncException, sanitize_error


# Configure logging: JSON for production, text for local development
def _configure_logging() -> None:
    """Set up logging based on LOG_FORMAT env var.

    json: Structured JSON via python-json-logger.
    text: Human-readable format.
    """
    log_format = os.environ.get("LOG_FORMAT", settings.LOG_FORMAT).lower()
    log_level = os.environ.get("LOG_LEVEL", settings.LOG_LEVEL).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if log_format == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "samplesync-api"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> Any:
    """Application lifespan handler for startup and shutdown events."""
    from samplesync.integrations.sync_scheduler import get_sync_scheduler

    # Startup
    logger.info("Starting Sample Sync API...")
    settings.validate_startup()

    scheduler = get_sync_scheduler()
    if settings.SYNC_ENABLED:
        await scheduler.start()
    else:
        logger.warning("SYNC_ENABLED is false - sync queue will only run on demand")
    yield
    # Shutdown
    logger.info("Shutting down Sample Sync API...")
    await scheduler.stop()


app = FastAPI(
    title="Sample Sync API",
    description="Two-way sample synchronization between the web app and the LIMS",
    version="1.0.0",
    lifespan=lifespan,
)

CORS_ORIGINS = settings.cors_origins_list

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Sync routes first so /admin/samples/sync/* never reaches /admin/samples/{sample_id}
app.include_router(sample_sync.router, prefix="/api/v1")
app.include_router(samples.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.get("/health", tags=["system"])
async def root_health_check() -> dict[str, str]:
    """Root health check endpoint.

    Lightweight check that returns 200 if the process is running.
    For dependency-aware checks, use /api/v1/health.
    """
    return {"status": "healthy"}


@app.get("/", tags=["system"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "name": "Sample Sync API",
        "version": "1.0.0",
        "description": "Two-way LIMS sample synchronization",
    }


@app.exception_handler(SampleSyncException)
async def sample_sync_exception_handler(
    request: Request, exc: SampleSyncException
) -> JSONResponse:
    """Handle sample-sync exceptions.

    Validation, not-found and conflict messages are safe to return as is.
    Upstream and database failures are replaced by a generic message.

    Args:
        request: The incoming request.
        exc: The sample-sync exception.

    Returns:
        JSON error response with consistent format.
    """
    request_id = str(uuid.uuid4())
    logger.warning(
        "Sample sync exception occurred",
        extra={
            "code": exc.code,
            "status_code": exc.status_code,
            "request_id": request_id,
            "path": request.url.path,
        },
    )
    detail = exc.message if exc.status_code < 500 else sanitize_error(exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": detail,
            "code": exc.code,
            "request_id": request_id,
        },
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Strip non-serializable context from validation errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI request validation errors.

    Args:
        request: The incoming request.
        exc: The validation exception.

    Returns:
        JSON error response with validation details.
    """
    request_id = str(uuid.uuid4())
    logger.warning(
        "Request validation error",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "error_count": len(exc.errors()),
        },
    )
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Request validation error",
            "code": "REQUEST_VALIDATION_ERROR",
            "request_id": request_id,
            "errors": _jsonable_errors(exc),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions globally.

    Returns a JSON response with CORS headers so the browser doesn't
    mask the real error as a CORS failure.
    """
    request_id = str(uuid.uuid4())
    logger.exception(
        "Unhandled exception occurred",
        exc_info=exc,
        extra={
            "request_id": request_id,
            "path": request.url.path,
        },
    )

    origin = request.headers.get("origin", "")
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "An internal server error occurred",
            "code": "INTERNAL_ERROR",
            "request_id": request_id,
        },
    )
    if origin in CORS_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response
