from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
import logging
import uuid

from .config import settings
from .database import create_tables
from .services.manual_edits import (
    BlockOverlapError,
    BookingNotFoundError,
    ManualEditConflictError,
    ManualEditValidationError,
)
from .services.reconciliation import SyncError
from .services.sync_scheduler import start_sync_scheduler, stop_sync_scheduler
from .utils.logging_config import setup_logging, set_request_context, clear_request_context

from .routers import ical, manual, summary, export, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json)

    logger.info("Starting rental calendar sync...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS Origins: {settings.cors_origins}")

    create_tables()

    if settings.sync_enabled:
        start_sync_scheduler()
    else:
        logger.warning("Feed sync disabled, scheduler not started")

    yield

    logger.info("Shutting down rental calendar sync...")
    if settings.sync_enabled:
        stop_sync_scheduler()


app = FastAPI(
    title="Rental Calendar Sync API",
    description="Short-term rental booking calendar aggregation and reconciliation",
    version="1.0.0",
    lifespan=lifespan
)


# ================================
# CORS MIDDLEWARE - MUST BE FIRST!
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response


app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# ================================
# ERROR MAPPING
# ================================

def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error(status.HTTP_400_BAD_REQUEST, message)


@app.exception_handler(ManualEditValidationError)
async def manual_validation_handler(request: Request, exc: ManualEditValidationError):
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(BookingNotFoundError)
async def not_found_handler(request: Request, exc: BookingNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(BlockOverlapError)
async def block_overlap_handler(request: Request, exc: BlockOverlapError):
    return _error(
        status.HTTP_409_CONFLICT,
        str(exc),
        conflict_type=exc.conflict_type,
        conflicts=exc.conflicts
    )


@app.exception_handler(ManualEditConflictError)
async def edit_conflict_handler(request: Request, exc: ManualEditConflictError):
    return _error(status.HTTP_409_CONFLICT, str(exc))


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    logger.error(f"Sync failed: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


# Include routers
app.include_router(health.router)
app.include_router(ical.router)
app.include_router(manual.router)
app.include_router(summary.router)
app.include_router(export.router)
app.include_router(export.properties_router)


@app.get("/")
async def root():
    return {
        "message": "Rental Calendar Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }
