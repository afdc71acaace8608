"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from telehealth.api.v1.router import api_router
from telehealth.core.config import settings
from telehealth.core.errors import (
    BookingError,
    Forbidden,
    InvalidBookingRequest,
    NotFound,
    SlotConflict,
    StoreUnavailable,
    Unauthenticated,
)
from telehealth.core.logging import setup_logging
from telehealth.services import build_coordinator

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type[BookingError], int] = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    SlotConflict: status.HTTP_409_CONFLICT,
    InvalidBookingRequest: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def init_db() -> None:
    """Create tables directly (dev only; use Alembic elsewhere)."""
    from telehealth.db.base import Base
    from telehealth.db.session import engine

    import telehealth.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    logger.info(f"Starting Telehealth Booking API (env={settings.env}, store={settings.store_backend})")

    if settings.init_db_on_startup and settings.is_dev and settings.store_backend == "sql":
        logger.info("Initializing database...")
        await init_db()

    app.state.coordinator = build_coordinator()

    yield

    # Shutdown
    logger.info("Shutting down Telehealth Booking API")
    drained = await app.state.coordinator.wait_for_background(
        timeout=settings.shutdown_drain_timeout_seconds
    )
    if not drained:
        logger.warning("Background work was cancelled before completion")


# Create FastAPI application
app = FastAPI(
    title="Telehealth Booking API",
    description="Appointment booking and video session orchestration",
    version="0.1.0",
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)


@app.exception_handler(BookingError)
async def booking_exception_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Map booking errors to HTTP responses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    content: dict = {"detail": str(exc)}
    if isinstance(exc, Forbidden) and exc.redirect_area:
        content["redirect_area"] = exc.redirect_area

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    if settings.is_prod:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Service info."""
    return {
        "service": "Telehealth Booking API",
        "version": "0.1.0",
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }
