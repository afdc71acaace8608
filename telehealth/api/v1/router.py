"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from telehealth.api.v1 import access, appointments, health

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Booking
api_router.include_router(
    appointments.router,
    prefix="/appointments",
    tags=["appointments"],
)

# Settings areas
api_router.include_router(
    access.router,
    prefix="/settings",
    tags=["settings"],
)
