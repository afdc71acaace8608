"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from telehealth.services.booking import BookingCoordinator

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_actor_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str | None:
    """Extract the raw bearer token.

    The token is passed through untouched; the role gate resolves and
    authorizes it per operation.
    """
    if not credentials:
        return None
    return credentials.credentials


def get_coordinator(request: Request) -> BookingCoordinator:
    """Coordinator built during application startup."""
    return request.app.state.coordinator


ActorToken = Annotated[str | None, Depends(get_actor_token)]
Coordinator = Annotated[BookingCoordinator, Depends(get_coordinator)]
