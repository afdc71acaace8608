"""Settings-area access checks for the portal front end."""

from fastapi import APIRouter

from telehealth.api.deps import ActorToken, Coordinator
from telehealth.schemas.booking import SettingsAccessResponse
from telehealth.services.role_gate import Operation

router = APIRouter()


@router.get(
    "/{area}/access",
    response_model=SettingsAccessResponse,
    summary="Check settings-area access",
    description="403 carries the caller's own area so the client can redirect",
)
async def check_settings_access(
    area: str,
    coordinator: Coordinator,
    token: ActorToken,
) -> SettingsAccessResponse:
    actor = await coordinator.role_gate.authorize(token, Operation.VIEW_SETTINGS, area=area)
    return SettingsAccessResponse(area=area, actor_id=actor.id, role=actor.role.value)
