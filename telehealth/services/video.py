"""Video session provisioning.

Wraps the video room provider (Daily.co in production). Provisioning is
idempotent per appointment: a live session is reused instead of creating a
second room, so a retried orchestration never orphans rooms.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4

import httpx

from telehealth.core.config import settings
from telehealth.core.errors import ProvisioningFailed, VideoProviderError
from telehealth.core.retry import RetryExhausted, RetryPolicy, retry_async
from telehealth.models.profile import Role
from telehealth.models.video_session import VideoSession
from telehealth.stores.protocols import VideoSessionStore
from telehealth.utils.time import as_utc, to_unix, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RoomConfig:
    """Requested configuration for one appointment's room."""

    name: str
    not_before: datetime
    expires_at: datetime
    privacy: str = "private"
    enable_recording: str = "cloud"
    enable_chat: bool = True
    enable_screenshare: bool = True
    hipaa_compliant: bool = True


@dataclass(frozen=True)
class RoomInfo:
    """Room as created by the provider."""

    room_id: str
    name: str
    join_url: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class VideoRoomProvider(ABC):
    """Abstract base class for video room providers."""

    @abstractmethod
    async def create_room(self, config: RoomConfig) -> RoomInfo:
        """Create a room (or return the existing room with the same name).

        Raises VideoProviderError on failure.
        """
        pass

    @abstractmethod
    async def create_token(
        self,
        room_name: str,
        participant_role: Role,
        expires_at: datetime,
    ) -> str:
        """Mint a meeting token for one participant.

        Raises VideoProviderError on failure.
        """
        pass


def _raise_for_status(response: httpx.Response, action: str) -> None:
    """Translate provider HTTP status into VideoProviderError."""
    if response.is_success:
        return
    retryable = response.status_code == 429 or response.status_code >= 500
    raise VideoProviderError(
        f"Daily.co {action} failed: HTTP {response.status_code}",
        status_code=response.status_code,
        is_retryable=retryable,
    )


class DailyVideoProvider(VideoRoomProvider):
    """Daily.co REST API client."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.daily.co/v1",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout_seconds,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise VideoProviderError(
                f"Daily.co {action} failed: {type(e).__name__}",
                is_retryable=True,
            ) from e

    async def create_room(self, config: RoomConfig) -> RoomInfo:
        """Create a private room scoped to the appointment window."""
        body = {
            "name": config.name,
            "privacy": config.privacy,
            "properties": {
                "nbf": to_unix(config.not_before),
                "exp": to_unix(config.expires_at),
                "enable_chat": config.enable_chat,
                "enable_screenshare": config.enable_screenshare,
                "enable_recording": config.enable_recording,
                "hipaa": config.hipaa_compliant,
            },
        }
        response = await self._request("POST", "/rooms", "create room", json=body)

        # A retry after a lost response finds the room already created
        if response.status_code == 400 and "already exists" in response.text:
            logger.info(f"Daily.co room {config.name} already exists, reusing it")
            response = await self._request("GET", f"/rooms/{config.name}", "get room")

        _raise_for_status(response, "create room")
        data = response.json()

        if not data.get("name") or not data.get("url"):
            raise VideoProviderError("Invalid room response from Daily.co")

        return RoomInfo(
            room_id=data.get("id") or data["name"],
            name=data["name"],
            join_url=data["url"],
            raw=data,
        )

    async def create_token(
        self,
        room_name: str,
        participant_role: Role,
        expires_at: datetime,
    ) -> str:
        """Mint a meeting token; the doctor joins as room owner."""
        body = {
            "properties": {
                "room_name": room_name,
                "is_owner": participant_role == Role.DOCTOR,
                "exp": to_unix(expires_at),
            },
        }
        response = await self._request("POST", "/meeting-tokens", "create token", json=body)
        _raise_for_status(response, "create token")

        token = response.json().get("token")
        if not token:
            raise VideoProviderError("Daily.co returned no meeting token")
        return token


class SimulatedVideoProvider(VideoRoomProvider):
    """Provider used when no Daily.co key is configured.

    Logs instead of calling out and returns deterministic room URLs.
    """

    def __init__(self, base_url: str = "https://telehealth.daily.co") -> None:
        self.base_url = base_url.rstrip("/")

    async def create_room(self, config: RoomConfig) -> RoomInfo:
        logger.info(f"Simulating video room creation: {config.name}")
        return RoomInfo(
            room_id=f"room_{uuid4().hex[:16]}",
            name=config.name,
            join_url=f"{self.base_url}/{config.name}",
        )

    async def create_token(
        self,
        room_name: str,
        participant_role: Role,
        expires_at: datetime,
    ) -> str:
        return f"tok_{participant_role.value}_{uuid4().hex}"


def get_video_provider() -> VideoRoomProvider:
    """Get configured video provider (Daily.co when a key is set)."""
    if settings.daily_api_key:
        return DailyVideoProvider(
            api_key=settings.daily_api_key,
            api_base=settings.daily_api_base,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    return SimulatedVideoProvider()


class SessionProvisioner:
    """Create or reuse the video session for an appointment."""

    def __init__(
        self,
        provider: VideoRoomProvider,
        session_store: VideoSessionStore,
        retry_policy: RetryPolicy | None = None,
        grace_minutes: int | None = None,
        store_retry_policy: RetryPolicy | None = None,
    ):
        self.provider = provider
        self.session_store = session_store
        self.retry_policy = retry_policy or RetryPolicy.from_settings(
            timeout=settings.provider_timeout_seconds
        )
        self.store_retry_policy = store_retry_policy or RetryPolicy.from_settings(
            timeout=settings.store_timeout_seconds
        )
        self.grace = timedelta(
            minutes=settings.room_grace_minutes if grace_minutes is None else grace_minutes
        )

    @staticmethod
    def room_name_for(appointment_id: str) -> str:
        return f"appointment-{appointment_id}"

    async def provision(
        self,
        appointment_id: str,
        patient_id: str,
        doctor_id: str,
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> VideoSession:
        """Return a live session for the appointment, creating one if needed.

        Raises:
            ProvisioningFailed: permanent provider error, or transient provider
                or session store errors that outlasted the retry policy
                (``permanent=False``)
        """
        now = utc_now()
        existing = await self._store(
            lambda: self.session_store.get_for_appointment(appointment_id),
            "load video session",
        )
        if existing and as_utc(existing.expires_at) > now:
            logger.info(
                f"Reusing video session {existing.room_name}",
                extra={"appointment_id": appointment_id},
            )
            return existing

        start = as_utc(scheduled_at)
        expires_at = start + timedelta(minutes=duration_minutes) + self.grace
        if expires_at <= now:
            raise ProvisioningFailed("Appointment window has already ended", permanent=True)

        config = RoomConfig(
            name=self.room_name_for(appointment_id),
            not_before=start - self.grace,
            expires_at=expires_at,
            enable_recording=settings.room_enable_recording,
            enable_chat=settings.room_enable_chat,
            enable_screenshare=settings.room_enable_screenshare,
            hipaa_compliant=settings.room_hipaa_compliant,
        )

        room = await self._call(lambda: self.provider.create_room(config), "create room")
        patient_token = await self._call(
            lambda: self.provider.create_token(room.name, Role.PATIENT, expires_at),
            "create patient token",
        )
        doctor_token = await self._call(
            lambda: self.provider.create_token(room.name, Role.DOCTOR, expires_at),
            "create doctor token",
        )

        video_session = await self._store(
            lambda: self.session_store.save(
                VideoSession(
                    id=str(uuid4()),
                    appointment_id=appointment_id,
                    room_id=room.room_id,
                    room_name=room.name,
                    join_url=room.join_url,
                    patient_token=patient_token,
                    doctor_token=doctor_token,
                    expires_at=expires_at,
                )
            ),
            "save video session",
        )

        logger.info(
            f"Provisioned video room {room.name} for patient {patient_id} and doctor {doctor_id}",
            extra={"appointment_id": appointment_id},
        )
        return video_session

    async def _call(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        try:
            result, _ = await retry_async(operation, self.retry_policy, description)
            return result
        except RetryExhausted as e:
            raise ProvisioningFailed(
                f"Video provider unavailable ({description}): {e.last_error}",
                permanent=False,
            ) from e
        except VideoProviderError as e:
            raise ProvisioningFailed(
                f"Video provider rejected {description}: {e}",
                permanent=True,
            ) from e

    async def _store(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        try:
            result, _ = await retry_async(operation, self.store_retry_policy, description)
            return result
        except RetryExhausted as e:
            raise ProvisioningFailed(
                f"Session store unavailable ({description}): {e.last_error}",
                permanent=False,
            ) from e
