"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import asyncio  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import StaticPool  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from telehealth.core.errors import GatewayError, VideoProviderError  # noqa: E402
from telehealth.core.retry import RetryPolicy  # noqa: E402
from telehealth.core.security import create_access_token  # noqa: E402
from telehealth.db.base import Base  # noqa: E402
import telehealth.models  # noqa: E402,F401
from telehealth.models.profile import Role  # noqa: E402
from telehealth.services.booking import BookingCoordinator  # noqa: E402
from telehealth.services.notifications import (  # noqa: E402
    EmailGateway,
    NotificationDispatcher,
    SmsGateway,
)
from telehealth.services.role_gate import RoleGate, TokenIdentityStore  # noqa: E402
from telehealth.services.video import (  # noqa: E402
    RoomConfig,
    RoomInfo,
    SessionProvisioner,
    VideoRoomProvider,
)
from telehealth.stores.memory import (  # noqa: E402
    InMemoryAppointmentStore,
    InMemoryAvailabilityDirectory,
    InMemoryContactDirectory,
    InMemoryVideoSessionStore,
)
from telehealth.stores.protocols import Contact  # noqa: E402

# Use SQLite for store tests (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PATIENT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_PATIENT_ID = "22222222-2222-2222-2222-222222222222"
DOCTOR_ID = "33333333-3333-3333-3333-333333333333"
ADMIN_ID = "44444444-4444-4444-4444-444444444444"

# No backoff delay in tests
FAST_RETRY = RetryPolicy(attempts=3, base_delay=0, max_delay=0)


def make_token(user_id: str, role: Role | str) -> str:
    """Signed access token for an actor."""
    return create_access_token(
        subject=user_id,
        additional_claims={"role": Role(role).value},
    )


def future_slot(days: int = 2, hour: int = 10) -> datetime:
    """A whole-hour UTC start time in the future."""
    base = datetime.now(timezone.utc) + timedelta(days=days)
    return base.replace(hour=hour, minute=0, second=0, microsecond=0)


class FakeVideoProvider(VideoRoomProvider):
    """Scriptable video provider.

    ``failures`` is consumed one entry per create_room call; an exception
    entry is raised, None means succeed.
    """

    def __init__(self, failures: list | None = None) -> None:
        self.failures = list(failures or [])
        self.room_calls = 0
        self.token_calls: list[tuple[str, Role]] = []
        self.release: asyncio.Event | None = None

    async def create_room(self, config: RoomConfig) -> RoomInfo:
        self.room_calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return RoomInfo(
            room_id=f"room-{self.room_calls}",
            name=config.name,
            join_url=f"https://test.daily.co/{config.name}",
        )

    async def create_token(self, room_name: str, participant_role: Role, expires_at: datetime) -> str:
        self.token_calls.append((room_name, participant_role))
        return f"token-{participant_role.value}-{uuid4().hex[:8]}"


def transient_video_error() -> VideoProviderError:
    return VideoProviderError("Daily.co create room failed: HTTP 503", status_code=503, is_retryable=True)


class FakeEmailGateway(EmailGateway):
    """Records sends; fails every send when ``error`` is set."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[dict] = []
        self.calls = 0

    async def send(self, to: str, subject: str, html_body: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html_body": html_body})
        return f"email-{len(self.sent)}"


class FakeSmsGateway(SmsGateway):
    """Records sends; fails every send when ``error`` is set."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[dict] = []
        self.calls = 0

    async def send(self, to: str, message: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "message": message})
        return f"sms-{len(self.sent)}"


def transient_gateway_error() -> GatewayError:
    return GatewayError("gateway returned HTTP 503", status_code=503, is_retryable=True)


@pytest.fixture
def patient_token() -> str:
    return make_token(PATIENT_ID, Role.PATIENT)


@pytest.fixture
def other_patient_token() -> str:
    return make_token(OTHER_PATIENT_ID, Role.PATIENT)


@pytest.fixture
def doctor_token() -> str:
    return make_token(DOCTOR_ID, Role.DOCTOR)


@pytest.fixture
def admin_token() -> str:
    return make_token(ADMIN_ID, Role.ADMIN)


@pytest.fixture
def contacts() -> InMemoryContactDirectory:
    directory = InMemoryContactDirectory()
    directory.add(Contact(PATIENT_ID, "Ngozi Patient", "ngozi@example.com", "+2348000000001"))
    directory.add(Contact(OTHER_PATIENT_ID, "Tunde Patient", "tunde@example.com", "+2348000000002"))
    directory.add(Contact(DOCTOR_ID, "Amaka Eze", "amaka@example.com", "+2348000000101"))
    return directory


@pytest.fixture
def video_provider() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def email_gateway() -> FakeEmailGateway:
    return FakeEmailGateway()


@pytest.fixture
def sms_gateway() -> FakeSmsGateway:
    return FakeSmsGateway()


@pytest.fixture
def appointment_store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def session_store() -> InMemoryVideoSessionStore:
    return InMemoryVideoSessionStore()


@pytest.fixture
def availability() -> InMemoryAvailabilityDirectory:
    """No windows on record, so every doctor is bookable at any time."""
    return InMemoryAvailabilityDirectory()


@pytest.fixture
def coordinator(
    appointment_store,
    session_store,
    contacts,
    availability,
    video_provider,
    email_gateway,
    sms_gateway,
) -> BookingCoordinator:
    """Coordinator on in-memory stores with fake collaborators."""
    return BookingCoordinator(
        role_gate=RoleGate(TokenIdentityStore()),
        appointments=appointment_store,
        sessions=session_store,
        contacts=contacts,
        provisioner=SessionProvisioner(
            video_provider, session_store, retry_policy=FAST_RETRY, store_retry_policy=FAST_RETRY
        ),
        dispatcher=NotificationDispatcher(email_gateway, sms_gateway, retry_policy=FAST_RETRY),
        store_retry_policy=FAST_RETRY,
        availability=availability,
    )


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(async_engine) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to the test database."""
    yield async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
