"""Create test profiles and print bearer tokens for local testing.

Run after database migration. Each profile gets a signed access token that
can be passed as ``Authorization: Bearer <token>`` to the booking API.
"""

import asyncio
from datetime import time

from sqlalchemy import select

from telehealth.core.security import create_access_token
from telehealth.db.session import AsyncSessionLocal
from telehealth.booking.availability import DayOfWeek
from telehealth.models.availability import DoctorAvailability
from telehealth.models.profile import Profile, Role

# Test profile definitions
TEST_PROFILES = [
    {
        "full_name": "Test Patient One",
        "role": Role.PATIENT.value,
        "email": "patient1@test.telehealth.local",
        "phone": "+2348000000001",
    },
    {
        "full_name": "Test Patient Two",
        "role": Role.PATIENT.value,
        "email": "patient2@test.telehealth.local",
        "phone": "+2348000000002",
    },
    {
        "full_name": "Amaka Test",
        "role": Role.DOCTOR.value,
        "email": "doctor1@test.telehealth.local",
        "phone": "+2348000000101",
    },
    {
        "full_name": "Test Admin",
        "role": Role.ADMIN.value,
        "email": "admin@test.telehealth.local",
        "phone": None,
    },
]

# Weekday clinic hours (UTC) seeded for each test doctor
TEST_DOCTOR_HOURS = (time(8, 0), time(17, 0))
TEST_DOCTOR_DAYS = [
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
]


async def create_profiles_db() -> tuple[list[Profile], list[str]]:
    """Create test profiles and doctor hours, skipping ones that already exist."""
    async with AsyncSessionLocal() as session:
        profiles = []
        skipped = []

        for entry in TEST_PROFILES:
            existing = await session.scalar(
                select(Profile).where(Profile.email == entry["email"])
            )
            if existing:
                skipped.append(entry["email"])
                profiles.append(existing)
                continue

            profile = Profile(**entry)
            session.add(profile)
            profiles.append(profile)

        await session.flush()

        for profile in profiles:
            if Role(profile.role) != Role.DOCTOR:
                continue
            has_windows = await session.scalar(
                select(DoctorAvailability.id).where(DoctorAvailability.doctor_id == profile.id)
            )
            if has_windows:
                continue
            start_time, end_time = TEST_DOCTOR_HOURS
            for day in TEST_DOCTOR_DAYS:
                session.add(
                    DoctorAvailability(
                        doctor_id=profile.id,
                        day_of_week=day.value,
                        start_time=start_time,
                        end_time=end_time,
                    )
                )

        await session.commit()
        return profiles, skipped


def print_profiles(profiles: list[Profile], skipped: list[str]) -> None:
    """Print each profile with a fresh access token."""
    print("=" * 60)
    print("TEST PROFILES")
    print("=" * 60)
    print()

    for profile in profiles:
        token = create_access_token(
            subject=profile.id,
            additional_claims={"role": Role(profile.role).value},
        )
        print(f"{profile.full_name} ({Role(profile.role).value})")
        print(f"  id:    {profile.id}")
        print(f"  token: {token}")
        print()

    if skipped:
        print(f"Already existed: {', '.join(skipped)}")


async def main() -> None:
    profiles, skipped = await create_profiles_db()
    print_profiles(profiles, skipped)


if __name__ == "__main__":
    asyncio.run(main())
