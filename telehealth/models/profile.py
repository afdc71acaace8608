"""User profile model: role and contact details."""

from enum import Enum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from telehealth.db.base import Base, TimestampMixin


class Role(str, Enum):
    """Actor roles for booking authorization."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Profile(Base, TimestampMixin):
    """Contact details for a patient, doctor or admin.

    Owned by the identity system; the booking engine only reads it to
    address notifications.
    """

    __tablename__ = "profiles"

    role: Mapped[Role] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    # E.164 format
    phone: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Profile {self.role} {self.full_name}>"
