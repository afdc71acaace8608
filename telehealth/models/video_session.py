"""Video session model owned by the session provisioner."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from telehealth.db.base import Base, TimestampMixin


class VideoSession(Base, TimestampMixin):
    """Provisioned video room plus per-participant access tokens.

    Appointments reference a session by id; they never own it. Sessions are
    retained after cancellation so a retried provision can find them.
    """

    __tablename__ = "video_sessions"

    appointment_id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        index=True,
    )
    room_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    room_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    join_url: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    patient_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    doctor_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<VideoSession {self.room_name}>"
