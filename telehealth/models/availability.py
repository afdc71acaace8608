"""Doctor weekly availability model."""

from datetime import time

from sqlalchemy import Boolean, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from telehealth.db.base import Base, TimestampMixin


class DoctorAvailability(Base, TimestampMixin):
    """Recurring weekly window in which a doctor accepts bookings.

    ``day_of_week`` follows ``date.weekday()`` (Monday is 0). Times are UTC.
    Maintained by the scheduling admin screens; read-only here.
    """

    __tablename__ = "doctor_availability"

    doctor_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DoctorAvailability {self.doctor_id} {self.day_of_week} {self.start_time}-{self.end_time}>"
