"""Free demo class bookings."""

import enum
from datetime import date
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import Boolean, Date, Enum, ForeignKey, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin


class DemoStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that keep a demo seat taken
SEAT_HOLDING_STATUSES = (DemoStatus.PENDING, DemoStatus.CONFIRMED)


class DemoRegistration(Base, TimestampMixin):
    """
    A family's booking of one free demo class.

    The booking holds one seat of the demo pool of either a dated schedule or
    a weekly class session, until it is completed or cancelled.
    """

    __tablename__ = "demo_registrations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    parent_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    parent_phone: Mapped[str] = mapped_column(String(20), nullable=False)

    student_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    student_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    student_dob: Mapped[date] = mapped_column(Date, nullable=False)

    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), nullable=False, index=True
    )
    class_session_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("class_sessions.id"), nullable=True
    )
    schedule_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("schedules.id"), nullable=True
    )
    demo_class_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[DemoStatus] = mapped_column(
        Enum(DemoStatus, values_callable=lambda x: [e.value for e in x]),
        default=DemoStatus.PENDING,
        nullable=False,
        index=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attendance_marked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def holds_seat(self) -> bool:
        return self.status in SEAT_HOLDING_STATUSES

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["DemoRegistration"]:
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_filtered(
        cls,
        db_session: AsyncSession,
        location_id: Optional[str] = None,
        status: Optional[DemoStatus] = None,
        email: Optional[str] = None,
        on_date: Optional[date] = None,
        upcoming_from: Optional[date] = None,
    ) -> Sequence["DemoRegistration"]:
        """Bookings ordered by demo date; ``upcoming_from`` also hides cancelled ones."""
        query = select(cls)
        if location_id:
            query = query.where(cls.location_id == location_id)
        if status:
            query = query.where(cls.status == status)
        if email:
            query = query.where(cls.parent_email == email)
        if on_date:
            query = query.where(cls.demo_class_date == on_date)
        if upcoming_from:
            query = query.where(
                cls.demo_class_date >= upcoming_from,
                cls.status != DemoStatus.CANCELLED,
            )
        result = await db_session.execute(query.order_by(cls.demo_class_date))
        return result.scalars().all()
