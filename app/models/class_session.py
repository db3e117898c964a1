"""Weekly class session model."""

import enum
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    String,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.models.capacity import CapacityMixin
from core.db import Base, TimestampMixin, LocationMixin


class Weekday(str, enum.Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def is_weekend(self) -> bool:
        return self in (Weekday.SATURDAY, Weekday.SUNDAY)

    @classmethod
    def of(cls, day) -> "Weekday":
        return list(cls)[day.weekday()]


class SessionType(str, enum.Enum):
    WEEKDAY = "weekday"
    WEEKEND = "weekend"


class ClassSession(Base, TimestampMixin, LocationMixin, CapacityMixin):
    """A recurring weekly time slot with regular and demo seat pools."""

    __tablename__ = "class_sessions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    weekday: Mapped[Weekday] = mapped_column(
        Enum(Weekday, values_callable=lambda x: [e.value for e in x]), nullable=False
    )
    session_type: Mapped[SessionType] = mapped_column(
        Enum(SessionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    # HH:MM, 24h clock
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "available_capacity >= 0 AND available_capacity <= total_capacity",
            name="ck_class_sessions_regular_pool",
        ),
        CheckConstraint(
            "available_demo_capacity >= 0 AND available_demo_capacity <= demo_capacity",
            name="ck_class_sessions_demo_pool",
        ),
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["ClassSession"]:
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_many(
        cls, db_session: AsyncSession, ids: Sequence[str]
    ) -> Sequence["ClassSession"]:
        if not ids:
            return []
        result = await db_session.execute(select(cls).where(cls.id.in_(ids)))
        return result.scalars().all()

    @classmethod
    async def get_filtered(
        cls,
        db_session: AsyncSession,
        location_id: Optional[str] = None,
        weekday: Optional[Weekday] = None,
        session_type: Optional[SessionType] = None,
    ) -> Sequence["ClassSession"]:
        query = select(cls)
        if location_id:
            query = query.where(cls.location_id == location_id)
        if weekday:
            query = query.where(cls.weekday == weekday)
        if session_type:
            query = query.where(cls.session_type == session_type)
        result = await db_session.execute(query.order_by(cls.weekday, cls.start_time))
        return result.scalars().all()

    @property
    def has_bookings(self) -> bool:
        return self.enrolled_count > 0 or self.demo_enrolled_count > 0
