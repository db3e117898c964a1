"""Dated schedule slot model."""

import datetime
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.capacity import CapacityMixin
from app.models.class_session import ClassSession
from app.models.location import Location
from core.db import Base, TimestampMixin


class Schedule(Base, TimestampMixin, CapacityMixin):
    """
    A class session on a specific date at a location, for a program or a plan.

    Exactly one of program_id/plan_id is set.
    """

    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), nullable=False, index=True
    )
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("class_sessions.id"), nullable=False, index=True
    )
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    program_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=True, index=True
    )
    plan_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("plans.id"), nullable=True, index=True
    )
    created_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    location: Mapped["Location"] = relationship("Location")
    session: Mapped["ClassSession"] = relationship("ClassSession", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "(program_id IS NULL) <> (plan_id IS NULL)",
            name="ck_schedules_program_xor_plan",
        ),
        CheckConstraint("total_capacity >= 1", name="ck_schedules_total_min"),
        CheckConstraint(
            "demo_capacity >= 0 AND demo_capacity <= total_capacity",
            name="ck_schedules_demo_within_total",
        ),
        CheckConstraint(
            "available_capacity >= 0 AND available_capacity <= total_capacity",
            name="ck_schedules_regular_pool",
        ),
        CheckConstraint(
            "available_demo_capacity >= 0 AND available_demo_capacity <= demo_capacity",
            name="ck_schedules_demo_pool",
        ),
        UniqueConstraint(
            "location_id", "session_id", "date", "program_id", "plan_id",
            name="uq_schedules_slot",
        ),
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Schedule"]:
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def find_duplicate(
        cls,
        db_session: AsyncSession,
        location_id: str,
        session_id: str,
        on_date: datetime.date,
        program_id: Optional[str],
        plan_id: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> Optional["Schedule"]:
        # NULL never equals NULL in a UNIQUE index, so check explicitly
        query = select(cls).where(
            cls.location_id == location_id,
            cls.session_id == session_id,
            cls.date == on_date,
            cls.program_id.is_(None) if program_id is None else cls.program_id == program_id,
            cls.plan_id.is_(None) if plan_id is None else cls.plan_id == plan_id,
        )
        if exclude_id:
            query = query.where(cls.id != exclude_id)
        result = await db_session.execute(query)
        return result.scalars().first()

    @classmethod
    async def get_filtered(
        cls,
        db_session: AsyncSession,
        location_id: Optional[str] = None,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
        program_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> Sequence["Schedule"]:
        query = select(cls)
        if location_id:
            query = query.where(cls.location_id == location_id)
        if start_date:
            query = query.where(cls.date >= start_date)
        if end_date:
            query = query.where(cls.date <= end_date)
        if program_id:
            query = query.where(cls.program_id == program_id)
        if plan_id:
            query = query.where(cls.plan_id == plan_id)
        result = await db_session.execute(query.order_by(cls.date))
        return result.scalars().all()
