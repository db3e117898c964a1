"""Catalog models: offerings, plans, programs, modules and topics."""

import enum
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from core.db import Base, TimestampMixin, SoftDeleteMixin


class OfferingType(str, enum.Enum):
    """Billing style of an offering."""

    MARATHON = "marathon"  # recurring, billed monthly
    SPRINT = "sprint"  # one-time payment, fixed duration


class Offering(Base, TimestampMixin, SoftDeleteMixin):
    """A product line owning programs. Marathon offerings also own monthly plans."""

    __tablename__ = "offerings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    offering_type: Mapped[OfferingType] = mapped_column(
        Enum(OfferingType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    plans: Mapped[List["Plan"]] = relationship(
        "Plan", back_populates="offering", lazy="selectin"
    )
    programs: Mapped[List["Program"]] = relationship(
        "Program", back_populates="offering", lazy="selectin"
    )

    @property
    def is_marathon(self) -> bool:
        return self.offering_type == OfferingType.MARATHON

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Offering"]:
        result = await db_session.execute(
            select(cls).where(cls.id == id, cls.is_deleted == False)
        )
        return result.scalars().first()

    @classmethod
    async def get_all(cls, db_session: AsyncSession) -> Sequence["Offering"]:
        result = await db_session.execute(
            select(cls).where(cls.is_deleted == False).order_by(cls.name)
        )
        return result.scalars().all()


class Plan(Base, TimestampMixin, SoftDeleteMixin):
    """A monthly billing plan of a Marathon offering."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    offering_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("offerings.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # None: the configured tax percent applies
    tax_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    stripe_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paypal_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    offering: Mapped["Offering"] = relationship("Offering", back_populates="plans")

    @classmethod
    async def get_by_id(cls, db_session: AsyncSession, id: str) -> Optional["Plan"]:
        result = await db_session.execute(
            select(cls).where(cls.id == id, cls.is_deleted == False)
        )
        return result.scalars().first()


class Program(Base, TimestampMixin, SoftDeleteMixin):
    """A course a student enrolls in and progresses through."""

    __tablename__ = "programs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    offering_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("offerings.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # 2 means "twice-a-week": the student picks two sessions on different weekdays
    sessions_per_week: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # External product ids, provisioned lazily on first payment
    stripe_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paypal_product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    offering: Mapped["Offering"] = relationship(
        "Offering", back_populates="programs", lazy="selectin"
    )
    modules: Mapped[List["Module"]] = relationship(
        "Module",
        back_populates="program",
        order_by="Module.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Program"]:
        """Get program by ID with offering and modules loaded."""
        result = await db_session.execute(
            select(cls)
            .options(selectinload(cls.modules).selectinload(Module.topics))
            .where(cls.id == id, cls.is_deleted == False)
        )
        return result.scalars().first()

    @classmethod
    async def get_all(
        cls, db_session: AsyncSession, offering_id: Optional[str] = None
    ) -> Sequence["Program"]:
        query = select(cls).where(cls.is_deleted == False)
        if offering_id:
            query = query.where(cls.offering_id == offering_id)
        result = await db_session.execute(query.order_by(cls.name))
        return result.scalars().all()


class Module(Base, TimestampMixin):
    __tablename__ = "modules"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    program: Mapped["Program"] = relationship("Program", back_populates="modules")
    topics: Mapped[List["Topic"]] = relationship(
        "Topic",
        back_populates="module",
        order_by="Topic.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Topic(Base, TimestampMixin):
    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    module_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estimated_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    module: Mapped["Module"] = relationship("Module", back_populates="topics")

    @classmethod
    async def get_by_id(cls, db_session: AsyncSession, id: str) -> Optional["Topic"]:
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()
