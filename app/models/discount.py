"""Discount code model."""

import enum
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    and_,
    or_,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.utils.dates import as_utc, utcnow
from core.db import Base, TimestampMixin, LocationMixin


class DiscountUsage(str, enum.Enum):
    """How many times a code may be redeemed."""

    SINGLE = "single"
    MULTIPLE = "multiple"


class DiscountCode(Base, TimestampMixin, LocationMixin):
    """Percentage discount code, optionally scoped to one location."""

    __tablename__ = "discount_codes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    percent: Mapped[int] = mapped_column(Integer, nullable=False)
    usage: Mapped[DiscountUsage] = mapped_column(
        Enum(DiscountUsage, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=DiscountUsage.SINGLE,
    )
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # null = unlimited
    current_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expire_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )

    __table_args__ = (
        CheckConstraint("percent >= 1 AND percent <= 100", name="ck_discount_codes_percent"),
        CheckConstraint("current_uses >= 0", name="ck_discount_codes_uses_positive"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_discount_codes_uses_within_max",
        ),
    )

    @staticmethod
    def normalize_code(code: str) -> str:
        return code.strip().upper()

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["DiscountCode"]:
        """Get discount code by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_code(
        cls, db_session: AsyncSession, code: str
    ) -> Optional["DiscountCode"]:
        """Get discount code by code string."""
        result = await db_session.execute(
            select(cls).where(cls.code == cls.normalize_code(code))
        )
        return result.scalars().first()

    @classmethod
    async def get_filtered(
        cls,
        db_session: AsyncSession,
        location_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Sequence["DiscountCode"]:
        query = select(cls)
        if location_id:
            query = query.where(cls.location_id == location_id)
        if is_active is not None:
            query = query.where(cls.is_active == is_active)
        result = await db_session.execute(query.order_by(cls.created_at.desc()))
        return result.scalars().all()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expire_date is None:
            return False
        return as_utc(self.expire_date) < (now or utcnow())

    @property
    def is_usable(self) -> bool:
        """Uses remaining, ignoring the active flag and expiry."""
        if self.usage == DiscountUsage.SINGLE:
            return self.current_uses == 0
        return self.max_uses is None or self.current_uses < self.max_uses

    @property
    def remaining_uses(self) -> Optional[int]:
        """None means unlimited."""
        if self.usage == DiscountUsage.SINGLE:
            return max(0, 1 - self.current_uses)
        if self.max_uses is None:
            return None
        return max(0, self.max_uses - self.current_uses)

    def applies_to_location(self, location_id: Optional[str]) -> bool:
        return self.location_id is None or self.location_id == location_id

    @classmethod
    async def try_redeem(
        cls, db_session: AsyncSession, code_id: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Count one use if, at this instant, the code is still redeemable.

        A single conditional UPDATE, so two checkouts racing on the last use
        cannot both succeed. Only flushes; the caller commits.
        """
        now = now or datetime.now(timezone.utc)
        stmt = (
            update(cls)
            .where(
                cls.id == code_id,
                cls.is_active == True,
                or_(cls.expire_date.is_(None), cls.expire_date >= now),
                or_(
                    and_(cls.usage == DiscountUsage.SINGLE, cls.current_uses == 0),
                    and_(
                        cls.usage == DiscountUsage.MULTIPLE,
                        or_(cls.max_uses.is_(None), cls.current_uses < cls.max_uses),
                    ),
                ),
            )
            .values(current_uses=cls.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(stmt)
        return result.rowcount == 1

    async def deactivate(self, db_session: AsyncSession) -> None:
        self.is_active = False
        await db_session.commit()
