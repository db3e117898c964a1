"""Saved payment methods."""

from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import Boolean, ForeignKey, Integer, String, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin


class PaymentMethod(Base, TimestampMixin):
    """A card attached to the user's Stripe customer."""

    __tablename__ = "payment_methods"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stripe_payment_method_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    card_brand: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    exp_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exp_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @property
    def expiration_date(self) -> Optional[str]:
        if self.exp_month is None or self.exp_year is None:
            return None
        return f"{self.exp_month}/{self.exp_year}"

    @classmethod
    async def get_by_stripe_id(
        cls, db_session: AsyncSession, stripe_payment_method_id: str
    ) -> Optional["PaymentMethod"]:
        result = await db_session.execute(
            select(cls).where(cls.stripe_payment_method_id == stripe_payment_method_id)
        )
        return result.scalars().first()

    @classmethod
    async def get_for_user(
        cls, db_session: AsyncSession, user_id: str
    ) -> Sequence["PaymentMethod"]:
        result = await db_session.execute(
            select(cls)
            .where(cls.user_id == user_id)
            .order_by(cls.is_default.desc(), cls.created_at.desc())
        )
        return result.scalars().all()

    @classmethod
    async def count_for_user(cls, db_session: AsyncSession, user_id: str) -> int:
        result = await db_session.execute(
            select(func.count(cls.id)).where(cls.user_id == user_id)
        )
        return result.scalar() or 0
