"""Pre-account registration captured during the public checkout."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    and_,
    delete,
    or_,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.models.enrollment import PaymentMethodType
from app.utils.dates import utcnow
from core.config import config
from core.db import Base, TimestampMixin


class Registration(Base, TimestampMixin):
    """
    A family's intent to enroll, recorded before any portal account exists.

    Incomplete registrations expire REGISTRATION_TTL_SECONDS after creation;
    ``expires_at`` is cleared once the registration completes.
    """

    __tablename__ = "registrations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )

    # Parent
    parent_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    parent_phone: Mapped[str] = mapped_column(String(20), nullable=False)

    # Student
    student_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    student_last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    student_dob: Mapped[date] = mapped_column(Date, nullable=False)

    # Selection
    location_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("locations.id"), nullable=False, index=True
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=False
    )
    offering_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("offerings.id"), nullable=False
    )
    plan_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("plans.id"), nullable=True
    )
    schedule_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("schedules.id"), nullable=True
    )
    class_session_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    enrollment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethodType] = mapped_column(
        Enum(PaymentMethodType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )

    # Computed amounts
    first_payment_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    monthly_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    discount_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    discount_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    admin_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    admin_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount_due: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Processor identifiers
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_payment_method_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paypal_order_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paypal_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Completion flags
    is_registration_complete: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_reg_linked_with_enrollment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    is_user_setup: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    enrollment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @staticmethod
    def default_expiry(now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) + timedelta(seconds=config.REGISTRATION_TTL_SECONDS)

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str, now: Optional[datetime] = None
    ) -> Optional["Registration"]:
        """Get a registration unless it is incomplete and past its expiry."""
        now = now or utcnow()
        result = await db_session.execute(
            select(cls).where(
                cls.id == id,
                or_(cls.expires_at.is_(None), cls.expires_at > now),
            )
        )
        return result.scalars().first()

    @classmethod
    async def purge_expired(
        cls, db_session: AsyncSession, now: Optional[datetime] = None
    ) -> int:
        """Delete incomplete registrations whose lifetime has run out."""
        now = now or utcnow()
        result = await db_session.execute(
            delete(cls).where(
                and_(
                    cls.is_registration_complete == False,
                    cls.expires_at.is_not(None),
                    cls.expires_at <= now,
                )
            )
        )
        await db_session.commit()
        return result.rowcount or 0

    def mark_complete(self, enrollment_id: str) -> None:
        self.is_registration_complete = True
        self.is_reg_linked_with_enrollment = True
        self.is_user_setup = True
        self.enrollment_id = enrollment_id
        self.expires_at = None
