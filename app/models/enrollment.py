"""Enrollment and payment history models."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    or_,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from app.models.program import OfferingType
from core.db import Base, TimestampMixin, LocationMixin
from core.exceptions.base import ValidationException

if TYPE_CHECKING:
    from app.models.class_session import ClassSession
    from app.models.program import Plan, Program
    from app.models.user import User


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class PaymentMethodType(str, enum.Enum):
    """How the family pays."""

    CREDIT_CARD = "credit-card"
    PAYPAL = "paypal"


class PaymentProcessor(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    MANUAL = "manual"


class PaymentHistoryStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


enrollment_class_sessions = Table(
    "enrollment_class_sessions",
    Base.metadata,
    Column(
        "enrollment_id",
        String(36),
        ForeignKey("enrollments.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "class_session_id",
        String(36),
        ForeignKey("class_sessions.id"),
        primary_key=True,
    ),
)


class Enrollment(Base, TimestampMixin, LocationMixin):
    """
    A student's enrollment in a program plus its payment terms.

    Marathon enrollments bill monthly through a subscription and always carry
    ``subscription_id``, ``monthly_amount`` and ``next_payment_due``. Sprint
    enrollments are paid once and carry ``payment_date`` and
    ``payment_transaction_id``.
    """

    __tablename__ = "enrollments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=False, index=True
    )
    plan_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("plans.id"), nullable=True
    )
    schedule_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("schedules.id"), nullable=True, index=True
    )
    registration_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("registrations.id"), nullable=True
    )

    offering_type: Mapped[OfferingType] = mapped_column(
        Enum(OfferingType, values_callable=_enum_values), nullable=False
    )
    payment_method: Mapped[PaymentMethodType] = mapped_column(
        Enum(PaymentMethodType, values_callable=_enum_values), nullable=False
    )
    payment_processor: Mapped[Optional[PaymentProcessor]] = mapped_column(
        Enum(PaymentProcessor, values_callable=_enum_values), nullable=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=_enum_values),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    enrollment_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Fee breakdown
    base_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    discount_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    admin_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Marathon terms
    monthly_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    next_payment_due: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    monthly_payment_received: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # Sprint terms
    payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    student: Mapped["User"] = relationship("User", foreign_keys=[student_id], lazy="selectin")
    parent: Mapped[Optional["User"]] = relationship(
        "User", foreign_keys=[parent_id], lazy="selectin"
    )
    program: Mapped["Program"] = relationship("Program", lazy="selectin")
    plan: Mapped[Optional["Plan"]] = relationship("Plan")
    class_sessions: Mapped[List["ClassSession"]] = relationship(
        "ClassSession", secondary=enrollment_class_sessions, lazy="selectin"
    )
    payment_history: Mapped[List["PaymentHistoryEntry"]] = relationship(
        "PaymentHistoryEntry",
        back_populates="enrollment",
        order_by="PaymentHistoryEntry.paid_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_marathon(self) -> bool:
        return self.offering_type == OfferingType.MARATHON

    @property
    def has_auto_pay(self) -> bool:
        return bool(self.subscription_id and self.payment_method)

    def validate_payment_terms(self) -> None:
        """Raise ValidationException unless the offering-specific terms are present."""
        if self.is_marathon:
            missing = [
                name
                for name in ("monthly_amount", "subscription_id", "next_payment_due")
                if getattr(self, name) is None
            ]
        else:
            # a Sprint payment awaiting payer approval has no payment date yet
            required = ["payment_transaction_id"]
            if self.payment_status == PaymentStatus.COMPLETED:
                required.append("payment_date")
            missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValidationException(
                message=f"{self.offering_type.value.title()} enrollment is missing {', '.join(missing)}",
                data={"missing": missing},
            )

    def record_payment(
        self,
        amount: Decimal,
        paid_at: datetime,
        processor: PaymentProcessor,
        transaction_id: Optional[str],
        status: PaymentHistoryStatus = PaymentHistoryStatus.COMPLETED,
    ) -> "PaymentHistoryEntry":
        """Append an entry to the payment history. Entries are never edited."""
        entry = PaymentHistoryEntry(
            amount=amount,
            paid_at=paid_at,
            status=status,
            processor=processor,
            transaction_id=transaction_id,
        )
        self.payment_history.append(entry)
        return entry

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Enrollment"]:
        """Get enrollment by ID."""
        result = await db_session.execute(
            select(cls)
            .options(selectinload(cls.payment_history), selectinload(cls.class_sessions))
            .where(cls.id == id)
        )
        return result.scalars().first()

    @classmethod
    async def get_filtered(
        cls,
        db_session: AsyncSession,
        location_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        student_id: Optional[str] = None,
        payment_status: Optional[PaymentStatus] = None,
    ) -> Sequence["Enrollment"]:
        query = select(cls)
        if location_id:
            query = query.where(cls.location_id == location_id)
        if parent_id:
            query = query.where(cls.parent_id == parent_id)
        if student_id:
            query = query.where(cls.student_id == student_id)
        if payment_status:
            query = query.where(cls.payment_status == payment_status)
        result = await db_session.execute(query.order_by(cls.created_at.desc()))
        return result.scalars().all()

    @classmethod
    async def get_by_subscription_id(
        cls, db_session: AsyncSession, subscription_id: str
    ) -> Optional["Enrollment"]:
        result = await db_session.execute(
            select(cls).where(cls.subscription_id == subscription_id)
        )
        return result.scalars().first()

    @classmethod
    async def find_open(
        cls, db_session: AsyncSession, student_id: str, program_id: str
    ) -> Optional["Enrollment"]:
        """An enrollment of the student in the program that is not cancelled or failed."""
        result = await db_session.execute(
            select(cls).where(
                cls.student_id == student_id,
                cls.program_id == program_id,
                cls.payment_status.in_(OPEN_STATUSES),
            )
        )
        return result.scalars().first()

    @classmethod
    async def get_overdue(
        cls, db_session: AsyncSession, now: datetime
    ) -> Sequence["Enrollment"]:
        """Marathon enrollments whose monthly payment is due and not received."""
        result = await db_session.execute(
            select(cls)
            .where(
                cls.offering_type == OfferingType.MARATHON,
                cls.payment_status.in_((PaymentStatus.ACTIVE, PaymentStatus.PENDING)),
                cls.monthly_payment_received == False,
                cls.next_payment_due.is_not(None),
                cls.next_payment_due <= now,
            )
            .order_by(cls.next_payment_due)
        )
        return result.scalars().all()

    @classmethod
    async def get_unpaid_for_period(
        cls, db_session: AsyncSession, period_start: datetime, period_end: datetime
    ) -> Sequence["Enrollment"]:
        """
        Active Marathon enrollments without a completed payment dated in
        [period_start, period_end).
        """
        paid = (
            select(PaymentHistoryEntry.id)
            .where(
                PaymentHistoryEntry.enrollment_id == cls.id,
                PaymentHistoryEntry.status == PaymentHistoryStatus.COMPLETED,
                PaymentHistoryEntry.paid_at >= period_start,
                PaymentHistoryEntry.paid_at < period_end,
            )
            .exists()
        )
        result = await db_session.execute(
            select(cls).where(
                cls.offering_type == OfferingType.MARATHON,
                cls.payment_status == PaymentStatus.ACTIVE,
                ~paid,
            )
        )
        return result.scalars().all()


OPEN_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.ACTIVE,
    PaymentStatus.COMPLETED,
    PaymentStatus.SUSPENDED,
)


class PaymentHistoryEntry(Base):
    """One row of an enrollment's append-only payment history."""

    __tablename__ = "payment_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    enrollment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[PaymentHistoryStatus] = mapped_column(
        Enum(PaymentHistoryStatus, values_callable=_enum_values), nullable=False
    )
    processor: Mapped[PaymentProcessor] = mapped_column(
        Enum(PaymentProcessor, values_callable=_enum_values), nullable=False
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    enrollment: Mapped["Enrollment"] = relationship(
        "Enrollment", back_populates="payment_history"
    )

    @classmethod
    async def get_for_user(
        cls, db_session: AsyncSession, user_id: str
    ) -> Sequence["PaymentHistoryEntry"]:
        """Payments on enrollments the user pays for or attends, newest first."""
        result = await db_session.execute(
            select(cls)
            .join(Enrollment, Enrollment.id == cls.enrollment_id)
            .options(selectinload(cls.enrollment))
            .where(or_(Enrollment.parent_id == user_id, Enrollment.student_id == user_id))
            .order_by(cls.paid_at.desc())
        )
        return result.scalars().all()
