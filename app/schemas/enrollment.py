"""Enrollment-related schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from app.models.enrollment import (
    PaymentHistoryStatus,
    PaymentMethodType,
    PaymentProcessor,
    PaymentStatus,
)
from app.models.program import OfferingType
from app.schemas.base import BaseSchema


class EnrollmentCreate(BaseSchema):
    """Direct enrollment by a parent, admin or owner."""

    student_id: str
    program_id: str
    location_id: str
    payment_method: PaymentMethodType
    enrollment_date: date
    parent_id: Optional[str] = None
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    class_session_ids: List[str] = Field(default_factory=list, max_length=2)
    discount_code: Optional[str] = None
    payment_method_id: Optional[str] = None
    notes: Optional[str] = None


class EnrollmentUpdate(BaseSchema):
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None
    monthly_payment_received: Optional[bool] = None
    next_payment_due: Optional[datetime] = None


class ProcessPaymentRequest(BaseSchema):
    payment_method_id: Optional[str] = None


class PaymentHistoryResponse(BaseSchema):
    id: str
    amount: Decimal
    paid_at: datetime
    status: PaymentHistoryStatus
    processor: PaymentProcessor
    transaction_id: Optional[str] = None


class EnrollmentResponse(BaseSchema):
    """Enrollment response."""

    id: str
    student_id: str
    parent_id: Optional[str] = None
    program_id: str
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    location_id: Optional[str] = None
    registration_id: Optional[str] = None
    offering_type: OfferingType
    payment_method: PaymentMethodType
    payment_processor: Optional[PaymentProcessor] = None
    payment_status: PaymentStatus
    enrollment_date: date
    base_amount: Decimal
    discount_code: Optional[str] = None
    discount_percent: Optional[int] = None
    discount_amount: Decimal
    admin_fee: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    monthly_amount: Optional[Decimal] = None
    subscription_id: Optional[str] = None
    next_payment_due: Optional[datetime] = None
    monthly_payment_received: bool
    payment_date: Optional[datetime] = None
    payment_transaction_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    payment_history: List[PaymentHistoryResponse] = Field(default_factory=list)


class EnrollmentCheckoutResponse(BaseSchema):
    """A new enrollment plus the payer approval link for PayPal checkouts."""

    enrollment: EnrollmentResponse
    approval_url: Optional[str] = None


class EnrollmentListResponse(BaseSchema):
    """List of enrollments."""

    items: List[EnrollmentResponse]
    total: int
