"""Payment method and transaction history schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from app.models.enrollment import PaymentHistoryStatus, PaymentProcessor
from app.schemas.base import BaseSchema


class PaymentMethodResponse(BaseSchema):
    """Saved card of a payer."""

    id: str
    stripe_payment_method_id: str
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool
    created_at: datetime


class PaymentMethodListResponse(BaseSchema):
    items: List[PaymentMethodResponse]
    default_payment_method_id: Optional[str] = None


class AttachPaymentMethodRequest(BaseSchema):
    payment_method_id: str
    set_as_default: bool = False


class WebhookResponse(BaseSchema):
    """Stripe webhook acknowledgement."""

    received: bool = True
    event_type: Optional[str] = None
    handled: bool = False


class TransactionResponse(BaseSchema):
    """One payment on an enrollment, as shown in a payer's history."""

    id: str
    enrollment_id: str
    program_id: str
    program_name: Optional[str] = None
    student_id: str
    amount: Decimal
    paid_at: datetime
    status: PaymentHistoryStatus
    processor: PaymentProcessor
    transaction_id: Optional[str] = None
