"""Common contract of the payment processors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import PaymentMethodType, PaymentProcessor
from app.models.program import Plan, Program

BillableItem = Union[Program, Plan]


@dataclass
class ChargeResult:
    """Outcome of a one-time charge."""

    transaction_id: str
    confirmed: bool  # money captured; False while the payer still has to approve
    status: str
    approval_url: Optional[str] = None


@dataclass
class SubscriptionResult:
    """Outcome of creating a monthly subscription."""

    subscription_id: str
    confirmed: bool
    status: str
    latest_transaction_id: Optional[str] = None
    approval_url: Optional[str] = None


@dataclass
class CardDetails:
    payment_method_id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """
    Interchangeable payment backend.

    Provider errors (declines, invalid requests, timeouts, network failures) are
    raised as PaymentFailedException; timeouts and connection errors are
    flagged retryable.
    """

    processor: PaymentProcessor

    @abstractmethod
    async def create_customer(self, email: str, name: str) -> str:
        ...

    @abstractmethod
    async def is_already_attached(self, customer_id: str, payment_method_id: str) -> bool:
        ...

    @abstractmethod
    async def attach_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> Optional[CardDetails]:
        """Attach and make default. A no-op when already attached."""

    @abstractmethod
    async def ensure_product(self, db_session: AsyncSession, item: BillableItem) -> str:
        """Return the provider product id for a program/plan, creating it on first use."""

    @abstractmethod
    async def charge_once(
        self,
        customer_id: Optional[str],
        payment_method_id: Optional[str],
        product_ref: str,
        amount: Decimal,
        description: Optional[str] = None,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> ChargeResult:
        ...

    @abstractmethod
    async def create_subscription(
        self,
        customer_id: Optional[str],
        payment_method_id: Optional[str],
        product_ref: str,
        monthly_amount: Decimal,
        trial_end: Optional[int] = None,
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        description: Optional[str] = None,
        initial_amount: Optional[Decimal] = None,
    ) -> SubscriptionResult:
        """
        ``trial_end`` is a unix timestamp in seconds; monthly billing starts then.
        ``initial_amount`` is collected up front, with the subscription.
        """

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        ...

    @abstractmethod
    async def refund(self, transaction_id: str) -> None:
        """Undo a confirmed one-time charge."""

    async def resume_checkout(
        self, reference: str, subscription: bool
    ) -> Optional[Union[ChargeResult, SubscriptionResult]]:
        """
        State of an earlier checkout that is still open: awaiting the payer's
        approval, or approved but not yet recorded. None when it can no longer
        complete. Providers that never wait on the payer have nothing to resume.
        """
        return None


def dollars_to_cents(amount: Decimal) -> int:
    """Convert a dollar amount to integer cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


def to_unix(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value else None


def get_gateway(
    gateways: Dict[PaymentMethodType, PaymentGateway], method: PaymentMethodType
) -> PaymentGateway:
    return gateways[PaymentMethodType(method)]


def default_gateways() -> Dict[PaymentMethodType, PaymentGateway]:
    """Gateways keyed by the payment method a family picks at checkout."""
    from app.services.paypal_service import PayPalService
    from app.services.stripe_service import StripeService

    return {
        PaymentMethodType.CREDIT_CARD: StripeService(),
        PaymentMethodType.PAYPAL: PayPalService(),
    }
