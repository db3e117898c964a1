"""Out-of-band payment events: PayPal return URLs and Stripe webhooks."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import (
    Enrollment,
    PaymentHistoryStatus,
    PaymentMethodType,
    PaymentProcessor,
    PaymentStatus,
)
from app.services.capacity_service import CapacityService
from app.services.enrollment_orchestrator import release_seats
from app.services.payment_gateway import PaymentGateway
from app.services.paypal_service import ORDER_COMPLETED, SUBSCRIPTION_ACTIVE
from app.utils.dates import at_midnight_utc, first_of_next_month, utcnow
from core.db.session import transaction
from core.exceptions.base import (
    BadRequestException,
    NotFoundException,
    PaymentFailedException,
)
from core.logging import get_logger

logger = get_logger(__name__)


class SubscriptionService:
    """Applies provider-side payment outcomes to enrollments. Every handler is idempotent."""

    def __init__(
        self,
        db_session: AsyncSession,
        gateways: Dict[PaymentMethodType, PaymentGateway],
    ):
        self.db_session = db_session
        self.gateways = gateways

    @property
    def paypal(self):
        return self.gateways[PaymentMethodType.PAYPAL]

    async def _load_paypal_enrollment(self, enrollment_id: str) -> Enrollment:
        enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
        if enrollment is None:
            raise NotFoundException(message="Enrollment not found")
        if enrollment.payment_method != PaymentMethodType.PAYPAL:
            raise BadRequestException(message="Enrollment is not paid with PayPal")
        return enrollment

    # ============== PayPal return URLs ==============

    async def handle_paypal_success(self, enrollment_id: str) -> Enrollment:
        """
        The payer approved on PayPal. Marathon: the subscription must now be
        ACTIVE. Sprint: the order is captured.

        Only a pending checkout is settled. A cancelled enrollment holds no
        seats, so its order is never captured and a subscription the payer
        approved anyway is cancelled at PayPal.
        """
        enrollment = await self._load_paypal_enrollment(enrollment_id)
        now = utcnow()

        if enrollment.payment_status == PaymentStatus.CANCELLED:
            if enrollment.is_marathon and enrollment.subscription_id:
                await self.paypal.cancel_subscription(enrollment.subscription_id)
            logger.warning(f"PayPal approval returned for cancelled enrollment {enrollment.id}")
            return enrollment
        settled = PaymentStatus.ACTIVE if enrollment.is_marathon else PaymentStatus.COMPLETED
        if enrollment.payment_status == settled:
            return enrollment
        if enrollment.payment_status != PaymentStatus.PENDING:
            raise BadRequestException(
                message=f"Enrollment has no pending PayPal checkout ({enrollment.payment_status.value})"
            )

        if enrollment.is_marathon:
            subscription = await self.paypal.get_subscription(enrollment.subscription_id)
            status = subscription.get("status")
            if status != SUBSCRIPTION_ACTIVE:
                raise PaymentFailedException(
                    message="PayPal subscription is not active yet",
                    processor=PaymentProcessor.PAYPAL.value,
                    data={"status": status},
                )
            async with transaction(self.db_session):
                enrollment.payment_status = PaymentStatus.ACTIVE
                enrollment.record_payment(
                    enrollment.total_amount, now, PaymentProcessor.PAYPAL, enrollment.subscription_id
                )
            logger.info(f"PayPal subscription {enrollment.subscription_id} active")
            return enrollment

        order = await self.paypal.capture_order(enrollment.payment_transaction_id)
        if order.get("status") != ORDER_COMPLETED:
            raise PaymentFailedException(
                message="PayPal payment was not completed",
                processor=PaymentProcessor.PAYPAL.value,
                data={"status": order.get("status")},
            )
        try:
            async with transaction(self.db_session):
                enrollment.payment_status = PaymentStatus.COMPLETED
                enrollment.payment_date = now
                enrollment.record_payment(
                    enrollment.total_amount,
                    now,
                    PaymentProcessor.PAYPAL,
                    enrollment.payment_transaction_id,
                )
        except Exception:
            await self.paypal.refund(enrollment.payment_transaction_id)
            raise
        logger.info(f"PayPal order {enrollment.payment_transaction_id} captured")
        return enrollment

    async def handle_paypal_cancel(self, enrollment_id: str) -> Enrollment:
        """The payer backed out on PayPal: cancel a still-pending enrollment."""
        enrollment = await self._load_paypal_enrollment(enrollment_id)
        if enrollment.payment_status != PaymentStatus.PENDING:
            return enrollment
        if enrollment.is_marathon and enrollment.subscription_id:
            await self.paypal.cancel_subscription(enrollment.subscription_id)
        async with transaction(self.db_session):
            enrollment.payment_status = PaymentStatus.CANCELLED
            await release_seats(CapacityService(self.db_session), enrollment)
        logger.info(f"PayPal checkout cancelled for enrollment {enrollment.id}")
        return enrollment

    # ============== Stripe webhooks ==============

    async def record_invoice_paid(
        self,
        subscription_id: str,
        amount: Decimal,
        transaction_id: str,
        paid_at: Optional[datetime] = None,
    ) -> Optional[Enrollment]:
        """
        A monthly invoice was paid: log it, move the next due date to the
        following month and lift a suspension.
        """
        enrollment = await self._by_subscription(subscription_id)
        if enrollment is None or self._already_recorded(enrollment, transaction_id):
            return enrollment
        paid_at = paid_at or utcnow()
        async with transaction(self.db_session):
            enrollment.record_payment(amount, paid_at, PaymentProcessor.STRIPE, transaction_id)
            enrollment.next_payment_due = at_midnight_utc(first_of_next_month(paid_at.date()))
            enrollment.monthly_payment_received = False
            if enrollment.payment_status in (PaymentStatus.PENDING, PaymentStatus.SUSPENDED):
                enrollment.payment_status = PaymentStatus.ACTIVE
        logger.info(f"Invoice {transaction_id} paid for enrollment {enrollment.id}")
        return enrollment

    async def record_invoice_failed(
        self, subscription_id: str, amount: Decimal, transaction_id: str
    ) -> Optional[Enrollment]:
        enrollment = await self._by_subscription(subscription_id)
        if enrollment is None or self._already_recorded(enrollment, transaction_id):
            return enrollment
        async with transaction(self.db_session):
            enrollment.record_payment(
                amount,
                utcnow(),
                PaymentProcessor.STRIPE,
                transaction_id,
                status=PaymentHistoryStatus.FAILED,
            )
        logger.warning(f"Invoice {transaction_id} failed for enrollment {enrollment.id}")
        return enrollment

    async def record_subscription_ended(self, subscription_id: str) -> Optional[Enrollment]:
        enrollment = await self._by_subscription(subscription_id)
        if enrollment is None or enrollment.payment_status == PaymentStatus.CANCELLED:
            return enrollment
        async with transaction(self.db_session):
            enrollment.payment_status = PaymentStatus.CANCELLED
            await release_seats(CapacityService(self.db_session), enrollment)
        logger.info(f"Subscription {subscription_id} ended; enrollment {enrollment.id} cancelled")
        return enrollment

    async def _by_subscription(self, subscription_id: str) -> Optional[Enrollment]:
        enrollment = await Enrollment.get_by_subscription_id(self.db_session, subscription_id)
        if enrollment is None:
            logger.warning(f"No enrollment found for subscription {subscription_id}")
            return None
        # reload with history for the duplicate check
        return await Enrollment.get_by_id(self.db_session, enrollment.id)

    @staticmethod
    def _already_recorded(enrollment: Enrollment, transaction_id: str) -> bool:
        return any(entry.transaction_id == transaction_id for entry in enrollment.payment_history)
