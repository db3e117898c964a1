"""Stripe payment service for handling payments."""

from decimal import Decimal
from typing import Optional

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import PaymentProcessor
from app.services.payment_gateway import (
    BillableItem,
    CardDetails,
    ChargeResult,
    PaymentGateway,
    SubscriptionResult,
    dollars_to_cents,
)
from core.config import config as settings
from core.exceptions.base import PaymentFailedException
from core.logging import get_logger

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = settings.PAYMENT_GATEWAY_MAX_RETRIES
stripe.default_http_client = stripe.RequestsClient(
    timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
)

CONFIRMED_SUBSCRIPTION_STATUSES = ("active", "trialing")
CONFIRMED_INTENT_STATUSES = ("succeeded", "processing")


def _payment_failed(error: stripe.StripeError, action: str) -> PaymentFailedException:
    """Translate a Stripe error. Network trouble and rate limits are retryable."""
    retryable = isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError))
    if isinstance(error, stripe.CardError) and error.user_message:
        message = error.user_message
    elif retryable:
        message = "Payment provider is unreachable, please try again"
    else:
        message = f"Stripe could not {action}"
    return PaymentFailedException(
        message=message,
        retryable=retryable,
        processor=PaymentProcessor.STRIPE.value,
        data={"detail": str(error)},
    )


class StripeService(PaymentGateway):
    """Service for interacting with Stripe API."""

    processor = PaymentProcessor.STRIPE

    # ============== Customer Management ==============

    async def create_customer(self, email: str, name: str) -> str:
        """Create a new Stripe customer."""
        try:
            customer = stripe.Customer.create(email=email, name=name)
            logger.info(f"Created Stripe customer: {customer.id}")
            return customer.id
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise _payment_failed(e, "create the customer") from e

    # ============== Payment Methods ==============

    async def is_already_attached(self, customer_id: str, payment_method_id: str) -> bool:
        try:
            payment_method = stripe.PaymentMethod.retrieve(payment_method_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve payment method {payment_method_id}: {e}")
            raise _payment_failed(e, "read the payment method") from e
        attached_to = payment_method.customer
        if attached_to is not None and not isinstance(attached_to, str):
            attached_to = attached_to.id
        return attached_to == customer_id

    async def attach_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> Optional[CardDetails]:
        """Attach a card to the customer and make it the invoice default."""
        try:
            payment_method = stripe.PaymentMethod.retrieve(payment_method_id)
            if payment_method.type != "card" or not payment_method.card:
                raise PaymentFailedException(
                    message="Invalid payment method",
                    processor=PaymentProcessor.STRIPE.value,
                )

            if not await self.is_already_attached(customer_id, payment_method_id):
                stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
                logger.info(f"Attached payment method {payment_method_id} to {customer_id}")

            stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method_id},
            )
            card = payment_method.card
            return CardDetails(
                payment_method_id=payment_method_id,
                brand=card.brand,
                last4=card.last4,
                exp_month=card.exp_month,
                exp_year=card.exp_year,
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to attach payment method: {e}")
            raise _payment_failed(e, "attach the payment method") from e

    # ============== Products ==============

    async def ensure_product(self, db_session: AsyncSession, item: BillableItem) -> str:
        """Create the Stripe product for a program/plan on first use and cache its id."""
        if item.stripe_product_id:
            return item.stripe_product_id
        try:
            product = stripe.Product.create(
                name=item.name,
                description=item.description or None,
                metadata={"catalog_id": item.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe product for {item.id}: {e}")
            raise _payment_failed(e, "create the product") from e
        logger.info(f"Created Stripe product {product.id} for {item.name}")
        item.stripe_product_id = product.id
        await db_session.flush()
        return product.id

    # ============== One-Time Payments ==============

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
        """Charge a saved card immediately with a confirmed PaymentIntent."""
        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=dollars_to_cents(amount),
                currency="usd",
                customer=customer_id,
                payment_method=payment_method_id,
                confirm=True,
                return_url=return_url or settings.FRONTEND_URL + "/payment/complete",
                description=description or f"One-time program payment for product {product_ref}",
                metadata={"product_id": product_ref},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create PaymentIntent: {e}")
            raise _payment_failed(e, "charge the card") from e

        logger.info(f"Created PaymentIntent: {payment_intent.id} ({payment_intent.status})")
        if payment_intent.status not in CONFIRMED_INTENT_STATUSES:
            raise PaymentFailedException(
                message="The card requires additional authentication",
                processor=PaymentProcessor.STRIPE.value,
                data={"status": payment_intent.status, "transaction_id": payment_intent.id},
            )
        return ChargeResult(
            transaction_id=payment_intent.id,
            confirmed=True,
            status=payment_intent.status,
        )

    async def refund(self, transaction_id: str) -> None:
        try:
            refund = stripe.Refund.create(payment_intent=transaction_id)
            logger.info(f"Refunded PaymentIntent {transaction_id}: {refund.id}")
        except stripe.StripeError as e:
            logger.error(f"Failed to refund {transaction_id}: {e}")
            raise _payment_failed(e, "refund the payment") from e

    # ============== Subscriptions ==============

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
        """Start a monthly subscription billed to the customer's default card.

        ``initial_amount`` goes on the first invoice as a one-off item, so a
        pro-rated first month is billed right away even when the recurring
        price only starts at ``trial_end``.
        """
        params = {
            "customer": customer_id,
            "items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product": product_ref,
                        "unit_amount": dollars_to_cents(monthly_amount),
                        "recurring": {"interval": "month"},
                    },
                }
            ],
            "default_payment_method": payment_method_id,
            "expand": ["latest_invoice"],
        }
        if trial_end:
            params["trial_end"] = trial_end
        if initial_amount and Decimal(str(initial_amount)) > 0:
            params["add_invoice_items"] = [
                {
                    "price_data": {
                        "currency": "usd",
                        "product": product_ref,
                        "unit_amount": dollars_to_cents(initial_amount),
                    },
                }
            ]
        if description:
            params["description"] = description

        try:
            subscription = stripe.Subscription.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Failed to create subscription: {e}")
            raise _payment_failed(e, "start the subscription") from e

        logger.info(f"Created subscription {subscription.id} ({subscription.status})")
        if subscription.status not in CONFIRMED_SUBSCRIPTION_STATUSES:
            # first invoice did not go through; do not leave it dangling
            await self.cancel_subscription(subscription.id)
            raise PaymentFailedException(
                message="The first subscription payment did not go through",
                processor=PaymentProcessor.STRIPE.value,
                data={"status": subscription.status},
            )

        invoice = subscription.latest_invoice
        invoice_id = invoice if isinstance(invoice, str) or invoice is None else invoice.id
        return SubscriptionResult(
            subscription_id=subscription.id,
            confirmed=True,
            status=subscription.status,
            latest_transaction_id=invoice_id,
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription immediately."""
        try:
            stripe.Subscription.cancel(subscription_id)
            logger.info(f"Cancelled subscription: {subscription_id}")
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.warning(f"Subscription {subscription_id} not found at Stripe")
                return
            logger.error(f"Failed to cancel subscription: {e}")
            raise _payment_failed(e, "cancel the subscription") from e
        except stripe.StripeError as e:
            logger.error(f"Failed to cancel subscription: {e}")
            raise _payment_failed(e, "cancel the subscription") from e

    # ============== Webhooks ==============

    @staticmethod
    def construct_event(payload: bytes, sig_header: str) -> stripe.Event:
        """Construct and verify a Stripe webhook event."""
        try:
            return stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise

    @staticmethod
    def cents_to_dollars(amount: int) -> Decimal:
        """Convert cents to dollar amount."""
        return Decimal(amount) / Decimal(100)
