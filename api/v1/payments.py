"""Payment endpoints: PayPal return URLs, Stripe webhooks, saved cards and history."""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_parent_or_admin, get_gateways
from app.models.enrollment import PaymentHistoryEntry, PaymentMethodType
from app.models.payment import PaymentMethod
from app.models.user import User
from app.schemas.payment import (
    AttachPaymentMethodRequest,
    PaymentMethodListResponse,
    PaymentMethodResponse,
    TransactionResponse,
    WebhookResponse,
)
from app.services.payment_gateway import PaymentGateway
from app.services.policy import Action, ensure_access
from app.services.stripe_service import StripeService
from app.services.subscription_service import SubscriptionService
from core.config import config
from core.db import get_db
from core.exceptions.base import BadRequestException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _dashboard_redirect(status: str, enrollment_id: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{config.FRONTEND_URL}/dashboard?payment={status}&enrollment={enrollment_id}",
        status_code=303,
    )


# ============== PayPal ==============


@router.get("/paypal/success")
async def paypal_success(
    id: str,
    db_session: AsyncSession = Depends(get_db),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> RedirectResponse:
    """
    PayPal return URL after the payer approved.

    Verifies the subscription (or captures the order) and sends the payer back
    to the dashboard.
    """
    logger.info(f"PayPal success return for enrollment: {id}")
    enrollment = await SubscriptionService(db_session, gateways).handle_paypal_success(id)
    return _dashboard_redirect(enrollment.payment_status.value, enrollment.id)


@router.get("/paypal/cancel")
async def paypal_cancel(
    id: str,
    db_session: AsyncSession = Depends(get_db),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> RedirectResponse:
    """PayPal return URL after the payer backed out."""
    logger.info(f"PayPal cancel return for enrollment: {id}")
    enrollment = await SubscriptionService(db_session, gateways).handle_paypal_cancel(id)
    return _dashboard_redirect(enrollment.payment_status.value, enrollment.id)


# ============== Stripe Webhooks ==============


def _paid_at(invoice: dict) -> Optional[datetime]:
    paid_at = (invoice.get("status_transitions") or {}).get("paid_at")
    if not paid_at:
        return None
    return datetime.fromtimestamp(paid_at, tz=timezone.utc)


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db_session: AsyncSession = Depends(get_db),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> WebhookResponse:
    """
    Handle Stripe webhook events for Marathon subscriptions.

    Events already recorded under the same transaction id are acknowledged
    without changes.
    """
    payload = await request.body()

    try:
        event = StripeService.construct_event(payload, stripe_signature)
    except ValueError:
        raise BadRequestException(message="Invalid webhook payload")
    except stripe.SignatureVerificationError:
        raise BadRequestException(message="Invalid webhook signature")

    event_type = event["type"]
    data = event["data"]["object"]
    logger.info(f"Received Stripe webhook: {event_type}")

    subscriptions = SubscriptionService(db_session, gateways)
    handled = True
    if event_type == "invoice.paid":
        await subscriptions.record_invoice_paid(
            data["subscription"],
            StripeService.cents_to_dollars(data["amount_paid"]),
            data["id"],
            paid_at=_paid_at(data),
        )
    elif event_type == "invoice.payment_failed":
        await subscriptions.record_invoice_failed(
            data["subscription"],
            StripeService.cents_to_dollars(data["amount_due"]),
            data["id"],
        )
    elif event_type == "customer.subscription.deleted":
        await subscriptions.record_subscription_ended(data["id"])
    else:
        handled = False

    return WebhookResponse(event_type=event_type, handled=handled)


# ============== Payment Methods ==============


@router.get("/methods", response_model=PaymentMethodListResponse)
async def list_payment_methods(
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
) -> PaymentMethodListResponse:
    """List saved cards for the current user, default first."""
    logger.info(f"List payment methods for user: {current_user.id}")
    methods = await PaymentMethod.get_for_user(db_session, current_user.id)
    default = next((m for m in methods if m.is_default), None)
    return PaymentMethodListResponse(
        items=[PaymentMethodResponse.model_validate(m) for m in methods],
        default_payment_method_id=default.stripe_payment_method_id if default else None,
    )


@router.post("/methods", response_model=PaymentMethodResponse, status_code=201)
async def attach_payment_method(
    data: AttachPaymentMethodRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> PaymentMethodResponse:
    """
    Save a Stripe card for the current user.

    The first saved card becomes the default.
    """
    logger.info(f"Attach payment method {data.payment_method_id} for user: {current_user.id}")
    gateway = gateways[PaymentMethodType.CREDIT_CARD]

    if not current_user.stripe_customer_id:
        current_user.stripe_customer_id = await gateway.create_customer(
            current_user.email, current_user.full_name
        )

    card = await gateway.attach_payment_method(
        current_user.stripe_customer_id, data.payment_method_id
    )

    is_first = await PaymentMethod.count_for_user(db_session, current_user.id) == 0

    method = await PaymentMethod.get_by_stripe_id(db_session, data.payment_method_id)
    if method is not None and method.user_id != current_user.id:
        raise BadRequestException(message="Payment method belongs to another account")
    if method is None:
        method = PaymentMethod(
            user_id=current_user.id, stripe_payment_method_id=data.payment_method_id
        )
        db_session.add(method)
    if card is not None:
        method.card_brand = card.brand
        method.last4 = card.last4
        method.exp_month = card.exp_month
        method.exp_year = card.exp_year

    if data.set_as_default or is_first:
        for other in await PaymentMethod.get_for_user(db_session, current_user.id):
            other.is_default = False
        method.is_default = True

    await db_session.commit()
    await db_session.refresh(method)
    logger.info(f"Payment method saved: {method.id}")
    return PaymentMethodResponse.model_validate(method)


@router.delete("/methods/{method_id}")
async def delete_payment_method(
    method_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
) -> dict:
    """Remove a saved card. The next newest card becomes the default."""
    logger.info(f"Delete payment method {method_id} for user: {current_user.id}")
    method = await db_session.get(PaymentMethod, method_id)
    if method is None or method.user_id != current_user.id:
        raise NotFoundException(message="Payment method not found")

    was_default = method.is_default
    await db_session.delete(method)
    await db_session.flush()
    if was_default:
        remaining = await PaymentMethod.get_for_user(db_session, current_user.id)
        if remaining:
            remaining[0].is_default = True
    await db_session.commit()
    return {"message": "Payment method removed successfully"}


# ============== Transaction History ==============


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    user_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
) -> List[TransactionResponse]:
    """
    Payment history of a user, newest first.

    Defaults to the current user. Parents may also look up their students;
    admins any user at their location.
    """
    target = current_user
    if user_id and user_id != current_user.id:
        target = await User.get_by_id(db_session, user_id)
        if target is None:
            raise NotFoundException(message="User not found")
        ensure_access(current_user, target, Action.READ)

    logger.info(f"List transactions for user {target.id} by {current_user.id}")
    entries = await PaymentHistoryEntry.get_for_user(db_session, target.id)
    return [
        TransactionResponse(
            id=entry.id,
            enrollment_id=entry.enrollment_id,
            program_id=entry.enrollment.program_id,
            program_name=entry.enrollment.program.name if entry.enrollment.program else None,
            student_id=entry.enrollment.student_id,
            amount=entry.amount,
            paid_at=entry.paid_at,
            status=entry.status,
            processor=entry.processor,
            transaction_id=entry.transaction_id,
        )
        for entry in entries
    ]
