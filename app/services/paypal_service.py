"""PayPal REST API client used as a payment gateway."""

import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.enrollment import PaymentProcessor
from app.services.payment_gateway import (
    BillableItem,
    CardDetails,
    ChargeResult,
    PaymentGateway,
    SubscriptionResult,
)
from core.config import config as settings
from core.exceptions.base import PaymentFailedException
from core.logging import get_logger

logger = get_logger(__name__)

SUBSCRIPTION_ACTIVE = "ACTIVE"
SUBSCRIPTION_APPROVAL_PENDING = "APPROVAL_PENDING"
SUBSCRIPTION_ENDED = ("CANCELLED", "EXPIRED")
ORDER_COMPLETED = "COMPLETED"
ORDER_APPROVED = "APPROVED"
ORDER_OPEN = ("CREATED", "SAVED", "PAYER_ACTION_REQUIRED")


def _approval_link(links: List[Dict[str, Any]]) -> Optional[str]:
    for link in links or []:
        if link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def _money(amount: Decimal) -> str:
    return f"{Decimal(str(amount)):.2f}"


class PayPalService(PaymentGateway):
    """
    PayPal adapter.

    PayPal has no stored customers or card vaulting here: the payer approves each
    subscription or order on PayPal and comes back through the success/cancel
    return URLs. Charges are therefore returned unconfirmed, with an approval URL.
    """

    processor = PaymentProcessor.PAYPAL

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.paypal_base_url
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        )
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send an authenticated request and return the decoded body."""
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                headers = {
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                }
                if request_id:
                    headers["PayPal-Request-Id"] = request_id
                response = await client.request(
                    method, path, json=json, params=params, headers=headers
                )
                response.raise_for_status()
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.error(f"PayPal request failed ({action}): {e!r}")
            raise PaymentFailedException(
                message="Payment provider is unreachable, please try again",
                retryable=True,
                processor=PaymentProcessor.PAYPAL.value,
                data={"detail": repr(e)},
            ) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                f"PayPal API error ({action}): {e.response.status_code} {e.response.text}"
            )
            raise PaymentFailedException(
                message=f"PayPal could not {action}",
                retryable=e.response.status_code >= 500,
                processor=PaymentProcessor.PAYPAL.value,
                data={"detail": e.response.text, "status_code": e.response.status_code},
            ) from e

        if not response.content:
            return {}
        return response.json()

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        response.raise_for_status()
        return response.json()["access_token"]

    # ============== Customers ==============

    async def create_customer(self, email: str, name: str) -> str:
        # PayPal identifies the payer at approval time
        return email

    async def is_already_attached(self, customer_id: str, payment_method_id: str) -> bool:
        return True

    async def attach_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> Optional[CardDetails]:
        return None

    # ============== Catalog ==============

    async def ensure_product(self, db_session: AsyncSession, item: BillableItem) -> str:
        if item.paypal_product_id:
            return item.paypal_product_id
        body = await self._request(
            "POST",
            "/v1/catalogs/products",
            "create the product",
            json={
                "name": item.name,
                "description": item.description or item.name,
                "type": "DIGITAL",
                "category": "EDUCATIONAL_AND_TEXTBOOKS",
            },
            request_id=f"product-{item.id}",
        )
        logger.info(f"Created PayPal product {body['id']} for {item.name}")
        item.paypal_product_id = body["id"]
        await db_session.flush()
        return body["id"]

    async def find_or_create_plan(
        self, product_id: str, monthly_amount: Decimal, name: Optional[str] = None
    ) -> str:
        """Monthly billing plan for a product at a given price, reused when one exists."""
        body = await self._request(
            "GET",
            "/v1/billing/plans",
            "list billing plans",
            params={"product_id": product_id, "page_size": 20},
        )
        wanted = _money(monthly_amount)
        for plan in body.get("plans", []):
            if plan.get("status", "ACTIVE") != "ACTIVE":
                continue
            plan_detail = await self._request(
                "GET", f"/v1/billing/plans/{plan['id']}", "read the billing plan"
            )
            for cycle in plan_detail.get("billing_cycles", []):
                price = cycle.get("pricing_scheme", {}).get("fixed_price", {})
                if price.get("value") and _money(Decimal(price["value"])) == wanted:
                    return plan["id"]

        created = await self._request(
            "POST",
            "/v1/billing/plans",
            "create the billing plan",
            json={
                "product_id": product_id,
                "name": f"{name or product_id} - Monthly {wanted}",
                "billing_cycles": [
                    {
                        "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        "total_cycles": 0,
                        "pricing_scheme": {
                            "fixed_price": {"value": wanted, "currency_code": "USD"}
                        },
                    }
                ],
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "setup_fee_failure_action": "CANCEL",
                    "payment_failure_threshold": 1,
                },
            },
            request_id=f"plan-{product_id}-{wanted}",
        )
        logger.info(f"Created PayPal plan {created['id']} for product {product_id}")
        return created["id"]

    def _application_context(self, user_action: str, return_url, cancel_url) -> Dict[str, Any]:
        return {
            "brand_name": settings.BUSINESS_NAME,
            "shipping_preference": "NO_SHIPPING",
            "user_action": user_action,
            "return_url": return_url or f"{settings.FRONTEND_URL}/enrollments/success",
            "cancel_url": cancel_url or f"{settings.FRONTEND_URL}/enrollments/cancel",
        }

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
        """Create a checkout order the payer must approve."""
        body = await self._request(
            "POST",
            "/v2/checkout/orders",
            "create the order",
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "amount": {"currency_code": "USD", "value": _money(amount)},
                        "description": description or "Program payment",
                        "reference_id": product_ref,
                    }
                ],
                "application_context": self._application_context(
                    "PAY_NOW", return_url, cancel_url
                ),
            },
            request_id=f"order-{product_ref}-{int(time.time() * 1000)}",
        )
        logger.info(f"Created PayPal order {body['id']} ({body.get('status')})")
        return ChargeResult(
            transaction_id=body["id"],
            confirmed=body.get("status") == ORDER_COMPLETED,
            status=body.get("status", "CREATED"),
            approval_url=_approval_link(body.get("links", [])),
        )

    async def resume_checkout(
        self, reference: str, subscription: bool
    ) -> Optional[Union[ChargeResult, SubscriptionResult]]:
        """
        Reuse an order or subscription the payer has not finished with.

        An order still awaiting approval keeps its approval link; an approved one
        is captured. Expired or ended checkouts return None.
        """
        try:
            if subscription:
                body = await self.get_subscription(reference)
            else:
                body = await self.get_order(reference)
        except PaymentFailedException as e:
            if e.data.get("status_code") == 404:
                return None
            raise

        status = body.get("status")
        if subscription:
            if status not in (SUBSCRIPTION_APPROVAL_PENDING, "APPROVED", SUBSCRIPTION_ACTIVE):
                return None
            return SubscriptionResult(
                subscription_id=reference,
                confirmed=status == SUBSCRIPTION_ACTIVE,
                status=status,
                approval_url=_approval_link(body.get("links", [])),
            )

        if status == ORDER_APPROVED:
            body = await self.capture_order(reference)
            status = body.get("status")
        if status not in ORDER_OPEN + (ORDER_COMPLETED,):
            return None
        return ChargeResult(
            transaction_id=reference,
            confirmed=status == ORDER_COMPLETED,
            status=status,
            approval_url=_approval_link(body.get("links", [])),
        )

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v2/checkout/orders/{order_id}", "read the order")

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """Capture an approved order unless it already is."""
        order = await self.get_order(order_id)
        if order.get("status") == ORDER_COMPLETED:
            return order
        captured = await self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            "capture the order",
            request_id=f"capture-{order_id}",
        )
        logger.info(f"Captured PayPal order {order_id} ({captured.get('status')})")
        return captured

    async def refund(self, transaction_id: str) -> None:
        """Refund every capture of a completed order."""
        order = await self.get_order(transaction_id)
        for unit in order.get("purchase_units", []):
            for capture in unit.get("payments", {}).get("captures", []):
                await self._request(
                    "POST",
                    f"/v2/payments/captures/{capture['id']}/refund",
                    "refund the payment",
                    json={},
                    request_id=f"refund-{capture['id']}",
                )
                logger.info(f"Refunded PayPal capture {capture['id']}")

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
        """Create a subscription awaiting payer approval."""
        plan_id = await self.find_or_create_plan(product_ref, monthly_amount, description)
        payload: Dict[str, Any] = {
            "plan_id": plan_id,
            "application_context": self._application_context(
                "SUBSCRIBE_NOW", return_url, cancel_url
            ),
        }
        if customer_id and "@" in customer_id:
            payload["subscriber"] = {"email_address": customer_id}
        if initial_amount and Decimal(str(initial_amount)) > 0:
            payload["plan"] = {
                "payment_preferences": {
                    "setup_fee": {"value": _money(initial_amount), "currency_code": "USD"},
                    "setup_fee_failure_action": "CANCEL",
                }
            }
        if trial_end:
            payload["start_time"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(trial_end))

        body = await self._request(
            "POST",
            "/v1/billing/subscriptions",
            "create the subscription",
            json=payload,
            request_id=f"sub-{plan_id}-{int(time.time() * 1000)}",
        )
        logger.info(f"Created PayPal subscription {body['id']} ({body.get('status')})")
        return SubscriptionResult(
            subscription_id=body["id"],
            confirmed=body.get("status") == SUBSCRIPTION_ACTIVE,
            status=body.get("status", SUBSCRIPTION_APPROVAL_PENDING),
            approval_url=_approval_link(body.get("links", [])),
        )

    async def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET", f"/v1/billing/subscriptions/{subscription_id}", "read the subscription"
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        """
        Cancel a subscription that can still bill.

        Ended subscriptions need nothing. PayPal refuses to cancel one still
        awaiting approval; it stays unbillable until approved, and the success
        return cancels it then.
        """
        subscription = await self.get_subscription(subscription_id)
        status = subscription.get("status")
        if status in SUBSCRIPTION_ENDED:
            return
        if status == SUBSCRIPTION_APPROVAL_PENDING:
            logger.info(f"PayPal subscription {subscription_id} was never approved; nothing to cancel")
            return
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            "cancel the subscription",
            json={"reason": "Enrollment cancelled"},
        )
        logger.info(f"Cancelled PayPal subscription {subscription_id}")
