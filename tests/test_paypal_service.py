"""Tests for the PayPal REST adapter against a mocked transport."""

import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from app.services.paypal_service import PayPalService
from core.exceptions.base import PaymentFailedException


class FakePayPal:
    """Routes requests to canned PayPal responses and records what was sent."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test", "expires_in": 3600})
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        if callable(handler):
            return handler(request)
        return httpx.Response(200, json=handler)

    def sent(self, method: str, path: str) -> list:
        return [r for r in self.requests if r.method == method and r.url.path == path]


def _service(fake) -> PayPalService:
    return PayPalService(
        base_url="https://api-m.sandbox.paypal.com",
        client_id="client",
        client_secret="secret",
        timeout=5,
        transport=httpx.MockTransport(fake),
    )


class TestOrders:
    """Tests for one-time PayPal payments."""

    async def test_charge_creates_order_awaiting_approval(self):
        fake = FakePayPal(
            {
                ("POST", "/v2/checkout/orders"): {
                    "id": "5O190127TN364715T",
                    "status": "CREATED",
                    "links": [
                        {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/x"},
                        {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=5O1"},
                    ],
                }
            }
        )

        result = await _service(fake).charge_once(
            "sam@example.com",
            None,
            "PROD-1",
            Decimal("224.7"),
            description="Intro to Robotics",
            return_url="http://localhost:3000/enrollments/success?id=e1",
        )

        assert result.transaction_id == "5O190127TN364715T"
        assert result.confirmed is False
        assert result.approval_url == "https://www.sandbox.paypal.com/checkoutnow?token=5O1"

        sent = fake.sent("POST", "/v2/checkout/orders")[0]
        body = json.loads(sent.content)
        assert body["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "224.70"}
        assert body["application_context"]["return_url"].endswith("?id=e1")
        assert sent.headers["Authorization"] == "Bearer A21-test"
        assert sent.headers["PayPal-Request-Id"].startswith("order-PROD-1-")

    async def test_capture_skips_completed_order(self):
        fake = FakePayPal(
            {("GET", "/v2/checkout/orders/O-1"): {"id": "O-1", "status": "COMPLETED"}}
        )

        order = await _service(fake).capture_order("O-1")

        assert order["status"] == "COMPLETED"
        assert fake.sent("POST", "/v2/checkout/orders/O-1/capture") == []

    async def test_capture_approved_order(self):
        fake = FakePayPal(
            {
                ("GET", "/v2/checkout/orders/O-1"): {"id": "O-1", "status": "APPROVED"},
                ("POST", "/v2/checkout/orders/O-1/capture"): {"id": "O-1", "status": "COMPLETED"},
            }
        )

        order = await _service(fake).capture_order("O-1")

        assert order["status"] == "COMPLETED"
        assert len(fake.sent("POST", "/v2/checkout/orders/O-1/capture")) == 1

    async def test_resume_order_awaiting_approval(self):
        fake = FakePayPal(
            {
                ("GET", "/v2/checkout/orders/O-1"): {
                    "id": "O-1",
                    "status": "CREATED",
                    "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=O-1"}],
                }
            }
        )

        result = await _service(fake).resume_checkout("O-1", subscription=False)

        assert result.transaction_id == "O-1"
        assert result.confirmed is False
        assert result.approval_url == "https://www.sandbox.paypal.com/checkoutnow?token=O-1"

    async def test_resume_captures_approved_order(self):
        fake = FakePayPal(
            {
                ("GET", "/v2/checkout/orders/O-1"): {"id": "O-1", "status": "APPROVED"},
                ("POST", "/v2/checkout/orders/O-1/capture"): {"id": "O-1", "status": "COMPLETED"},
            }
        )

        result = await _service(fake).resume_checkout("O-1", subscription=False)

        assert result.confirmed is True
        assert len(fake.sent("POST", "/v2/checkout/orders/O-1/capture")) == 1

    async def test_resume_expired_order(self):
        fake = FakePayPal({})

        assert await _service(fake).resume_checkout("O-GONE", subscription=False) is None

    async def test_refund_every_capture(self):
        fake = FakePayPal(
            {
                ("GET", "/v2/checkout/orders/O-1"): {
                    "id": "O-1",
                    "purchase_units": [
                        {"payments": {"captures": [{"id": "C-1"}, {"id": "C-2"}]}}
                    ],
                },
                ("POST", "/v2/payments/captures/C-1/refund"): {"status": "COMPLETED"},
                ("POST", "/v2/payments/captures/C-2/refund"): {"status": "COMPLETED"},
            }
        )

        await _service(fake).refund("O-1")

        assert len(fake.sent("POST", "/v2/payments/captures/C-1/refund")) == 1
        assert len(fake.sent("POST", "/v2/payments/captures/C-2/refund")) == 1


class TestSubscriptions:
    """Tests for PayPal billing plans and subscriptions."""

    async def test_existing_plan_is_reused(self):
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/plans"): {"plans": [{"id": "P-1", "status": "ACTIVE"}]},
                ("GET", "/v1/billing/plans/P-1"): {
                    "billing_cycles": [
                        {"pricing_scheme": {"fixed_price": {"value": "160.0", "currency_code": "USD"}}}
                    ]
                },
            }
        )

        plan_id = await _service(fake).find_or_create_plan("PROD-1", Decimal("160.00"))

        assert plan_id == "P-1"
        assert fake.sent("POST", "/v1/billing/plans") == []

    async def test_subscription_with_setup_fee(self):
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/plans"): {"plans": []},
                ("POST", "/v1/billing/plans"): {"id": "P-NEW"},
                ("POST", "/v1/billing/subscriptions"): {
                    "id": "I-SUB",
                    "status": "APPROVAL_PENDING",
                    "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/sub"}],
                },
            }
        )

        result = await _service(fake).create_subscription(
            "sam@example.com",
            None,
            "PROD-1",
            Decimal("160.00"),
            initial_amount=Decimal("89.88"),
        )

        assert result.subscription_id == "I-SUB"
        assert result.confirmed is False
        assert result.approval_url == "https://www.sandbox.paypal.com/sub"
        body = json.loads(fake.sent("POST", "/v1/billing/subscriptions")[0].content)
        assert body["plan_id"] == "P-NEW"
        assert body["subscriber"] == {"email_address": "sam@example.com"}
        assert body["plan"]["payment_preferences"]["setup_fee"]["value"] == "89.88"
        plan = json.loads(fake.sent("POST", "/v1/billing/plans")[0].content)
        assert plan["billing_cycles"][0]["pricing_scheme"]["fixed_price"]["value"] == "160.00"

    async def test_cancel_active_subscription(self):
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/subscriptions/I-1"): {"id": "I-1", "status": "ACTIVE"},
                ("POST", "/v1/billing/subscriptions/I-1/cancel"): lambda request: httpx.Response(204),
            }
        )

        await _service(fake).cancel_subscription("I-1")

        sent = fake.sent("POST", "/v1/billing/subscriptions/I-1/cancel")
        assert len(sent) == 1
        assert json.loads(sent[0].content) == {"reason": "Enrollment cancelled"}

    @pytest.mark.parametrize("status", ["APPROVAL_PENDING", "CANCELLED", "EXPIRED"])
    async def test_cancel_skips_unbillable_subscription(self, status):
        fake = FakePayPal(
            {("GET", "/v1/billing/subscriptions/I-1"): {"id": "I-1", "status": status}}
        )

        await _service(fake).cancel_subscription("I-1")

        assert fake.sent("POST", "/v1/billing/subscriptions/I-1/cancel") == []

    async def test_resume_subscription(self):
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/subscriptions/I-1"): {
                    "id": "I-1",
                    "status": "APPROVAL_PENDING",
                    "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/sub"}],
                },
                ("GET", "/v1/billing/subscriptions/I-2"): {"id": "I-2", "status": "CANCELLED"},
            }
        )
        service = _service(fake)

        pending = await service.resume_checkout("I-1", subscription=True)
        assert pending.subscription_id == "I-1"
        assert pending.confirmed is False
        assert pending.approval_url == "https://www.sandbox.paypal.com/sub"
        assert await service.resume_checkout("I-2", subscription=True) is None

    async def test_product_created_once(self):
        fake = FakePayPal({("POST", "/v1/catalogs/products"): {"id": "PROD-NEW"}})
        program = SimpleNamespace(
            id="prog-1", name="Python Club", description=None, paypal_product_id=None
        )
        db_session = AsyncMock()
        service = _service(fake)

        assert await service.ensure_product(db_session, program) == "PROD-NEW"
        assert await service.ensure_product(db_session, program) == "PROD-NEW"

        assert program.paypal_product_id == "PROD-NEW"
        assert len(fake.sent("POST", "/v1/catalogs/products")) == 1
        db_session.flush.assert_awaited_once()


class TestErrors:
    """Tests for mapping transport and API errors."""

    async def test_timeout_is_retryable(self):
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fake = FakePayPal({("GET", "/v1/billing/subscriptions/I-1"): timeout})

        with pytest.raises(PaymentFailedException) as exc_info:
            await _service(fake).get_subscription("I-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.data["processor"] == "paypal"

    async def test_connection_error_is_retryable(self):
        def refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake = FakePayPal(
            {
                ("GET", "/v1/billing/subscriptions/I-1"): {"id": "I-1", "status": "ACTIVE"},
                ("POST", "/v1/billing/subscriptions/I-1/cancel"): refused,
            }
        )

        with pytest.raises(PaymentFailedException) as exc_info:
            await _service(fake).cancel_subscription("I-1")

        assert exc_info.value.retryable is True

    async def test_server_error_is_retryable(self):
        fake = FakePayPal(
            {
                ("GET", "/v2/checkout/orders/O-1"): lambda request: httpx.Response(
                    503, json={"name": "SERVICE_UNAVAILABLE"}
                )
            }
        )

        with pytest.raises(PaymentFailedException) as exc_info:
            await _service(fake).get_order("O-1")

        assert exc_info.value.retryable is True
        assert exc_info.value.data["status_code"] == 503

    async def test_client_error_is_not_retryable(self):
        fake = FakePayPal(
            {
                ("POST", "/v2/checkout/orders"): lambda request: httpx.Response(
                    422, json={"name": "UNPROCESSABLE_ENTITY"}
                )
            }
        )

        with pytest.raises(PaymentFailedException) as exc_info:
            await _service(fake).charge_once(None, None, "PROD-1", Decimal("10"))

        assert exc_info.value.retryable is False
        assert exc_info.value.message == "PayPal could not create the order"

    async def test_failed_token_request(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_client"})

        service = PayPalService(
            base_url="https://api-m.sandbox.paypal.com",
            client_id="bad",
            client_secret="bad",
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(PaymentFailedException) as exc_info:
            await service.get_subscription("I-1")

        assert exc_info.value.retryable is False
