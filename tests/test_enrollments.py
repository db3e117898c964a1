"""Tests for direct enrollment checkout and enrollment management."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.class_session import ClassSession
from app.models.discount import DiscountCode, DiscountUsage
from app.models.enrollment import Enrollment, PaymentMethodType, PaymentStatus
from app.models.location import Location
from app.models.payment import PaymentMethod
from app.models.program import Plan, Program
from app.models.progress import ModuleProgress, ProgramProgress
from app.models.schedule import Schedule
from app.models.user import User
from app.services.catalog_cache import CatalogCache
from app.services.enrollment_orchestrator import (
    EnrollmentOrchestrator,
    EnrollmentRequest,
    EnrollmentState,
    generate_username,
    username_base,
)
from app.services.payment_gateway import ChargeResult, SubscriptionResult
from core.exceptions.base import CapacityUnavailableException, PaymentFailedException

MARATHON_START = date(2027, 2, 15)


def sprint_payload(
    student: User,
    program: Program,
    location: Location,
    sessions=(),
    schedule: Schedule = None,
    **overrides,
) -> dict:
    payload = {
        "student_id": student.id,
        "program_id": program.id,
        "location_id": location.id,
        "payment_method": "credit-card",
        "enrollment_date": "2027-02-01",
        "class_session_ids": [s.id for s in sessions],
        "payment_method_id": "pm_card_visa",
    }
    if schedule is not None:
        payload["schedule_id"] = schedule.id
    payload.update(overrides)
    return payload


def marathon_payload(student: User, program: Program, plan: Plan, location: Location, **overrides) -> dict:
    payload = {
        "student_id": student.id,
        "program_id": program.id,
        "plan_id": plan.id,
        "location_id": location.id,
        "payment_method": "credit-card",
        "enrollment_date": MARATHON_START.isoformat(),
        "payment_method_id": "pm_card_visa",
    }
    payload.update(overrides)
    return payload


async def _count(db_session: AsyncSession, model) -> int:
    result = await db_session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestSprintCheckout:
    """Tests for one-time payment enrollments."""

    async def test_enroll_with_card(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_user: User,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        wednesday_session: ClassSession,
        sprint_schedule: Schedule,
        stripe_gateway,
        email_tasks,
    ):
        """Test that seats, fees, payment and progress land together."""
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                sessions=[monday_session, wednesday_session],
                schedule=sprint_schedule,
            ),
            headers=parent_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["approval_url"] is None
        data = body["enrollment"]
        assert data["payment_status"] == "completed"
        assert data["payment_processor"] == "stripe"
        assert data["offering_type"] == "sprint"
        assert data["parent_id"] == parent_user.id
        assert Decimal(data["base_amount"]) == Decimal("200.00")
        assert Decimal(data["admin_fee"]) == Decimal("10.00")
        assert Decimal(data["tax_amount"]) == Decimal("14.70")
        assert Decimal(data["total_amount"]) == Decimal("224.70")
        assert data["payment_transaction_id"] == "pi_test_123"
        assert data["payment_date"] is not None
        assert data["monthly_amount"] is None
        assert len(data["payment_history"]) == 1
        assert Decimal(data["payment_history"][0]["amount"]) == Decimal("224.70")

        charge = stripe_gateway.charge_once.await_args
        assert charge.args[:4] == (
            "cus_test_123",
            "pm_card_visa",
            "prod_test_123",
            Decimal("224.70"),
        )
        stripe_gateway.create_subscription.assert_not_called()

        for slot in (monday_session, wednesday_session):
            await db_session.refresh(slot)
            assert slot.available_capacity == 9
        await db_session.refresh(sprint_schedule)
        assert sprint_schedule.available_capacity == 4
        assert sprint_schedule.available_demo_capacity == 1

        await db_session.refresh(parent_user)
        assert parent_user.stripe_customer_id == "cus_test_123"
        methods = await PaymentMethod.get_for_user(db_session, parent_user.id)
        assert [(m.last4, m.is_default) for m in methods] == [("4242", True)]

        program_progress = await ProgramProgress.get(db_session, student_user.id, sprint_program.id)
        assert program_progress.enrollment_id == data["id"]
        assert program_progress.total_modules == 2
        modules = await ModuleProgress.get_for_program(db_session, student_user.id, sprint_program.id)
        assert sorted(m.total_topics for m in modules) == [1, 2]

        email_tasks["enrollment"].delay.assert_called_once()
        assert email_tasks["enrollment"].delay.call_args.kwargs["program_name"] == "Intro to Robotics"

    async def test_discount_is_redeemed(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        """Test that the discount applies before admin fee and tax."""
        discount = DiscountCode(
            code="SAVE10",
            percent=10,
            usage=DiscountUsage.MULTIPLE,
            max_uses=5,
            current_uses=0,
            location_id=location_offerings.id,
        )
        db_session.add(discount)
        await db_session.commit()

        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user, sprint_program, location_offerings, discount_code="save10"
            ),
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()["enrollment"]
        assert data["discount_code"] == "SAVE10"
        assert data["discount_percent"] == 10
        assert Decimal(data["discount_amount"]) == Decimal("20.00")
        assert Decimal(data["admin_fee"]) == Decimal("9.00")
        assert Decimal(data["tax_amount"]) == Decimal("13.23")
        assert Decimal(data["total_amount"]) == Decimal("202.23")

        await db_session.refresh(discount)
        assert discount.current_uses == 1

    async def test_fully_discounted_enrollment_skips_gateway(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        stripe_gateway,
    ):
        db_session.add(
            DiscountCode(
                code="FREE100",
                percent=100,
                usage=DiscountUsage.SINGLE,
                max_uses=1,
                current_uses=0,
            )
        )
        await db_session.commit()

        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user, sprint_program, location_offerings, discount_code="FREE100"
            ),
            headers=admin_headers,
        )

        assert response.status_code == 201
        data = response.json()["enrollment"]
        assert data["payment_status"] == "completed"
        assert data["payment_processor"] == "manual"
        assert Decimal(data["total_amount"]) == Decimal("0.00")
        stripe_gateway.charge_once.assert_not_called()

    async def test_paypal_checkout_waits_for_approval(
        self,
        client: AsyncClient,
        parent_user: User,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        paypal_gateway,
        stripe_gateway,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                payment_method="paypal",
                payment_method_id=None,
            ),
            headers=parent_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["approval_url"].startswith("https://www.sandbox.paypal.com/")
        assert body["enrollment"]["payment_status"] == "pending"
        assert body["enrollment"]["payment_processor"] == "paypal"
        assert body["enrollment"]["payment_transaction_id"] == "ORDER-TEST"
        assert body["enrollment"]["payment_history"] == []

        charge = paypal_gateway.charge_once.await_args
        assert charge.args[0] == parent_user.email
        assert charge.args[1] is None
        assert charge.kwargs["return_url"].endswith(f"id={body['enrollment']['id']}")
        stripe_gateway.charge_once.assert_not_called()

    async def test_card_required_for_credit_card(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user, sprint_program, location_offerings, payment_method_id=None
            ),
            headers=parent_headers,
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestMarathonCheckout:
    """Tests for monthly subscription enrollments."""

    async def test_enroll_creates_subscription(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        stripe_gateway,
    ):
        """Test pro-rated first payment and full-price monthly billing."""
        response = await client.post(
            "/api/v1/enrollments/",
            json=marathon_payload(student_user, marathon_program, marathon_plan, location_offerings),
            headers=parent_headers,
        )

        assert response.status_code == 201
        data = response.json()["enrollment"]
        assert data["offering_type"] == "marathon"
        assert data["payment_status"] == "active"
        assert data["subscription_id"] == "sub_test_123"
        assert Decimal(data["base_amount"]) == Decimal("80.00")
        assert Decimal(data["admin_fee"]) == Decimal("4.00")
        assert Decimal(data["tax_amount"]) == Decimal("5.88")
        assert Decimal(data["total_amount"]) == Decimal("89.88")
        assert Decimal(data["monthly_amount"]) == Decimal("179.76")
        assert data["next_payment_due"].startswith("2027-03-01T00:00:00")
        assert [h["transaction_id"] for h in data["payment_history"]] == ["in_test_123"]

        subscription = stripe_gateway.create_subscription.await_args
        assert subscription.args[:4] == (
            "cus_test_123",
            "pm_card_visa",
            "prod_test_123",
            Decimal("179.76"),
        )
        assert subscription.kwargs["initial_amount"] == Decimal("89.88")
        assert subscription.kwargs["trial_end"] == int(
            datetime(2027, 3, 1, tzinfo=timezone.utc).timestamp()
        )
        stripe_gateway.charge_once.assert_not_called()

    async def test_plan_required_to_match_offering(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=marathon_payload(student_user, sprint_program, marathon_plan, location_offerings),
            headers=parent_headers,
        )
        assert response.status_code == 400


class TestCheckoutRollback:
    """Tests that a failed checkout leaves nothing behind."""

    async def test_full_session_rolls_back_everything(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        wednesday_session: ClassSession,
        stripe_gateway,
    ):
        """Test that seats taken before the full session are given back."""
        monday_session.available_capacity = 0
        await db_session.commit()

        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                sessions=[wednesday_session, monday_session],
            ),
            headers=admin_headers,
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "CAPACITY_UNAVAILABLE"
        stripe_gateway.charge_once.assert_not_called()

        await db_session.refresh(wednesday_session)
        await db_session.refresh(monday_session)
        assert wednesday_session.available_capacity == 10
        assert monday_session.available_capacity == 0
        assert await _count(db_session, Enrollment) == 0

    async def test_declined_card_rolls_back(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_schedule: Schedule,
        stripe_gateway,
    ):
        """Test that a declined payment releases seats and the discount use."""
        discount = DiscountCode(
            code="SAVE10", percent=10, usage=DiscountUsage.MULTIPLE, current_uses=0
        )
        db_session.add(discount)
        await db_session.commit()
        stripe_gateway.charge_once.side_effect = PaymentFailedException(
            message="Your card was declined.", retryable=False, processor="stripe"
        )

        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                sessions=[monday_session],
                schedule=sprint_schedule,
                discount_code="SAVE10",
            ),
            headers=admin_headers,
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error_code"] == "PAYMENT_FAILED"
        assert body["data"] == {"retryable": False, "processor": "stripe"}
        stripe_gateway.refund.assert_not_called()

        await db_session.refresh(monday_session)
        await db_session.refresh(sprint_schedule)
        await db_session.refresh(discount)
        assert monday_session.available_capacity == 10
        assert sprint_schedule.available_capacity == 5
        assert discount.current_uses == 0
        assert await _count(db_session, Enrollment) == 0
        assert await _count(db_session, ProgramProgress) == 0

    async def test_failure_after_charge_is_refunded(
        self,
        db_session: AsyncSession,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        gateways,
        stripe_gateway,
    ):
        """Test that money taken before a failed commit is given back."""
        session_id = monday_session.id
        request = EnrollmentRequest(
            student_id=student_user.id,
            program_id=sprint_program.id,
            location_id=location_offerings.id,
            payment_method=PaymentMethodType.CREDIT_CARD,
            enrollment_date=date(2027, 2, 1),
            class_session_ids=[session_id],
            payment_method_id="pm_card_visa",
        )
        orchestrator = EnrollmentOrchestrator(db_session, CatalogCache(), gateways)

        with patch(
            "app.services.enrollment_orchestrator.ProgressService.create_for_enrollment",
            new_callable=AsyncMock,
            side_effect=RuntimeError("progress store unavailable"),
        ):
            with pytest.raises(RuntimeError):
                await orchestrator.enroll(request)

        stripe_gateway.refund.assert_awaited_once_with("pi_test_123")
        attempt = orchestrator.last_attempt
        assert attempt.state == EnrollmentState.ABORTED
        assert EnrollmentState.PAYMENT_CONFIRMED in attempt.transitions

        slot = await db_session.get(ClassSession, session_id, populate_existing=True)
        assert slot.available_capacity == 10
        assert await _count(db_session, Enrollment) == 0

    async def test_subscription_cancelled_when_commit_fails(
        self,
        db_session: AsyncSession,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        gateways,
        stripe_gateway,
    ):
        request = EnrollmentRequest(
            student_id=student_user.id,
            program_id=marathon_program.id,
            plan_id=marathon_plan.id,
            location_id=location_offerings.id,
            payment_method=PaymentMethodType.CREDIT_CARD,
            enrollment_date=MARATHON_START,
            payment_method_id="pm_card_visa",
        )
        orchestrator = EnrollmentOrchestrator(db_session, CatalogCache(), gateways)

        with patch(
            "app.services.enrollment_orchestrator.ProgressService.create_for_enrollment",
            new_callable=AsyncMock,
            side_effect=RuntimeError("progress store unavailable"),
        ):
            with pytest.raises(RuntimeError):
                await orchestrator.enroll(request)

        stripe_gateway.cancel_subscription.assert_awaited_once_with("sub_test_123")
        stripe_gateway.refund.assert_not_called()

    async def test_capacity_failure_state(
        self,
        db_session: AsyncSession,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        sprint_schedule: Schedule,
        gateways,
    ):
        sprint_schedule.available_capacity = 0
        await db_session.commit()
        request = EnrollmentRequest(
            student_id=student_user.id,
            program_id=sprint_program.id,
            location_id=location_offerings.id,
            payment_method=PaymentMethodType.CREDIT_CARD,
            enrollment_date=date(2027, 2, 1),
            schedule_id=sprint_schedule.id,
            payment_method_id="pm_card_visa",
        )
        orchestrator = EnrollmentOrchestrator(db_session, CatalogCache(), gateways)

        with pytest.raises(CapacityUnavailableException) as exc_info:
            await orchestrator.enroll(request)

        assert exc_info.value.error_code == "CAPACITY_UNAVAILABLE"
        assert orchestrator.last_attempt.transitions == [
            EnrollmentState.DRAFT,
            EnrollmentState.CAPACITY_UNAVAILABLE,
            EnrollmentState.ABORTED,
        ]


class TestCheckoutValidation:
    """Tests for requests rejected before any seat is taken."""

    async def test_parent_cannot_enroll_other_family(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        other_parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        stripe_gateway,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user, sprint_program, location_offerings, sessions=[monday_session]
            ),
            headers=other_parent_headers,
        )

        assert response.status_code == 403
        stripe_gateway.charge_once.assert_not_called()
        await db_session.refresh(monday_session)
        assert monday_session.available_capacity == 10

    async def test_teacher_cannot_enroll(
        self,
        client: AsyncClient,
        teacher_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(student_user, sprint_program, location_offerings),
            headers=teacher_headers,
        )
        assert response.status_code == 403

    async def test_duplicate_enrollment_conflicts(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        payload = sprint_payload(student_user, sprint_program, location_offerings)
        first = await client.post("/api/v1/enrollments/", json=payload, headers=parent_headers)
        assert first.status_code == 201

        second = await client.post("/api/v1/enrollments/", json=payload, headers=parent_headers)
        assert second.status_code == 409
        assert second.json()["data"]["enrollment_id"] == first.json()["enrollment"]["id"]

    async def test_only_students_are_enrolled(
        self,
        client: AsyncClient,
        admin_headers: dict,
        parent_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(parent_user, sprint_program, location_offerings),
            headers=admin_headers,
        )
        assert response.status_code == 400

    async def test_location_must_carry_offering(
        self,
        client: AsyncClient,
        owner_headers: dict,
        student_user: User,
        sprint_program: Program,
        other_location: Location,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(student_user, sprint_program, other_location),
            headers=owner_headers,
        )
        assert response.status_code == 400
        assert response.json()["data"]["location_id"] == other_location.id

    async def test_same_day_sessions_rejected(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        second_monday_session: ClassSession,
    ):
        response = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                sessions=[monday_session, second_monday_session],
            ),
            headers=parent_headers,
        )
        assert response.status_code == 409
        assert response.json()["error_code"] == "SAME_DAY_SESSIONS"


class TestProcessPayment:
    """Tests for collecting outstanding payments."""

    async def test_suspended_marathon_pays_overdue_month(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        stripe_gateway,
    ):
        created = await client.post(
            "/api/v1/enrollments/",
            json=marathon_payload(student_user, marathon_program, marathon_plan, location_offerings),
            headers=parent_headers,
        )
        enrollment_id = created.json()["enrollment"]["id"]
        enrollment = await Enrollment.get_by_id(db_session, enrollment_id)
        enrollment.payment_status = PaymentStatus.SUSPENDED
        await db_session.commit()
        stripe_gateway.charge_once.return_value = ChargeResult(
            transaction_id="pi_overdue_1", confirmed=True, status="succeeded"
        )

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/process-payment",
            json={"payment_method_id": "pm_card_visa"},
            headers=parent_headers,
        )

        assert response.status_code == 200
        data = response.json()["enrollment"]
        assert data["payment_status"] == "active"
        assert data["monthly_payment_received"] is True
        assert [h["transaction_id"] for h in data["payment_history"]] == [
            "in_test_123",
            "pi_overdue_1",
        ]
        assert stripe_gateway.charge_once.await_args.args[3] == Decimal("179.76")

    async def test_pending_paypal_order_is_resumed(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        paypal_gateway,
    ):
        created = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                payment_method="paypal",
                payment_method_id=None,
            ),
            headers=parent_headers,
        )
        enrollment_id = created.json()["enrollment"]["id"]
        approval_url = created.json()["approval_url"]
        paypal_gateway.resume_checkout.return_value = ChargeResult(
            transaction_id="ORDER-TEST",
            confirmed=False,
            status="CREATED",
            approval_url=approval_url,
        )

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/process-payment",
            json={},
            headers=parent_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["approval_url"] == approval_url
        assert body["enrollment"]["payment_status"] == "pending"
        assert body["enrollment"]["payment_transaction_id"] == "ORDER-TEST"
        paypal_gateway.resume_checkout.assert_awaited_once_with("ORDER-TEST", subscription=False)
        assert paypal_gateway.charge_once.await_count == 1

    async def test_ended_paypal_subscription_is_replaced(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        paypal_gateway,
    ):
        created = await client.post(
            "/api/v1/enrollments/",
            json=marathon_payload(
                student_user,
                marathon_program,
                marathon_plan,
                location_offerings,
                payment_method="paypal",
                payment_method_id=None,
            ),
            headers=parent_headers,
        )
        enrollment_id = created.json()["enrollment"]["id"]
        paypal_gateway.create_subscription.return_value = SubscriptionResult(
            subscription_id="I-NEWSUB",
            confirmed=False,
            status="APPROVAL_PENDING",
            approval_url="https://www.sandbox.paypal.com/webapps/billing/subscriptions?ba_token=BA-NEW",
        )

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/process-payment",
            json={},
            headers=parent_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["enrollment"]["subscription_id"] == "I-NEWSUB"
        assert body["approval_url"].endswith("ba_token=BA-NEW")
        paypal_gateway.cancel_subscription.assert_awaited_once_with("I-TESTSUB")
        assert paypal_gateway.create_subscription.await_count == 2

    async def test_completed_enrollment_has_nothing_to_pay(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        created = await client.post(
            "/api/v1/enrollments/",
            json=sprint_payload(student_user, sprint_program, location_offerings),
            headers=parent_headers,
        )
        enrollment_id = created.json()["enrollment"]["id"]

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/process-payment",
            json={},
            headers=parent_headers,
        )
        assert response.status_code == 400


class TestEnrollmentManagement:
    """Tests for reading, editing, cancelling and deleting enrollments."""

    async def _enroll(self, client, headers, payload) -> str:
        response = await client.post("/api/v1/enrollments/", json=payload, headers=headers)
        assert response.status_code == 201
        return response.json()["enrollment"]["id"]

    async def test_visibility_by_role(
        self,
        client: AsyncClient,
        parent_headers: dict,
        teacher_headers: dict,
        other_admin_headers: dict,
        student_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            sprint_payload(student_user, sprint_program, location_offerings),
        )

        for headers in (parent_headers, teacher_headers, student_headers):
            response = await client.get("/api/v1/enrollments/", headers=headers)
            assert response.json()["total"] == 1

        response = await client.get(
            f"/api/v1/enrollments/{enrollment_id}", headers=other_admin_headers
        )
        assert response.status_code == 403
        response = await client.get("/api/v1/enrollments/", headers=other_admin_headers)
        assert response.json()["total"] == 0

    async def test_admin_updates_notes(
        self,
        client: AsyncClient,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            sprint_payload(student_user, sprint_program, location_offerings),
        )

        response = await client.patch(
            f"/api/v1/enrollments/{enrollment_id}",
            json={"notes": "Needs a laptop"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["notes"] == "Needs a laptop"

        response = await client.patch(
            f"/api/v1/enrollments/{enrollment_id}",
            json={"monthly_payment_received": True},
            headers=admin_headers,
        )
        assert response.status_code == 400

        response = await client.patch(
            f"/api/v1/enrollments/{enrollment_id}",
            json={"payment_status": "cancelled"},
            headers=admin_headers,
        )
        assert response.status_code == 400

    async def test_cancel_subscription_releases_seats(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        monday_session: ClassSession,
        stripe_gateway,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            marathon_payload(
                student_user,
                marathon_program,
                marathon_plan,
                location_offerings,
                class_session_ids=[monday_session.id],
            ),
        )
        await db_session.refresh(monday_session)
        assert monday_session.available_capacity == 9

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/cancel-subscription", headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["payment_status"] == "cancelled"
        stripe_gateway.cancel_subscription.assert_awaited_once_with("sub_test_123")
        await db_session.refresh(monday_session)
        assert monday_session.available_capacity == 10

        # cancelling again changes nothing
        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/cancel-subscription", headers=admin_headers
        )
        assert response.status_code == 200
        assert stripe_gateway.cancel_subscription.await_count == 1

    async def test_cancel_pending_paypal_subscription_at_gateway(
        self,
        client: AsyncClient,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        paypal_gateway,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            marathon_payload(
                student_user,
                marathon_program,
                marathon_plan,
                location_offerings,
                payment_method="paypal",
                payment_method_id=None,
            ),
        )

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/cancel-subscription", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["payment_status"] == "cancelled"
        paypal_gateway.cancel_subscription.assert_awaited_once_with("I-TESTSUB")

    async def test_gateway_failure_keeps_enrollment_pending(
        self,
        client: AsyncClient,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        marathon_program: Program,
        marathon_plan: Plan,
        location_offerings: Location,
        paypal_gateway,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            marathon_payload(
                student_user,
                marathon_program,
                marathon_plan,
                location_offerings,
                payment_method="paypal",
                payment_method_id=None,
            ),
        )
        paypal_gateway.cancel_subscription.side_effect = PaymentFailedException(
            message="PayPal could not cancel the subscription", processor="paypal"
        )

        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/cancel-subscription", headers=admin_headers
        )

        assert response.status_code == 500
        detail = await client.get(f"/api/v1/enrollments/{enrollment_id}", headers=admin_headers)
        assert detail.json()["payment_status"] == "pending"

    async def test_cancel_subscription_requires_marathon(
        self,
        client: AsyncClient,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            sprint_payload(student_user, sprint_program, location_offerings),
        )
        response = await client.post(
            f"/api/v1/enrollments/{enrollment_id}/cancel-subscription", headers=admin_headers
        )
        assert response.status_code == 400

    async def test_delete_releases_seats_and_progress(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        parent_headers: dict,
        admin_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
        monday_session: ClassSession,
        sprint_schedule: Schedule,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            sprint_payload(
                student_user,
                sprint_program,
                location_offerings,
                sessions=[monday_session],
                schedule=sprint_schedule,
            ),
        )

        response = await client.delete(
            f"/api/v1/enrollments/{enrollment_id}", headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json() == {"message": "Enrollment deleted successfully"}

        await db_session.refresh(monday_session)
        await db_session.refresh(sprint_schedule)
        assert monday_session.available_capacity == 10
        assert sprint_schedule.available_capacity == 5
        assert await _count(db_session, Enrollment) == 0
        assert await _count(db_session, ProgramProgress) == 0
        assert await _count(db_session, ModuleProgress) == 0

    async def test_parent_cannot_delete(
        self,
        client: AsyncClient,
        parent_headers: dict,
        student_user: User,
        sprint_program: Program,
        location_offerings: Location,
    ):
        enrollment_id = await self._enroll(
            client,
            parent_headers,
            sprint_payload(student_user, sprint_program, location_offerings),
        )
        response = await client.delete(
            f"/api/v1/enrollments/{enrollment_id}", headers=parent_headers
        )
        assert response.status_code == 403


class TestUsernames:
    """Tests for generated student usernames."""

    def test_username_base(self):
        assert username_base("Jimmy", "Doe") == "jimdoe"
        assert username_base("Al", "O'Neil") == "alone"
        assert username_base("", "") == "student"

    async def test_taken_usernames_get_a_counter(
        self, db_session: AsyncSession, student_user: User
    ):
        assert await generate_username(db_session, "Jimbo", "Doerr") == "jimdoe01"
