import os
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Ensure critical settings exist before the app/config modules import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./dev.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-change-me-please")

from app.models.class_session import ClassSession, SessionType, Weekday
from app.models.enrollment import PaymentMethodType, PaymentProcessor
from app.models.location import Location, LocationOffering, LocationPriceOverride
from app.models.program import Module, Offering, OfferingType, Plan, Program, Topic
from app.models.schedule import Schedule
from app.models.user import Role, User
from app.services.catalog_cache import CatalogCache
from app.services.payment_gateway import CardDetails, ChargeResult, SubscriptionResult
from app.services.paypal_service import PayPalService
from app.services.stripe_service import StripeService
from app.utils.dates import utcnow
from app.utils.security import create_tokens, hash_password
from core.db import get_db
from core.db.base import Base
from core.db.session import get_engine_config
from main import app

# Use SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

engine = create_async_engine(TEST_DATABASE_URL, **get_engine_config(TEST_DATABASE_URL))
TestSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

PAYPAL_ORDER_APPROVAL = "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-TEST"
PAYPAL_SUBSCRIPTION_APPROVAL = (
    "https://www.sandbox.paypal.com/webapps/billing/subscriptions?ba_token=BA-TEST"
)


async def _save(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


def headers_for(user: User) -> dict:
    access_token, _ = create_tokens(user.id, user.role.value)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture(autouse=True)
async def setup_db():
    """Create and drop all tables for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def email_tasks():
    """Replace the queued email tasks; there is no broker under test."""
    with patch(
        "app.services.enrollment_orchestrator.send_enrollment_confirmation_email"
    ) as enrollment, patch(
        "app.services.enrollment_orchestrator.send_portal_account_email"
    ) as portal, patch(
        "app.services.registration_service.send_registration_confirmation_email"
    ) as registration, patch(
        "app.services.demo_registration_service.send_demo_registration_email"
    ) as demo, patch(
        "app.services.auth_service.send_password_reset_email"
    ) as password_reset:
        yield {
            "enrollment": enrollment,
            "portal": portal,
            "registration": registration,
            "demo": demo,
            "password_reset": password_reset,
        }


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for testing."""
    async with TestSessionLocal() as session:
        yield session


# ============== Payment gateways ==============


@pytest.fixture
def stripe_gateway() -> MagicMock:
    """Stripe adapter whose calls all succeed."""
    gateway = MagicMock(spec=StripeService)
    gateway.processor = PaymentProcessor.STRIPE
    gateway.create_customer.return_value = "cus_test_123"
    gateway.is_already_attached.return_value = False
    gateway.attach_payment_method.return_value = CardDetails(
        payment_method_id="pm_card_visa",
        brand="visa",
        last4="4242",
        exp_month=12,
        exp_year=2030,
    )
    gateway.ensure_product.return_value = "prod_test_123"
    gateway.charge_once.return_value = ChargeResult(
        transaction_id="pi_test_123", confirmed=True, status="succeeded"
    )
    gateway.create_subscription.return_value = SubscriptionResult(
        subscription_id="sub_test_123",
        confirmed=True,
        status="active",
        latest_transaction_id="in_test_123",
    )
    gateway.cancel_subscription.return_value = None
    gateway.refund.return_value = None
    gateway.resume_checkout.return_value = None
    return gateway


@pytest.fixture
def paypal_gateway() -> MagicMock:
    """PayPal adapter: every checkout waits for payer approval."""
    gateway = MagicMock(spec=PayPalService)
    gateway.processor = PaymentProcessor.PAYPAL
    gateway.create_customer.side_effect = lambda email, name: email
    gateway.attach_payment_method.return_value = None
    gateway.ensure_product.return_value = "PROD-TEST"
    gateway.charge_once.return_value = ChargeResult(
        transaction_id="ORDER-TEST",
        confirmed=False,
        status="CREATED",
        approval_url=PAYPAL_ORDER_APPROVAL,
    )
    gateway.create_subscription.return_value = SubscriptionResult(
        subscription_id="I-TESTSUB",
        confirmed=False,
        status="APPROVAL_PENDING",
        approval_url=PAYPAL_SUBSCRIPTION_APPROVAL,
    )
    gateway.get_subscription.return_value = {"id": "I-TESTSUB", "status": "ACTIVE"}
    gateway.capture_order.return_value = {"id": "ORDER-TEST", "status": "COMPLETED"}
    gateway.cancel_subscription.return_value = None
    gateway.refund.return_value = None
    gateway.resume_checkout.return_value = None
    return gateway


@pytest.fixture
def gateways(stripe_gateway, paypal_gateway) -> dict:
    return {
        PaymentMethodType.CREDIT_CARD: stripe_gateway,
        PaymentMethodType.PAYPAL: paypal_gateway,
    }


@pytest.fixture
def catalog_cache() -> CatalogCache:
    return CatalogCache()


@pytest.fixture
async def client(gateways, catalog_cache) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing."""

    async def override_get_db():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.catalog_cache = catalog_cache
    app.state.gateways = gateways

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============== Locations ==============


@pytest.fixture
async def location(db_session: AsyncSession) -> Location:
    return await _save(
        db_session,
        Location(name="Downtown", city="Austin", state="TX", is_active=True),
    )


@pytest.fixture
async def other_location(db_session: AsyncSession) -> Location:
    return await _save(
        db_session,
        Location(name="Uptown", city="Austin", state="TX", is_active=True),
    )


# ============== Users ==============


async def _user(
    db_session: AsyncSession,
    email: str,
    role: Role,
    location_id=None,
    parent_id=None,
    username=None,
    first_name="Test",
    last_name="User",
) -> User:
    return await _save(
        db_session,
        User(
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            hashed_password=hash_password("TestPass123"),
            role=role,
            location_id=location_id,
            parent_id=parent_id,
            is_active=True,
        ),
    )


@pytest.fixture
async def owner_user(db_session: AsyncSession) -> User:
    return await _user(db_session, "owner@example.com", Role.OWNER, first_name="Olivia")


@pytest.fixture
async def admin_user(db_session: AsyncSession, location: Location) -> User:
    return await _user(db_session, "admin@example.com", Role.ADMIN, location.id)


@pytest.fixture
async def manager_user(db_session: AsyncSession, location: Location) -> User:
    return await _user(db_session, "manager@example.com", Role.LOCATION_MANAGER, location.id)


@pytest.fixture
async def teacher_user(db_session: AsyncSession, location: Location) -> User:
    return await _user(db_session, "teacher@example.com", Role.TEACHER, location.id)


@pytest.fixture
async def other_admin(db_session: AsyncSession, other_location: Location) -> User:
    return await _user(db_session, "admin@uptown.example.com", Role.ADMIN, other_location.id)


@pytest.fixture
async def parent_user(db_session: AsyncSession, location: Location) -> User:
    return await _user(
        db_session,
        "parent@example.com",
        Role.PARENT,
        location.id,
        first_name="Jane",
        last_name="Doe",
    )


@pytest.fixture
async def other_parent(db_session: AsyncSession, location: Location) -> User:
    return await _user(db_session, "other.parent@example.com", Role.PARENT, location.id)


@pytest.fixture
async def student_user(
    db_session: AsyncSession, location: Location, parent_user: User
) -> User:
    return await _user(
        db_session,
        "jimdoe@students.stemmasters.com",
        Role.STUDENT,
        location.id,
        parent_id=parent_user.id,
        username="jimdoe",
        first_name="Jimmy",
        last_name="Doe",
    )


@pytest.fixture
def owner_headers(owner_user: User) -> dict:
    return headers_for(owner_user)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def manager_headers(manager_user: User) -> dict:
    return headers_for(manager_user)


@pytest.fixture
def teacher_headers(teacher_user: User) -> dict:
    return headers_for(teacher_user)


@pytest.fixture
def other_admin_headers(other_admin: User) -> dict:
    return headers_for(other_admin)


@pytest.fixture
def parent_headers(parent_user: User) -> dict:
    return headers_for(parent_user)


@pytest.fixture
def other_parent_headers(other_parent: User) -> dict:
    return headers_for(other_parent)


@pytest.fixture
def student_headers(student_user: User) -> dict:
    return headers_for(student_user)


# ============== Catalog ==============


@pytest.fixture
async def sprint_offering(db_session: AsyncSession) -> Offering:
    return await _save(
        db_session,
        Offering(
            name="Robotics Sprint",
            description="Eight week robotics course",
            offering_type=OfferingType.SPRINT,
            is_active=True,
        ),
    )


@pytest.fixture
async def sprint_program(db_session: AsyncSession, sprint_offering: Offering) -> Program:
    """Twice-a-week program: two modules, three topics."""
    program = Program(
        offering_id=sprint_offering.id,
        name="Intro to Robotics",
        description="Build and program a rover",
        estimated_duration=8,
        price=Decimal("200.00"),
        sessions_per_week=2,
        is_active=True,
        modules=[
            Module(
                name="Basics",
                position=0,
                topics=[
                    Topic(name="Motors", position=0),
                    Topic(name="Wheels", position=1),
                ],
            ),
            Module(
                name="Sensors",
                position=1,
                topics=[Topic(name="Ultrasonic", position=0)],
            ),
        ],
    )
    program = await _save(db_session, program)
    await db_session.refresh(sprint_offering)
    return program


@pytest.fixture
async def marathon_offering(db_session: AsyncSession) -> Offering:
    return await _save(
        db_session,
        Offering(
            name="Coding Marathon",
            description="Year-round coding club",
            offering_type=OfferingType.MARATHON,
            is_active=True,
        ),
    )


@pytest.fixture
async def marathon_plan(db_session: AsyncSession, marathon_offering: Offering) -> Plan:
    plan = await _save(
        db_session,
        Plan(
            offering_id=marathon_offering.id,
            name="Weekly",
            description="One class a week",
            price=Decimal("160.00"),
        ),
    )
    await db_session.refresh(marathon_offering)
    return plan


@pytest.fixture
async def marathon_program(
    db_session: AsyncSession, marathon_offering: Offering, marathon_plan: Plan
) -> Program:
    program = await _save(
        db_session,
        Program(
            offering_id=marathon_offering.id,
            name="Python Club",
            description="Monthly Python projects",
            price=Decimal("160.00"),
            sessions_per_week=1,
            is_active=True,
            modules=[Module(name="Loops", position=0, topics=[Topic(name="For", position=0)])],
        ),
    )
    await db_session.refresh(marathon_offering)
    return program


@pytest.fixture
async def location_offerings(
    db_session: AsyncSession,
    location: Location,
    sprint_offering: Offering,
    marathon_offering: Offering,
) -> Location:
    """The main location carries both offerings at catalog prices."""
    db_session.add_all(
        [
            LocationOffering(location_id=location.id, offering_id=sprint_offering.id),
            LocationOffering(location_id=location.id, offering_id=marathon_offering.id),
        ]
    )
    await db_session.commit()
    await db_session.refresh(location)
    return location


@pytest.fixture
async def price_override(
    db_session: AsyncSession,
    other_location: Location,
    sprint_offering: Offering,
    sprint_program: Program,
) -> LocationPriceOverride:
    """Uptown charges 250.00 for the sprint program, with catalog tax."""
    location_offering = await _save(
        db_session,
        LocationOffering(location_id=other_location.id, offering_id=sprint_offering.id),
    )
    override = await _save(
        db_session,
        LocationPriceOverride(
            location_offering_id=location_offering.id,
            program_id=sprint_program.id,
            price=Decimal("250.00"),
        ),
    )
    await db_session.refresh(location_offering)
    await db_session.refresh(other_location)
    return override


# ============== Sessions and schedules ==============


async def _session(
    db_session: AsyncSession,
    location_id,
    weekday: Weekday,
    capacity: int = 10,
    demo: int = 2,
) -> ClassSession:
    return await _save(
        db_session,
        ClassSession(
            name=f"{weekday.value} afternoon",
            location_id=location_id,
            weekday=weekday,
            session_type=SessionType.WEEKEND if weekday.is_weekend else SessionType.WEEKDAY,
            start_time="16:00",
            end_time="17:00",
            total_capacity=capacity,
            available_capacity=capacity,
            demo_capacity=demo,
            available_demo_capacity=demo,
            is_active=True,
        ),
    )


@pytest.fixture
async def monday_session(db_session: AsyncSession, location: Location) -> ClassSession:
    return await _session(db_session, location.id, Weekday.MONDAY)


@pytest.fixture
async def wednesday_session(db_session: AsyncSession, location: Location) -> ClassSession:
    return await _session(db_session, location.id, Weekday.WEDNESDAY)


@pytest.fixture
async def second_monday_session(db_session: AsyncSession, location: Location) -> ClassSession:
    session = await _session(db_session, location.id, Weekday.MONDAY)
    session.start_time = "18:00"
    session.end_time = "19:00"
    await db_session.commit()
    return session


@pytest.fixture
async def sprint_schedule(
    db_session: AsyncSession,
    location_offerings: Location,
    monday_session: ClassSession,
    sprint_program: Program,
) -> Schedule:
    return await _save(
        db_session,
        Schedule(
            location_id=location_offerings.id,
            session_id=monday_session.id,
            date=utcnow().date() + timedelta(days=14),
            program_id=sprint_program.id,
            total_capacity=5,
            available_capacity=5,
            demo_capacity=1,
            available_demo_capacity=1,
        ),
    )
