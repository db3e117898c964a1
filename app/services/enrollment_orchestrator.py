"""Enrollment workflow: capacity, fees, payment and persistence as one unit of work."""

import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.capacity import SeatPool
from app.models.class_session import ClassSession
from app.models.enrollment import (
    Enrollment,
    PaymentMethodType,
    PaymentProcessor,
    PaymentStatus,
)
from app.models.location import Location, OfferingPrice
from app.models.payment import PaymentMethod
from app.models.program import Plan, Program
from app.models.registration import Registration
from app.models.schedule import Schedule
from app.models.user import Role, User
from app.services.capacity_service import CapacityService, validate_session_selection
from app.services.catalog_cache import (
    CatalogCache,
    OfferingSnapshot,
    PlanSnapshot,
    ProgramSnapshot,
)
from app.services.discount_service import DiscountService
from app.services.fee_calculator import (
    FeeBreakdown,
    compute_first_payment_amount,
    compute_totals,
    to_money,
)
from app.services.payment_gateway import (
    ChargeResult,
    PaymentGateway,
    SubscriptionResult,
    get_gateway,
)
from app.services.policy import Action, ensure_access
from app.services.progress_service import ProgressService
from app.tasks.email_tasks import (
    send_enrollment_confirmation_email,
    send_portal_account_email,
)
from app.utils.dates import at_midnight_utc, first_of_next_month, utcnow
from app.utils.security import hash_password
from core.config import config
from core.db.session import transaction
from core.exceptions.base import (
    BadRequestException,
    CapacityUnavailableException,
    ConflictException,
    NotFoundException,
    PaymentFailedException,
    ValidationException,
)
from core.logging import get_logger

logger = get_logger(__name__)


class EnrollmentState(str, enum.Enum):
    DRAFT = "draft"
    CAPACITY_RESERVED = "capacity_reserved"
    FEES_COMPUTED = "fees_computed"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PERSISTED = "persisted"
    NOTIFICATION_SENT = "notification_sent"
    PAYMENT_FAILED = "payment_failed"
    CAPACITY_UNAVAILABLE = "capacity_unavailable"
    ABORTED = "aborted"


@dataclass
class EnrollmentRequest:
    """Everything needed to enroll one student in one program."""

    student_id: str
    program_id: str
    location_id: str
    payment_method: PaymentMethodType
    enrollment_date: date
    parent_id: Optional[str] = None
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    class_session_ids: List[str] = field(default_factory=list)
    discount_code: Optional[str] = None
    payment_method_id: Optional[str] = None
    # Overrides of the configured direct-enrollment percents
    admin_fee_percent: Optional[Decimal] = None
    tax_percent: Optional[Decimal] = None
    registration_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class EnrollmentAttempt:
    """Progress of one attempt through the enrollment states."""

    state: EnrollmentState = EnrollmentState.DRAFT
    transitions: List[EnrollmentState] = field(
        default_factory=lambda: [EnrollmentState.DRAFT]
    )
    fees: Optional[FeeBreakdown] = None
    gateway: Optional[PaymentGateway] = None
    payment: Optional[Any] = None  # ChargeResult or SubscriptionResult
    enrollment: Optional[Enrollment] = None

    def move(self, state: EnrollmentState) -> None:
        self.state = state
        self.transitions.append(state)

    @property
    def approval_url(self) -> Optional[str]:
        return getattr(self.payment, "approval_url", None)

    @property
    def external_effect(self) -> bool:
        """Money was taken or a live subscription exists at the provider."""
        return self.payment is not None and self.payment.confirmed


@dataclass
class _Checkout:
    """Validated inputs of an enrollment, resolved before anything is written."""

    program: ProgramSnapshot
    offering: OfferingSnapshot
    plan: Optional[PlanSnapshot]
    student: User
    parent: User
    location: Location
    sessions: List[ClassSession]
    schedule: Optional[Schedule]
    base_amount: Decimal
    monthly_amount: Optional[Decimal]
    admin_percent: Decimal
    tax_percent: Decimal


def resolve_price(
    location: Location,
    offering: OfferingSnapshot,
    program: ProgramSnapshot,
    plan: Optional[PlanSnapshot],
    default_tax_percent: Decimal,
) -> OfferingPrice:
    """
    Price and tax of a plan (Marathon with a plan) or program at a location.

    Raises ValidationException when the location does not carry the offering.
    """
    if plan is not None:
        base_price = plan.price
        base_tax = plan.tax_percent if plan.tax_percent is not None else default_tax_percent
    else:
        base_price = program.price
        base_tax = default_tax_percent
    pricing = location.get_offering_pricing(
        offering.id,
        base_price=base_price,
        base_tax_percent=base_tax,
        plan_id=plan.id if plan else None,
        program_id=None if plan else program.id,
    )
    if pricing is None:
        raise ValidationException(
            message=f"{location.name} does not offer {offering.name}",
            data={"location_id": location.id, "offering_id": offering.id},
        )
    return pricing


async def release_seats(capacity: CapacityService, enrollment: Enrollment) -> None:
    """Give back the seats an enrollment holds. Full pools are logged, not raised."""
    await capacity.release_sessions([session.id for session in enrollment.class_sessions])
    if enrollment.schedule_id:
        if not await Schedule.release_slot(capacity.db_session, enrollment.schedule_id):
            logger.warning(
                f"Schedule {enrollment.schedule_id} already at full capacity on release"
            )


class EnrollmentOrchestrator:
    """
    Runs an enrollment from request to confirmation email.

    Seat reservations, the discount redemption and the Enrollment, ProgramProgress
    and ModuleProgress rows share one database transaction. The payment call is
    made inside it, just before commit; if anything fails after the provider
    took money or started a subscription, the charge is refunded or the
    subscription cancelled.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        catalog: CatalogCache,
        gateways: Dict[PaymentMethodType, PaymentGateway],
    ):
        self.db_session = db_session
        self.catalog = catalog
        self.gateways = gateways
        self.capacity = CapacityService(db_session)
        self.discounts = DiscountService(db_session)
        self.progress = ProgressService(db_session)
        self.last_attempt: Optional[EnrollmentAttempt] = None

    # ============== Public operations ==============

    async def enroll(
        self, request: EnrollmentRequest, actor: Optional[User] = None
    ) -> EnrollmentAttempt:
        """Enroll a student on behalf of ``actor`` (None for trusted callers)."""
        checkout = await self._prepare(request, persist_discount_expiry=True)
        if actor is not None:
            ensure_access(
                actor,
                Enrollment(
                    student_id=checkout.student.id,
                    parent_id=checkout.parent.id,
                    location_id=request.location_id,
                ),
                Action.CREATE,
            )

        attempt = self._begin()
        try:
            async with transaction(self.db_session):
                enrollment = await self._reserve_charge_persist(request, checkout, attempt)
        except Exception as e:
            await self._abort(attempt, e)
            raise

        attempt.move(EnrollmentState.PERSISTED)
        logger.info(
            f"Enrollment {enrollment.id} created for student {enrollment.student_id} "
            f"({enrollment.payment_status.value})"
        )
        self._notify(attempt, checkout)
        return attempt

    async def finalize_registration(
        self,
        registration_id: str,
        password: str,
        payment_method_id: Optional[str] = None,
    ) -> EnrollmentAttempt:
        """
        Turn a registration into a parent account, a student account and an
        enrollment, all committed together.
        """
        registration = await Registration.get_by_id(self.db_session, registration_id)
        if registration is None:
            raise NotFoundException(message="Registration not found or expired")
        if (
            registration.is_registration_complete
            or registration.is_reg_linked_with_enrollment
            or registration.is_user_setup
        ):
            raise BadRequestException(
                message="Link expired or account already created for this registration ID"
            )

        attempt = self._begin()
        try:
            async with transaction(self.db_session):
                hashed = hash_password(password)
                parent = await self._find_or_create_parent(registration, hashed)
                student = await self._create_student(registration, parent, hashed)
                request = EnrollmentRequest(
                    student_id=student.id,
                    parent_id=parent.id,
                    program_id=registration.program_id,
                    location_id=registration.location_id,
                    payment_method=registration.payment_method,
                    enrollment_date=registration.enrollment_date,
                    plan_id=registration.plan_id,
                    schedule_id=registration.schedule_id,
                    class_session_ids=list(registration.class_session_ids or []),
                    discount_code=registration.discount_code,
                    payment_method_id=payment_method_id
                    or registration.stripe_payment_method_id,
                    admin_fee_percent=registration.admin_percent,
                    tax_percent=registration.tax_percent,
                    registration_id=registration.id,
                )
                checkout = await self._prepare(request, persist_discount_expiry=False)
                enrollment = await self._reserve_charge_persist(request, checkout, attempt)
                registration.mark_complete(enrollment.id)
        except Exception as e:
            await self._abort(attempt, e)
            raise

        attempt.move(EnrollmentState.PERSISTED)
        logger.info(
            f"Registration {registration.id} finalized: parent {parent.id}, "
            f"student {student.username}, enrollment {enrollment.id}"
        )
        try:
            send_portal_account_email.delay(
                parent_email=parent.email,
                parent_name=parent.full_name,
                student_name=student.full_name,
                student_username=student.username,
                student_email=student.email,
            )
        except Exception as e:
            logger.warning(f"Failed to queue portal account email: {e}")
        self._notify(attempt, checkout)
        return attempt

    async def process_payment(
        self,
        enrollment_id: str,
        actor: Optional[User] = None,
        payment_method_id: Optional[str] = None,
    ) -> EnrollmentAttempt:
        """
        Collect what a pending or suspended enrollment still owes.

        Pending enrollments repeat their initial payment (subscription or
        one-time charge). Suspended Marathon enrollments pay the overdue month
        once and become active again.
        """
        enrollment = await self._load(enrollment_id)
        if actor is not None:
            ensure_access(actor, enrollment, Action.PAY)
        if enrollment.payment_status not in (
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
            PaymentStatus.SUSPENDED,
        ):
            raise BadRequestException(
                message=f"Enrollment has no outstanding payment ({enrollment.payment_status.value})"
            )

        gateway = get_gateway(self.gateways, enrollment.payment_method)
        parent = await self._load_user(enrollment.parent_id or enrollment.student_id)
        attempt = self._begin()
        attempt.gateway = gateway
        attempt.move(EnrollmentState.PAYMENT_INITIATED)
        try:
            async with transaction(self.db_session):
                now = utcnow()
                if enrollment.is_marathon and enrollment.payment_status == PaymentStatus.SUSPENDED:
                    customer_id, method_id = await self._prepare_payer(
                        gateway, parent, enrollment.payment_method, payment_method_id
                    )
                    product_ref = await self._product_ref(
                        gateway, enrollment.plan_id, enrollment.program_id
                    )
                    result = await gateway.charge_once(
                        customer_id,
                        method_id,
                        product_ref,
                        enrollment.monthly_amount,
                        description=f"Overdue tuition for enrollment {enrollment.id}",
                        **self._return_urls(enrollment.id),
                    )
                    attempt.payment = result
                    if result.confirmed:
                        enrollment.payment_status = PaymentStatus.ACTIVE
                        enrollment.monthly_payment_received = True
                        enrollment.record_payment(
                            enrollment.monthly_amount, now, gateway.processor, result.transaction_id
                        )
                else:
                    result = await self._reopen_checkout(gateway, enrollment, attempt)
                    if result is None:
                        customer_id, method_id = await self._prepare_payer(
                            gateway, parent, enrollment.payment_method, payment_method_id
                        )
                        product_ref = await self._product_ref(
                            gateway, enrollment.plan_id, enrollment.program_id
                        )
                        result = await self._initiate_payment(
                            gateway,
                            customer_id,
                            method_id,
                            product_ref,
                            is_marathon=enrollment.is_marathon,
                            total=enrollment.total_amount,
                            monthly_amount=enrollment.monthly_amount,
                            enrollment_id=enrollment.id,
                            start_date=now.date(),
                            attempt=attempt,
                        )
                    self._apply_initial_payment(enrollment, gateway, result, now, now.date())
                enrollment.payment_processor = gateway.processor
                enrollment.validate_payment_terms()
                if result.confirmed:
                    attempt.move(EnrollmentState.PAYMENT_CONFIRMED)
        except Exception as e:
            await self._abort(attempt, e)
            raise

        attempt.enrollment = enrollment
        attempt.move(EnrollmentState.PERSISTED)
        logger.info(
            f"Payment processed for enrollment {enrollment.id} ({enrollment.payment_status.value})"
        )
        return attempt

    # ============== Preparation ==============

    def _begin(self) -> EnrollmentAttempt:
        self.last_attempt = EnrollmentAttempt()
        return self.last_attempt

    async def _prepare(
        self, request: EnrollmentRequest, persist_discount_expiry: bool
    ) -> _Checkout:
        """Resolve and validate every input. Reads only; no seat or code is touched."""
        program = await self.catalog.get_program(self.db_session, request.program_id)
        if program is None:
            raise NotFoundException(message="Program not found")
        if not program.is_active:
            raise ValidationException(message=f"{program.name} is not open for enrollment")
        offering = await self.catalog.get_offering(self.db_session, program.offering_id)
        if offering is None or not offering.is_active:
            raise NotFoundException(message="Offering not found")

        plan = None
        if request.plan_id:
            if not offering.is_marathon:
                raise ValidationException(message="Plans are only available for Marathon offerings")
            plan = offering.find_plan(request.plan_id)
            if plan is None:
                raise NotFoundException(message="Plan not found for this offering")

        student = await self._load_user(request.student_id)
        if student.role != Role.STUDENT:
            raise ValidationException(message="Enrollments are made for student accounts")
        parent = await self._load_user(request.parent_id or student.parent_id or student.id)

        location = await Location.get_by_id(self.db_session, request.location_id)
        if location is None or not location.is_active:
            raise NotFoundException(message="Location not found")

        sessions = await self._load_sessions(request, program)
        schedule = await self._load_schedule(request, program, plan)

        existing = await Enrollment.find_open(self.db_session, student.id, program.id)
        if existing is not None:
            raise ConflictException(
                message=f"{student.full_name} is already enrolled in {program.name}",
                data={"enrollment_id": existing.id},
            )

        default_tax = Decimal(str(config.ENROLLMENT_TAX_PERCENT))
        pricing = resolve_price(location, offering, program, plan, default_tax)
        monthly_amount = None
        if program.is_marathon:
            monthly_amount = to_money(pricing.price)
            base_amount = compute_first_payment_amount(request.enrollment_date, pricing.price)
        else:
            base_amount = to_money(pricing.price)

        if request.discount_code:
            await self.discounts.validate(
                request.discount_code,
                request.location_id,
                persist_expiry=persist_discount_expiry,
            )

        return _Checkout(
            program=program,
            offering=offering,
            plan=plan,
            student=student,
            parent=parent,
            location=location,
            sessions=sessions,
            schedule=schedule,
            base_amount=base_amount,
            monthly_amount=monthly_amount,
            admin_percent=Decimal(
                str(
                    request.admin_fee_percent
                    if request.admin_fee_percent is not None
                    else config.ENROLLMENT_ADMIN_FEE_PERCENT
                )
            ),
            tax_percent=Decimal(
                str(request.tax_percent if request.tax_percent is not None else pricing.tax_percent)
            ),
        )

    async def _load_user(self, user_id: str) -> User:
        user = await User.get_by_id(self.db_session, user_id)
        if user is None or user.is_deleted:
            raise NotFoundException(message="User not found")
        return user

    async def _load(self, enrollment_id: str) -> Enrollment:
        enrollment = await Enrollment.get_by_id(self.db_session, enrollment_id)
        if enrollment is None:
            raise NotFoundException(message="Enrollment not found")
        return enrollment

    async def _load_sessions(
        self, request: EnrollmentRequest, program: ProgramSnapshot
    ) -> List[ClassSession]:
        if not request.class_session_ids:
            return []
        if len(set(request.class_session_ids)) != len(request.class_session_ids):
            raise ValidationException(message="The same session was selected twice")
        sessions = list(await ClassSession.get_many(self.db_session, request.class_session_ids))
        if len(sessions) != len(request.class_session_ids):
            raise NotFoundException(message="Class session not found")
        foreign = [s.id for s in sessions if s.location_id not in (None, request.location_id)]
        if foreign:
            raise ValidationException(
                message="Selected sessions belong to another location",
                data={"session_ids": foreign},
            )
        validate_session_selection(program, sessions)
        return sessions

    async def _load_schedule(
        self,
        request: EnrollmentRequest,
        program: ProgramSnapshot,
        plan: Optional[PlanSnapshot],
    ) -> Optional[Schedule]:
        if not request.schedule_id:
            return None
        schedule = await Schedule.get_by_id(self.db_session, request.schedule_id)
        if schedule is None:
            raise NotFoundException(message="Schedule not found")
        if schedule.location_id != request.location_id:
            raise ValidationException(message="Schedule belongs to another location")
        if program.is_marathon:
            matches = plan is not None and schedule.plan_id == plan.id
        else:
            matches = schedule.program_id == program.id
        if not matches:
            raise ValidationException(message="Schedule is not for the selected program or plan")
        return schedule

    # ============== Transactional core ==============

    async def _reserve_charge_persist(
        self,
        request: EnrollmentRequest,
        checkout: _Checkout,
        attempt: EnrollmentAttempt,
    ) -> Enrollment:
        """Runs inside the caller's transaction; flushes only."""
        await self.capacity.reserve_sessions(checkout.sessions)
        if checkout.schedule is not None:
            await self.capacity.reserve(Schedule, checkout.schedule.id, SeatPool.REGULAR)
        attempt.move(EnrollmentState.CAPACITY_RESERVED)

        discount_code = None
        discount_percent = None
        if request.discount_code:
            redemption = await self.discounts.apply(
                request.discount_code, request.location_id, persist_expiry=False
            )
            discount_code = redemption.code
            discount_percent = redemption.percent
        fees = compute_totals(
            checkout.base_amount,
            checkout.admin_percent,
            checkout.tax_percent,
            discount_percent,
        )
        attempt.fees = fees
        attempt.move(EnrollmentState.FEES_COMPUTED)

        enrollment_id = str(uuid4())
        gateway = get_gateway(self.gateways, request.payment_method)
        attempt.gateway = gateway
        attempt.move(EnrollmentState.PAYMENT_INITIATED)

        customer_id, method_id = await self._prepare_payer(
            gateway, checkout.parent, request.payment_method, request.payment_method_id
        )
        product_ref = await self._product_ref(
            gateway, checkout.plan.id if checkout.plan else None, checkout.program.id
        )
        monthly_total = None
        if checkout.program.is_marathon:
            # recurring months pay the full price plus fees, without the discount
            monthly_total = compute_totals(
                checkout.monthly_amount, checkout.admin_percent, checkout.tax_percent
            ).total_amount
        result = await self._initiate_payment(
            gateway,
            customer_id,
            method_id,
            product_ref,
            is_marathon=checkout.program.is_marathon,
            total=fees.total_amount,
            monthly_amount=monthly_total,
            enrollment_id=enrollment_id,
            start_date=request.enrollment_date,
            attempt=attempt,
        )
        if result.confirmed:
            attempt.move(EnrollmentState.PAYMENT_CONFIRMED)

        enrollment = Enrollment(
            id=enrollment_id,
            student_id=checkout.student.id,
            parent_id=checkout.parent.id,
            program_id=checkout.program.id,
            plan_id=checkout.plan.id if checkout.plan else None,
            schedule_id=checkout.schedule.id if checkout.schedule else None,
            registration_id=request.registration_id,
            location_id=request.location_id,
            offering_type=checkout.program.offering_type,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            enrollment_date=request.enrollment_date,
            base_amount=fees.base_amount,
            discount_code=discount_code,
            discount_percent=discount_percent,
            discount_amount=fees.discount_amount,
            admin_fee=fees.admin_fee,
            tax_amount=fees.tax_amount,
            total_amount=fees.total_amount,
            monthly_amount=monthly_total,
            monthly_payment_received=False,
            notes=request.notes,
        )
        enrollment.class_sessions = list(checkout.sessions)
        self._apply_initial_payment(
            enrollment, gateway, result, utcnow(), request.enrollment_date
        )
        enrollment.validate_payment_terms()
        self.db_session.add(enrollment)
        await self.db_session.flush()

        await self.progress.create_for_enrollment(
            checkout.student.id, checkout.program, enrollment.id
        )
        attempt.enrollment = enrollment
        return enrollment

    async def _prepare_payer(
        self,
        gateway: PaymentGateway,
        payer: User,
        method: PaymentMethodType,
        payment_method_id: Optional[str],
    ):
        """Provider customer id and, for cards, the attached payment method id."""
        if gateway.processor == PaymentProcessor.STRIPE and payer.stripe_customer_id:
            customer_id = payer.stripe_customer_id
        else:
            customer_id = await gateway.create_customer(payer.email, payer.full_name)
            if gateway.processor == PaymentProcessor.STRIPE:
                payer.stripe_customer_id = customer_id

        if PaymentMethodType(method) != PaymentMethodType.CREDIT_CARD:
            return customer_id, None

        if not payment_method_id:
            saved = await PaymentMethod.get_for_user(self.db_session, payer.id)
            if not saved:
                raise ValidationException(message="A card is required to pay by credit card")
            payment_method_id = saved[0].stripe_payment_method_id

        card = await gateway.attach_payment_method(customer_id, payment_method_id)
        if card is not None and await PaymentMethod.get_by_stripe_id(
            self.db_session, payment_method_id
        ) is None:
            is_first = await PaymentMethod.count_for_user(self.db_session, payer.id) == 0
            self.db_session.add(
                PaymentMethod(
                    user_id=payer.id,
                    stripe_payment_method_id=payment_method_id,
                    card_brand=card.brand,
                    last4=card.last4,
                    exp_month=card.exp_month,
                    exp_year=card.exp_year,
                    is_default=is_first,
                )
            )
        return customer_id, payment_method_id

    async def _product_ref(
        self, gateway: PaymentGateway, plan_id: Optional[str], program_id: str
    ) -> str:
        """Provider product of the plan (when one was chosen) or the program."""
        item = None
        if plan_id:
            item = await Plan.get_by_id(self.db_session, plan_id)
        if item is None:
            item = await Program.get_by_id(self.db_session, program_id)
        if item is None:
            raise NotFoundException(message="Program not found")

        known = (item.stripe_product_id, item.paypal_product_id)
        product_ref = await gateway.ensure_product(self.db_session, item)
        if (item.stripe_product_id, item.paypal_product_id) != known:
            if isinstance(item, Plan):
                self.catalog.invalidate_plan(item)
            else:
                self.catalog.invalidate_program(item.id)
        return product_ref

    def _return_urls(self, enrollment_id: str) -> Dict[str, str]:
        return {
            "return_url": f"{config.FRONTEND_URL}/enrollments/success?id={enrollment_id}",
            "cancel_url": f"{config.FRONTEND_URL}/enrollments/cancel?id={enrollment_id}",
        }

    async def _initiate_payment(
        self,
        gateway: PaymentGateway,
        customer_id: Optional[str],
        method_id: Optional[str],
        product_ref: str,
        is_marathon: bool,
        total: Decimal,
        monthly_amount: Optional[Decimal],
        enrollment_id: str,
        start_date: date,
        attempt: EnrollmentAttempt,
    ):
        if is_marathon:
            billing_start = at_midnight_utc(first_of_next_month(start_date))
            result = await gateway.create_subscription(
                customer_id,
                method_id,
                product_ref,
                monthly_amount,
                trial_end=int(billing_start.timestamp()),
                description=f"Monthly tuition for enrollment {enrollment_id}",
                initial_amount=total,
                **self._return_urls(enrollment_id),
            )
        elif total <= 0:
            # fully discounted; nothing to collect
            result = ChargeResult(
                transaction_id=f"no-charge-{enrollment_id}",
                confirmed=True,
                status="no_charge",
            )
        else:
            result = await gateway.charge_once(
                customer_id,
                method_id,
                product_ref,
                total,
                description=f"Program payment for enrollment {enrollment_id}",
                **self._return_urls(enrollment_id),
            )
        attempt.payment = result
        return result

    async def _reopen_checkout(
        self,
        gateway: PaymentGateway,
        enrollment: Enrollment,
        attempt: EnrollmentAttempt,
    ):
        """
        The enrollment's earlier checkout when it can still complete. Otherwise a
        leftover subscription is cancelled so the new one is the only one billing.
        """
        if enrollment.is_marathon:
            reference = enrollment.subscription_id
        else:
            reference = enrollment.payment_transaction_id
        if not reference:
            return None
        previous = await gateway.resume_checkout(reference, subscription=enrollment.is_marathon)
        if previous is not None:
            logger.info(f"Resuming checkout {reference} of enrollment {enrollment.id}")
            attempt.payment = previous
            return previous
        if enrollment.is_marathon:
            await gateway.cancel_subscription(reference)
        return None

    def _apply_initial_payment(
        self,
        enrollment: Enrollment,
        gateway: PaymentGateway,
        result,
        now: datetime,
        start_date: date,
    ) -> None:
        """Copy a payment result onto the enrollment and its history.

        Monthly billing starts on the first of the month after ``start_date``.
        """
        free = isinstance(result, ChargeResult) and result.status == "no_charge"
        processor = PaymentProcessor.MANUAL if free else gateway.processor
        enrollment.payment_processor = processor
        if isinstance(result, SubscriptionResult):
            enrollment.subscription_id = result.subscription_id
            enrollment.next_payment_due = at_midnight_utc(first_of_next_month(start_date))
            if result.confirmed:
                enrollment.payment_status = PaymentStatus.ACTIVE
                enrollment.record_payment(
                    enrollment.total_amount,
                    now,
                    processor,
                    result.latest_transaction_id or result.subscription_id,
                )
            else:
                enrollment.payment_status = PaymentStatus.PENDING
        else:
            enrollment.payment_transaction_id = result.transaction_id
            if result.confirmed:
                enrollment.payment_status = PaymentStatus.COMPLETED
                enrollment.payment_date = now
                enrollment.record_payment(
                    enrollment.total_amount, now, processor, result.transaction_id
                )
            else:
                enrollment.payment_status = PaymentStatus.PENDING

    # ============== Failure handling ==============

    async def _abort(self, attempt: EnrollmentAttempt, error: Exception) -> None:
        if isinstance(error, CapacityUnavailableException):
            attempt.move(EnrollmentState.CAPACITY_UNAVAILABLE)
        elif isinstance(error, PaymentFailedException) and not attempt.external_effect:
            attempt.move(EnrollmentState.PAYMENT_FAILED)
        if attempt.external_effect:
            await self._compensate(attempt)
        attempt.move(EnrollmentState.ABORTED)
        logger.warning(
            f"Enrollment attempt aborted after {attempt.transitions[-2].value}: "
            f"{type(error).__name__} - {error}"
        )

    async def _compensate(self, attempt: EnrollmentAttempt) -> None:
        """Undo the provider side effect of an attempt that did not commit."""
        payment = attempt.payment
        try:
            if isinstance(payment, SubscriptionResult):
                await attempt.gateway.cancel_subscription(payment.subscription_id)
                logger.info(f"Cancelled subscription {payment.subscription_id} after abort")
            elif payment.status != "no_charge":
                await attempt.gateway.refund(payment.transaction_id)
                logger.info(f"Refunded {payment.transaction_id} after abort")
        except PaymentFailedException as e:
            reference = getattr(payment, "subscription_id", None) or payment.transaction_id
            logger.error(
                f"Compensation failed for {reference}; manual follow-up required: {e.message}"
            )

    # ============== Notification ==============

    def _notify(self, attempt: EnrollmentAttempt, checkout: _Checkout) -> None:
        enrollment = attempt.enrollment
        try:
            send_enrollment_confirmation_email.delay(
                parent_email=checkout.parent.email,
                parent_name=checkout.parent.full_name,
                student_name=checkout.student.full_name,
                program_name=checkout.program.name,
                is_marathon=enrollment.is_marathon,
                total_amount=str(enrollment.total_amount),
                monthly_amount=str(enrollment.monthly_amount) if enrollment.monthly_amount else None,
                next_payment_due=(
                    enrollment.next_payment_due.isoformat() if enrollment.next_payment_due else None
                ),
                approval_url=attempt.approval_url,
            )
            attempt.move(EnrollmentState.NOTIFICATION_SENT)
        except Exception as e:
            logger.warning(f"Failed to queue enrollment confirmation email: {e}")

    # ============== Accounts ==============

    async def _find_or_create_parent(self, registration: Registration, hashed: str) -> User:
        parent = await User.get_by_email(self.db_session, registration.parent_email)
        if parent is not None:
            if parent.role != Role.PARENT:
                raise ConflictException(
                    message="This email belongs to an account that is not a parent account"
                )
            return parent
        return await User.create_user(
            self.db_session,
            email=registration.parent_email,
            first_name=registration.parent_first_name,
            last_name=registration.parent_last_name,
            hashed_password=hashed,
            role=Role.PARENT,
            phone=registration.parent_phone,
            location_id=registration.location_id,
            commit=False,
        )

    async def _create_student(
        self, registration: Registration, parent: User, hashed: str
    ) -> User:
        username = await generate_username(
            self.db_session, registration.student_first_name, registration.student_last_name
        )
        return await User.create_user(
            self.db_session,
            email=f"{username}@{config.STUDENT_EMAIL_DOMAIN}",
            first_name=registration.student_first_name,
            last_name=registration.student_last_name,
            hashed_password=hashed,
            role=Role.STUDENT,
            location_id=registration.location_id,
            username=username,
            parent_id=parent.id,
            commit=False,
        )


def username_base(first_name: str, last_name: str) -> str:
    """First three letters of each name, lower-cased."""
    first = re.sub(r"[^a-z0-9]", "", first_name.lower())
    last = re.sub(r"[^a-z0-9]", "", last_name.lower())
    return (first[:3] + last[:3]) or "student"


async def generate_username(db_session: AsyncSession, first_name: str, last_name: str) -> str:
    """``janedo`` for Jane Doe, then ``janedo01``, ``janedo02``... while taken."""
    base = username_base(first_name, last_name)
    candidate = base
    counter = 1
    while await User.username_exists(db_session, candidate):
        candidate = f"{base}{counter:02d}"
        counter += 1
    return candidate
