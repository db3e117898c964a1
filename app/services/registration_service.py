"""Public registration checkout, priced before any account exists."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.class_session import ClassSession
from app.models.enrollment import PaymentMethodType
from app.models.location import Location
from app.models.registration import Registration
from app.models.user import Role, User
from app.services.capacity_service import validate_session_selection
from app.services.catalog_cache import CatalogCache
from app.services.discount_service import DiscountService
from app.services.enrollment_orchestrator import resolve_price
from app.services.fee_calculator import (
    compute_first_payment_amount,
    compute_totals,
    to_money,
)
from app.services.policy import Action, ensure_access
from app.tasks.email_tasks import send_registration_confirmation_email
from app.utils.dates import utcnow
from core.config import config
from core.exceptions.base import NotFoundException, ValidationException
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RegistrationInput:
    parent_first_name: str
    parent_last_name: str
    parent_email: str
    parent_phone: str
    student_first_name: str
    student_last_name: str
    student_dob: date
    location_id: str
    program_id: str
    enrollment_date: date
    payment_method: PaymentMethodType
    offering_id: Optional[str] = None
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    class_session_ids: List[str] = field(default_factory=list)
    discount_code: Optional[str] = None
    stripe_payment_method_id: Optional[str] = None


class RegistrationService:
    def __init__(self, db_session: AsyncSession, catalog: CatalogCache):
        self.db_session = db_session
        self.catalog = catalog

    async def create(self, data: RegistrationInput) -> Registration:
        """
        Price a registration with the registration fee percents and store it.

        The discount code is checked but not redeemed; redemption happens when
        the registration is finalized into an enrollment.
        """
        program = await self.catalog.get_program(self.db_session, data.program_id)
        if program is None or not program.is_active:
            raise NotFoundException(message="Program not found")
        if data.offering_id and data.offering_id != program.offering_id:
            raise ValidationException(message="Program does not belong to the selected offering")
        offering = await self.catalog.get_offering(self.db_session, program.offering_id)
        if offering is None or not offering.is_active:
            raise NotFoundException(message="Offering not found")

        plan = None
        if data.plan_id:
            plan = offering.find_plan(data.plan_id) if offering.is_marathon else None
            if plan is None:
                raise NotFoundException(message="Plan not found for this offering")

        location = await Location.get_by_id(self.db_session, data.location_id)
        if location is None or not location.is_active:
            raise NotFoundException(message="Location not found")

        if data.class_session_ids:
            sessions = await ClassSession.get_many(self.db_session, data.class_session_ids)
            if len(sessions) != len(set(data.class_session_ids)):
                raise NotFoundException(message="Class session not found")
            validate_session_selection(program, sessions)

        if data.enrollment_date < utcnow().date():
            raise ValidationException(message="Enrollment date cannot be in the past")

        pricing = resolve_price(
            location,
            offering,
            program,
            plan,
            Decimal(str(config.REGISTRATION_TAX_PERCENT)),
        )
        monthly_amount = None
        if program.is_marathon:
            monthly_amount = to_money(pricing.price)
            base_amount = compute_first_payment_amount(data.enrollment_date, pricing.price)
        else:
            base_amount = to_money(pricing.price)

        discount_code = None
        discount_percent = None
        if data.discount_code:
            validation = await DiscountService(self.db_session).validate(
                data.discount_code, data.location_id
            )
            discount_code = validation.code
            discount_percent = validation.percent

        admin_percent = Decimal(str(config.REGISTRATION_ADMIN_FEE_PERCENT))
        fees = compute_totals(base_amount, admin_percent, pricing.tax_percent, discount_percent)

        registration = Registration(
            parent_first_name=data.parent_first_name,
            parent_last_name=data.parent_last_name,
            parent_email=User.normalize_email(data.parent_email),
            parent_phone=data.parent_phone,
            student_first_name=data.student_first_name,
            student_last_name=data.student_last_name,
            student_dob=data.student_dob,
            location_id=location.id,
            program_id=program.id,
            offering_id=offering.id,
            plan_id=plan.id if plan else None,
            schedule_id=data.schedule_id,
            class_session_ids=list(data.class_session_ids),
            enrollment_date=data.enrollment_date,
            payment_method=data.payment_method,
            first_payment_amount=fees.base_amount,
            monthly_amount=monthly_amount,
            discount_code=discount_code,
            discount_percent=discount_percent,
            discount_amount=fees.discount_amount,
            admin_percent=admin_percent,
            tax_percent=fees.tax_percent,
            admin_fee=fees.admin_fee,
            tax_amount=fees.tax_amount,
            total_amount_due=fees.total_amount,
            stripe_payment_method_id=data.stripe_payment_method_id,
            expires_at=Registration.default_expiry(),
        )
        self.db_session.add(registration)
        await self.db_session.commit()
        await self.db_session.refresh(registration)
        logger.info(
            f"Registration {registration.id} created for {registration.parent_email} "
            f"({program.name}, total {fees.total_amount})"
        )

        try:
            send_registration_confirmation_email.delay(
                parent_email=registration.parent_email,
                parent_name=f"{registration.parent_first_name} {registration.parent_last_name}",
                student_name=f"{registration.student_first_name} {registration.student_last_name}",
                program_name=program.name,
                registration_id=registration.id,
                first_payment_amount=str(registration.first_payment_amount),
                total_amount_due=str(registration.total_amount_due),
            )
        except Exception as e:
            logger.warning(f"Failed to queue registration confirmation email: {e}")

        return registration

    async def get(self, registration_id: str) -> Registration:
        registration = await Registration.get_by_id(self.db_session, registration_id)
        if registration is None:
            raise NotFoundException(message="Registration not found")
        return registration

    async def list_for(
        self,
        actor: User,
        is_complete: Optional[bool] = None,
        email: Optional[str] = None,
        program_id: Optional[str] = None,
    ) -> Sequence[Registration]:
        """Unexpired registrations, newest first, limited to the actor's location unless owner."""
        now = utcnow()
        query = select(Registration).where(
            (Registration.expires_at.is_(None)) | (Registration.expires_at > now)
        )
        if actor.role != Role.OWNER:
            query = query.where(Registration.location_id == actor.location_id)
        if is_complete is not None:
            query = query.where(Registration.is_registration_complete == is_complete)
        if email:
            query = query.where(Registration.parent_email == User.normalize_email(email))
        if program_id:
            query = query.where(Registration.program_id == program_id)
        result = await self.db_session.execute(query.order_by(Registration.created_at.desc()))
        registrations = result.scalars().all()
        for registration in registrations:
            ensure_access(actor, registration, Action.READ)
        return registrations

    async def delete(self, registration_id: str, actor: User) -> None:
        registration = await self.get(registration_id)
        ensure_access(actor, registration, Action.DELETE)
        await self.db_session.delete(registration)
        await self.db_session.commit()
        logger.info(f"Registration {registration_id} deleted by {actor.id}")
