"""Demo class bookings against the demo seat pools."""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence, Tuple, Type

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.capacity import CapacityMixin, SeatPool
from app.models.class_session import ClassSession, Weekday
from app.models.demo_registration import DemoRegistration, DemoStatus
from app.models.location import Location
from app.models.schedule import Schedule
from app.models.user import Role, User
from app.services.capacity_service import CapacityService
from app.services.policy import Action, can_access, ensure_access
from app.tasks.email_tasks import send_demo_registration_email
from app.utils.dates import utcnow
from core.config import config
from core.db.session import transaction
from core.exceptions.base import BadRequestException, NotFoundException, ValidationException
from core.logging import get_logger

logger = get_logger(__name__)


def age_on(dob: date, today: date) -> int:
    """Completed years between ``dob`` and ``today``."""
    return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))


@dataclass
class DemoRegistrationInput:
    parent_first_name: str
    parent_last_name: str
    parent_email: str
    parent_phone: str
    student_first_name: str
    student_last_name: str
    student_dob: date
    location_id: str
    demo_class_date: Optional[date] = None
    class_session_id: Optional[str] = None
    schedule_id: Optional[str] = None
    notes: Optional[str] = None


class DemoRegistrationService:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session
        self.capacity = CapacityService(db_session)

    @staticmethod
    def _check_future(demo_date: date, today: date) -> None:
        if demo_date <= today:
            raise ValidationException(message="Demo class date must be in the future")

    async def _resolve_slot(
        self, data: DemoRegistrationInput
    ) -> Tuple[Type[CapacityMixin], str, date]:
        """The seat model, its id and the demo date for the requested slot."""
        if bool(data.schedule_id) == bool(data.class_session_id):
            raise ValidationException(
                message="Choose either a schedule or a class session for the demo"
            )

        if data.schedule_id:
            schedule = await Schedule.get_by_id(self.db_session, data.schedule_id)
            if schedule is None or schedule.location_id != data.location_id:
                raise NotFoundException(message="Schedule not found")
            if data.demo_class_date and data.demo_class_date != schedule.date:
                raise ValidationException(message="Demo date does not match the schedule")
            return Schedule, schedule.id, schedule.date

        session = await ClassSession.get_by_id(self.db_session, data.class_session_id)
        if (
            session is None
            or not session.is_active
            or session.location_id not in (None, data.location_id)
        ):
            raise NotFoundException(message="Class session not found")
        if data.demo_class_date is None:
            raise ValidationException(message="Demo class date is required for a class session")
        if Weekday.of(data.demo_class_date) != session.weekday:
            raise ValidationException(
                message=f"The selected session runs on {session.weekday.value}",
                data={"weekday": session.weekday.value},
            )
        return ClassSession, session.id, data.demo_class_date

    def _slot_of(self, registration: DemoRegistration) -> Tuple[Type[CapacityMixin], str]:
        if registration.schedule_id:
            return Schedule, registration.schedule_id
        return ClassSession, registration.class_session_id

    async def create(self, data: DemoRegistrationInput) -> DemoRegistration:
        """
        Book a demo class and take one demo seat.

        The student must be DEMO_MIN_AGE to DEMO_MAX_AGE years old and the demo
        date must be after today. The seat and the booking are saved together.
        """
        today = utcnow().date()
        age = age_on(data.student_dob, today)
        if age < config.DEMO_MIN_AGE or age > config.DEMO_MAX_AGE:
            raise ValidationException(
                message=(
                    f"Student must be between {config.DEMO_MIN_AGE} and "
                    f"{config.DEMO_MAX_AGE} years old"
                ),
            )

        location = await Location.get_by_id(self.db_session, data.location_id)
        if location is None or not location.is_active:
            raise NotFoundException(message="Location not found")

        model, slot_id, demo_date = await self._resolve_slot(data)
        self._check_future(demo_date, today)

        registration = DemoRegistration(
            parent_first_name=data.parent_first_name,
            parent_last_name=data.parent_last_name,
            parent_email=User.normalize_email(data.parent_email),
            parent_phone=data.parent_phone,
            student_first_name=data.student_first_name,
            student_last_name=data.student_last_name,
            student_dob=data.student_dob,
            location_id=location.id,
            schedule_id=slot_id if model is Schedule else None,
            class_session_id=slot_id if model is ClassSession else None,
            demo_class_date=demo_date,
            notes=data.notes,
            status=DemoStatus.PENDING,
        )
        async with transaction(self.db_session):
            await self.capacity.reserve(model, slot_id, SeatPool.DEMO)
            self.db_session.add(registration)
        await self.db_session.refresh(registration)
        logger.info(
            f"Demo registration {registration.id} for {registration.parent_email} "
            f"on {demo_date} ({model.__tablename__} {slot_id})"
        )

        try:
            send_demo_registration_email.delay(
                parent_email=registration.parent_email,
                parent_name=f"{registration.parent_first_name} {registration.parent_last_name}",
                student_name=f"{registration.student_first_name} {registration.student_last_name}",
                demo_class_date=demo_date.isoformat(),
                location_name=location.name,
                registration_id=registration.id,
            )
        except Exception as e:
            logger.warning(f"Failed to queue demo registration email: {e}")

        return registration

    async def get(self, registration_id: str, actor: User) -> DemoRegistration:
        registration = await DemoRegistration.get_by_id(self.db_session, registration_id)
        if registration is None:
            raise NotFoundException(message="Demo registration not found")
        ensure_access(actor, registration, Action.READ)
        return registration

    async def list_for(
        self,
        actor: User,
        status: Optional[DemoStatus] = None,
        email: Optional[str] = None,
        on_date: Optional[date] = None,
        upcoming: bool = False,
    ) -> Sequence[DemoRegistration]:
        registrations = await DemoRegistration.get_filtered(
            self.db_session,
            location_id=None if actor.role == Role.OWNER else actor.location_id,
            status=status,
            email=User.normalize_email(email) if email else None,
            on_date=on_date,
            upcoming_from=utcnow().date() if upcoming else None,
        )
        return [r for r in registrations if can_access(actor, r, Action.READ)]

    async def update(
        self,
        registration_id: str,
        actor: User,
        status: Optional[DemoStatus] = None,
        demo_class_date: Optional[date] = None,
        notes: Optional[str] = None,
        attendance_marked: Optional[bool] = None,
    ) -> DemoRegistration:
        """
        Change a booking. Leaving the pending/confirmed states gives the demo
        seat back; a cancelled or completed booking cannot be reopened.
        """
        registration = await self.get(registration_id, actor)
        ensure_access(actor, registration, Action.UPDATE)

        if status is not None and status != registration.status:
            if not registration.holds_seat:
                raise BadRequestException(
                    message=f"A {registration.status.value} demo registration cannot be reopened"
                )

        if demo_class_date is not None and demo_class_date != registration.demo_class_date:
            if registration.schedule_id:
                raise ValidationException(
                    message="The date of a scheduled demo follows its schedule"
                )
            self._check_future(demo_class_date, utcnow().date())
            session = await ClassSession.get_by_id(
                self.db_session, registration.class_session_id
            )
            if Weekday.of(demo_class_date) != session.weekday:
                raise ValidationException(
                    message=f"The selected session runs on {session.weekday.value}",
                    data={"weekday": session.weekday.value},
                )
            registration.demo_class_date = demo_class_date

        async with transaction(self.db_session):
            if status is not None and status != registration.status:
                releases = registration.holds_seat and status not in (
                    DemoStatus.PENDING,
                    DemoStatus.CONFIRMED,
                )
                registration.status = status
                if releases:
                    model, slot_id = self._slot_of(registration)
                    await self.capacity.release(model, slot_id, SeatPool.DEMO)
            if notes is not None:
                registration.notes = notes
            if attendance_marked is not None:
                registration.attendance_marked = attendance_marked
        await self.db_session.refresh(registration)
        logger.info(
            f"Demo registration {registration.id} updated by {actor.id} "
            f"({registration.status.value})"
        )
        return registration

    async def delete(self, registration_id: str, actor: User) -> None:
        registration = await self.get(registration_id, actor)
        ensure_access(actor, registration, Action.DELETE)
        async with transaction(self.db_session):
            if registration.holds_seat:
                model, slot_id = self._slot_of(registration)
                await self.capacity.release(model, slot_id, SeatPool.DEMO)
            await self.db_session.delete(registration)
        logger.info(f"Demo registration {registration_id} deleted by {actor.id}")
