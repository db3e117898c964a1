"""Dated schedule slots: creation rules, resizing and per-pool booking."""

from datetime import date
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.capacity import SeatPool
from app.models.class_session import ClassSession
from app.models.location import Location
from app.models.program import Offering, Plan, Program
from app.models.schedule import Schedule
from app.models.user import User
from app.services.capacity_service import CapacityService
from app.services.policy import Action, can_access, can_manage_schedules, ensure_access
from app.utils.dates import utcnow
from core.exceptions.base import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from core.logging import get_logger

logger = get_logger(__name__)


class ScheduleService:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session
        self.capacity = CapacityService(db_session)

    async def get(self, schedule_id: str, actor: User) -> Schedule:
        schedule = await Schedule.get_by_id(self.db_session, schedule_id)
        if schedule is None:
            raise NotFoundException(message="Schedule not found")
        ensure_access(actor, schedule, Action.READ)
        return schedule

    async def list_for(
        self,
        actor: User,
        location_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        program_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> Sequence[Schedule]:
        schedules = await Schedule.get_filtered(
            self.db_session,
            location_id=location_id,
            start_date=start_date,
            end_date=end_date,
            program_id=program_id,
            plan_id=plan_id,
        )
        return [s for s in schedules if can_access(actor, s, Action.READ)]

    async def _check_target(
        self, location: Location, program_id: Optional[str], plan_id: Optional[str]
    ) -> None:
        """Programs of Sprint offerings, or plans of a Marathon offering the location carries."""
        if program_id:
            program = await Program.get_by_id(self.db_session, program_id)
            if program is None:
                raise NotFoundException(message="Program not found")
            offering = await Offering.get_by_id(self.db_session, program.offering_id)
            if offering is not None and offering.is_marathon:
                raise ValidationException(
                    message="Marathon programs are scheduled against a plan, not a program"
                )
            return

        plan = await Plan.get_by_id(self.db_session, plan_id)
        if plan is None:
            raise NotFoundException(message="Plan not found")
        offering = await Offering.get_by_id(self.db_session, plan.offering_id)
        if offering is None or not offering.is_marathon:
            raise ValidationException(message="Plans belong to Marathon offerings only")
        if location.find_offering(offering.id) is None:
            raise ValidationException(
                message="Plan does not belong to this location's Marathon offering"
            )

    async def _check_session(self, session_id: str, location_id: str) -> ClassSession:
        session = await ClassSession.get_by_id(self.db_session, session_id)
        if session is None:
            raise NotFoundException(message="Class session not found")
        if session.location_id not in (None, location_id):
            raise ValidationException(message="Class session belongs to another location")
        return session

    async def _check_duplicate(
        self,
        location_id: str,
        session_id: str,
        on_date: date,
        program_id: Optional[str],
        plan_id: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> None:
        duplicate = await Schedule.find_duplicate(
            self.db_session, location_id, session_id, on_date, program_id, plan_id, exclude_id
        )
        if duplicate is not None:
            raise ConflictException(
                message="A schedule already exists for this session on this date",
                data={"schedule_id": duplicate.id},
            )

    async def create(
        self,
        actor: User,
        location_id: str,
        session_id: str,
        on_date: date,
        total_capacity: int,
        demo_capacity: int = 0,
        program_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> Schedule:
        if not can_manage_schedules(actor, location_id):
            raise ForbiddenException(message="Not allowed to manage schedules at this location")
        if bool(program_id) == bool(plan_id):
            raise ValidationException(message="Provide exactly one of program_id or plan_id")
        if total_capacity < 1:
            raise ValidationException(message="total_capacity must be at least 1")
        if demo_capacity < 0 or demo_capacity > total_capacity:
            raise ValidationException(message="demo_capacity must be between 0 and total_capacity")
        if on_date < utcnow().date():
            raise ValidationException(message="Schedule date cannot be in the past")

        location = await Location.get_by_id(self.db_session, location_id)
        if location is None:
            raise NotFoundException(message="Location not found")
        await self._check_session(session_id, location_id)
        await self._check_target(location, program_id, plan_id)
        await self._check_duplicate(location_id, session_id, on_date, program_id, plan_id)

        schedule = Schedule(
            location_id=location_id,
            session_id=session_id,
            date=on_date,
            program_id=program_id,
            plan_id=plan_id,
            total_capacity=total_capacity,
            available_capacity=total_capacity,
            demo_capacity=demo_capacity,
            available_demo_capacity=demo_capacity,
            created_by_id=actor.id,
        )
        self.db_session.add(schedule)
        await self.db_session.commit()
        await self.db_session.refresh(schedule)
        logger.info(f"Schedule {schedule.id} created for {on_date} at location {location_id}")
        return schedule

    async def update(
        self,
        schedule_id: str,
        actor: User,
        session_id: Optional[str] = None,
        on_date: Optional[date] = None,
        total_capacity: Optional[int] = None,
        demo_capacity: Optional[int] = None,
    ) -> Schedule:
        """Move or resize a slot. Pools shift by the change in their total, clamped."""
        schedule = await self.get(schedule_id, actor)
        ensure_access(actor, schedule, Action.UPDATE)

        new_total = schedule.total_capacity if total_capacity is None else total_capacity
        new_demo = schedule.demo_capacity if demo_capacity is None else demo_capacity
        if new_total < 1:
            raise ValidationException(message="total_capacity must be at least 1")
        if new_demo < 0 or new_demo > new_total:
            raise ValidationException(message="demo_capacity must be between 0 and total_capacity")

        if session_id is not None or on_date is not None:
            new_session = session_id or schedule.session_id
            new_date = on_date or schedule.date
            if on_date is not None and on_date < utcnow().date():
                raise ValidationException(message="Schedule date cannot be in the past")
            if session_id is not None:
                await self._check_session(session_id, schedule.location_id)
            await self._check_duplicate(
                schedule.location_id,
                new_session,
                new_date,
                schedule.program_id,
                schedule.plan_id,
                exclude_id=schedule.id,
            )
            schedule.session_id = new_session
            schedule.date = new_date

        if total_capacity is not None:
            await self.capacity.resize(Schedule, schedule.id, new_total, SeatPool.REGULAR)
        if demo_capacity is not None:
            await self.capacity.resize(Schedule, schedule.id, new_demo, SeatPool.DEMO)
        await self.db_session.commit()
        await self.db_session.refresh(schedule)
        logger.info(f"Schedule {schedule.id} updated by {actor.id}")
        return schedule

    async def delete(self, schedule_id: str, actor: User) -> None:
        schedule = await self.get(schedule_id, actor)
        ensure_access(actor, schedule, Action.DELETE)
        if schedule.enrolled_count or schedule.demo_enrolled_count:
            raise BadRequestException(
                message=(
                    f"Cannot delete schedule because it has {schedule.enrolled_count} "
                    f"enrolled students and {schedule.demo_enrolled_count} demo students"
                )
            )
        await self.db_session.delete(schedule)
        await self.db_session.commit()
        logger.info(f"Schedule {schedule_id} deleted by {actor.id}")

    async def book(self, schedule_id: str, actor: User, pool: SeatPool) -> Schedule:
        schedule = await self.get(schedule_id, actor)
        ensure_access(actor, schedule, Action.BOOK)
        await self.capacity.reserve(Schedule, schedule.id, pool)
        await self.db_session.commit()
        await self.db_session.refresh(schedule)
        return schedule

    async def cancel(self, schedule_id: str, actor: User, pool: SeatPool) -> Schedule:
        schedule = await self.get(schedule_id, actor)
        ensure_access(actor, schedule, Action.BOOK)
        await self.capacity.release(Schedule, schedule.id, pool)
        await self.db_session.commit()
        await self.db_session.refresh(schedule)
        return schedule
