from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_manager, get_current_user
from app.models.user import User
from app.schemas.class_session import (
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
    SeatRequest,
)
from app.services.schedule_service import ScheduleService
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/schedules", tags=["Schedules"])


@router.get("/", response_model=List[ScheduleResponse])
async def list_schedules(
    location_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    program_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ScheduleResponse]:
    """List dated slots visible to the caller."""
    logger.info(f"List schedules request by user: {current_user.id}, location_id: {location_id}")
    schedules = await ScheduleService(db_session).list_for(
        current_user,
        location_id=location_id,
        start_date=start_date,
        end_date=end_date,
        program_id=program_id,
        plan_id=plan_id,
    )
    return [ScheduleResponse.model_validate(s) for s in schedules]


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ScheduleResponse:
    logger.info(f"Get schedule request for id: {schedule_id}")
    schedule = await ScheduleService(db_session).get(schedule_id, current_user)
    return ScheduleResponse.model_validate(schedule)


@router.post("/", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ScheduleResponse:
    """
    Create a dated slot for a Sprint program or a Marathon plan.

    Owners schedule anywhere; admins and location managers at their own location.
    """
    logger.info(f"Create schedule request by user: {current_user.id}, location_id: {data.location_id}")
    schedule = await ScheduleService(db_session).create(
        current_user,
        location_id=data.location_id,
        session_id=data.session_id,
        on_date=data.date,
        total_capacity=data.total_capacity,
        demo_capacity=data.demo_capacity,
        program_id=data.program_id,
        plan_id=data.plan_id,
    )
    return ScheduleResponse.model_validate(schedule)


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    data: ScheduleUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ScheduleResponse:
    logger.info(f"Update schedule request by user: {current_user.id}, schedule_id: {schedule_id}")
    schedule = await ScheduleService(db_session).update(
        schedule_id,
        current_user,
        session_id=data.session_id,
        on_date=data.date,
        total_capacity=data.total_capacity,
        demo_capacity=data.demo_capacity,
    )
    return ScheduleResponse.model_validate(schedule)


@router.delete("/{schedule_id}")
async def delete_schedule(
    schedule_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> dict:
    """Delete a slot nobody is booked on."""
    logger.info(f"Delete schedule request by user: {current_user.id}, schedule_id: {schedule_id}")
    await ScheduleService(db_session).delete(schedule_id, current_user)
    return {"message": "Schedule deleted successfully"}


@router.post("/{schedule_id}/book", response_model=ScheduleResponse)
async def book_schedule(
    schedule_id: str,
    data: SeatRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ScheduleResponse:
    logger.info(f"Book {data.pool.value} slot on schedule {schedule_id} by user: {current_user.id}")
    schedule = await ScheduleService(db_session).book(schedule_id, current_user, data.pool)
    return ScheduleResponse.model_validate(schedule)


@router.post("/{schedule_id}/cancel", response_model=ScheduleResponse)
async def cancel_schedule_slot(
    schedule_id: str,
    data: SeatRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ScheduleResponse:
    logger.info(f"Cancel {data.pool.value} slot on schedule {schedule_id} by user: {current_user.id}")
    schedule = await ScheduleService(db_session).cancel(schedule_id, current_user, data.pool)
    return ScheduleResponse.model_validate(schedule)
