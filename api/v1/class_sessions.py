from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_manager, get_current_user
from app.models.capacity import SeatPool
from app.models.class_session import ClassSession, SessionType, Weekday
from app.models.user import User
from app.schemas.class_session import (
    ClassSessionCreate,
    ClassSessionResponse,
    ClassSessionUpdate,
    SeatRequest,
)
from app.services.capacity_service import CapacityService
from app.services.policy import Action, can_access, ensure_access
from core.db import get_db
from core.exceptions.base import BadRequestException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/class-sessions", tags=["Class Sessions"])


async def _get_session(db_session: AsyncSession, session_id: str) -> ClassSession:
    session = await ClassSession.get_by_id(db_session, session_id)
    if not session:
        logger.warning(f"Class session not found: {session_id}")
        raise NotFoundException(message="Class session not found")
    return session


@router.get("/", response_model=List[ClassSessionResponse])
async def list_class_sessions(
    location_id: Optional[str] = None,
    weekday: Optional[Weekday] = None,
    session_type: Optional[SessionType] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ClassSessionResponse]:
    """List the weekly sessions visible to the caller."""
    logger.info(f"List class sessions request by user: {current_user.id}")
    sessions = await ClassSession.get_filtered(
        db_session, location_id=location_id, weekday=weekday, session_type=session_type
    )
    return [
        ClassSessionResponse.model_validate(s)
        for s in sessions
        if can_access(current_user, s, Action.READ)
    ]


@router.get("/{session_id}", response_model=ClassSessionResponse)
async def get_class_session(
    session_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ClassSessionResponse:
    logger.info(f"Get class session request for id: {session_id}")
    session = await _get_session(db_session, session_id)
    ensure_access(current_user, session, Action.READ)
    return ClassSessionResponse.model_validate(session)


@router.post("/", response_model=ClassSessionResponse, status_code=201)
async def create_class_session(
    data: ClassSessionCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ClassSessionResponse:
    """
    Create a weekly session with empty seat pools.

    Managers create sessions for their own location; only owners create global
    sessions.
    """
    logger.info(f"Create class session request by user: {current_user.id}")
    session = ClassSession(
        name=data.name,
        location_id=data.location_id,
        weekday=data.weekday,
        session_type=data.session_type
        or (SessionType.WEEKEND if data.weekday.is_weekend else SessionType.WEEKDAY),
        start_time=data.start_time,
        end_time=data.end_time,
        total_capacity=data.total_capacity,
        available_capacity=data.total_capacity,
        demo_capacity=data.demo_capacity,
        available_demo_capacity=data.demo_capacity,
    )
    ensure_access(current_user, session, Action.CREATE)
    db_session.add(session)
    await db_session.commit()
    await db_session.refresh(session)
    logger.info(f"Class session created successfully: {session.id}")
    return ClassSessionResponse.model_validate(session)


@router.put("/{session_id}", response_model=ClassSessionResponse)
async def update_class_session(
    session_id: str,
    data: ClassSessionUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ClassSessionResponse:
    """
    Update a session. A new total shifts the available count by the same
    amount, clamped to the new pool.
    """
    logger.info(f"Update class session request by user: {current_user.id}, session_id: {session_id}")
    session = await _get_session(db_session, session_id)
    ensure_access(current_user, session, Action.UPDATE)

    update_data = data.model_dump(exclude_unset=True)
    total_capacity = update_data.pop("total_capacity", None)
    demo_capacity = update_data.pop("demo_capacity", None)

    new_start = update_data.get("start_time", session.start_time)
    new_end = update_data.get("end_time", session.end_time)
    if new_start >= new_end:
        raise BadRequestException(message="start_time must be before end_time")

    for field, value in update_data.items():
        setattr(session, field, value)

    capacity = CapacityService(db_session)
    if total_capacity is not None:
        await capacity.resize(ClassSession, session.id, total_capacity, SeatPool.REGULAR)
    if demo_capacity is not None:
        await capacity.resize(ClassSession, session.id, demo_capacity, SeatPool.DEMO)

    await db_session.commit()
    await db_session.refresh(session)
    logger.info(f"Class session updated successfully: {session_id}")
    return ClassSessionResponse.model_validate(session)


@router.delete("/{session_id}")
async def delete_class_session(
    session_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> dict:
    """Delete a session that holds no bookings."""
    logger.info(f"Delete class session request by user: {current_user.id}, session_id: {session_id}")
    session = await _get_session(db_session, session_id)
    ensure_access(current_user, session, Action.DELETE)
    if session.has_bookings:
        raise BadRequestException(
            message=(
                f"Cannot delete class session because it has {session.enrolled_count} "
                f"enrolled students and {session.demo_enrolled_count} demo students"
            )
        )
    await db_session.delete(session)
    await db_session.commit()
    logger.info(f"Class session deleted successfully: {session_id}")
    return {"message": "Class session deleted successfully"}


@router.post("/{session_id}/book", response_model=ClassSessionResponse)
async def book_class_session(
    session_id: str,
    data: SeatRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ClassSessionResponse:
    """Take one seat from the regular or demo pool."""
    logger.info(f"Book {data.pool.value} seat on session {session_id} by user: {current_user.id}")
    session = await _get_session(db_session, session_id)
    ensure_access(current_user, session, Action.BOOK)
    await CapacityService(db_session).reserve(ClassSession, session.id, data.pool)
    await db_session.commit()
    await db_session.refresh(session)
    return ClassSessionResponse.model_validate(session)


@router.post("/{session_id}/cancel", response_model=ClassSessionResponse)
async def cancel_class_session_seat(
    session_id: str,
    data: SeatRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> ClassSessionResponse:
    """Give one seat back to the regular or demo pool."""
    logger.info(f"Cancel {data.pool.value} seat on session {session_id} by user: {current_user.id}")
    session = await _get_session(db_session, session_id)
    ensure_access(current_user, session, Action.BOOK)
    await CapacityService(db_session).release(ClassSession, session.id, data.pool)
    await db_session.commit()
    await db_session.refresh(session)
    return ClassSessionResponse.model_validate(session)
