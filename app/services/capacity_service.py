"""Seat bookkeeping for class sessions and schedules."""

from collections import Counter
from typing import Iterable, List, Sequence, Type

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.capacity import CapacityMixin, SeatPool
from app.models.class_session import ClassSession
from app.models.program import Program
from core.exceptions.base import (
    CapacityUnavailableException,
    ConflictException,
    ValidationException,
)
from core.logging import get_logger

logger = get_logger(__name__)


def ensure_distinct_weekdays(sessions: Iterable[ClassSession]) -> None:
    """Reject a selection that puts two sessions on the same weekday."""
    counts = Counter(session.weekday for session in sessions)
    clashes = sorted(day.value for day, count in counts.items() if count > 1)
    if clashes:
        raise ConflictException(
            message="Cannot select multiple sessions on the same day",
            error_code="SAME_DAY_SESSIONS",
            data={"weekdays": clashes},
        )


def validate_session_selection(program: Program, sessions: Sequence[ClassSession]) -> None:
    """Check a session selection against the program before any seat is taken."""
    if len(sessions) > program.sessions_per_week:
        raise ValidationException(
            message=f"{program.name} allows at most {program.sessions_per_week} session(s) per week",
        )
    inactive = [s.id for s in sessions if not s.is_active]
    if inactive:
        raise ValidationException(
            message="One or more selected sessions are no longer active",
            data={"session_ids": inactive},
        )
    ensure_distinct_weekdays(sessions)


class CapacityService:
    """Reserve and release seats, raising domain errors on failure."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def reserve(
        self,
        model: Type[CapacityMixin],
        slot_id: str,
        pool: SeatPool = SeatPool.REGULAR,
    ) -> None:
        pool = SeatPool(pool)
        if not await model.reserve_slot(self.db_session, slot_id, pool):
            logger.info(f"No {pool.value} seat left on {model.__tablename__} {slot_id}")
            raise CapacityUnavailableException(
                message=f"No available {pool.value} slots",
                data={"slot_id": slot_id, "pool": pool.value},
            )

    async def release(
        self,
        model: Type[CapacityMixin],
        slot_id: str,
        pool: SeatPool = SeatPool.REGULAR,
    ) -> None:
        pool = SeatPool(pool)
        if not await model.release_slot(self.db_session, slot_id, pool):
            logger.warning(
                f"Release on full {pool.value} pool of {model.__tablename__} {slot_id}"
            )
            raise ConflictException(
                message=f"Cannot cancel {pool.value} slot - capacity would exceed maximum",
                data={"slot_id": slot_id, "pool": pool.value},
            )

    async def resize(
        self,
        model: Type[CapacityMixin],
        slot_id: str,
        new_total: int,
        pool: SeatPool = SeatPool.REGULAR,
    ) -> None:
        if new_total < 0:
            raise ValidationException(message="Capacity cannot be negative")
        await model.resize_pool(self.db_session, slot_id, new_total, SeatPool(pool))

    async def reserve_sessions(
        self, sessions: Sequence[ClassSession], pool: SeatPool = SeatPool.REGULAR
    ) -> List[str]:
        """
        Take one seat in each session.

        Same-weekday selections are rejected before anything is reserved. If a
        later session is full, seats taken earlier in the call are only undone
        by rolling back the surrounding transaction.
        """
        ensure_distinct_weekdays(sessions)
        reserved = []
        for session in sessions:
            await self.reserve(ClassSession, session.id, pool)
            reserved.append(session.id)
        return reserved

    async def release_sessions(
        self, session_ids: Iterable[str], pool: SeatPool = SeatPool.REGULAR
    ) -> List[str]:
        """Give back one seat per session; sessions already full are skipped and logged."""
        released = []
        for session_id in session_ids:
            if await ClassSession.release_slot(self.db_session, session_id, SeatPool(pool)):
                released.append(session_id)
            else:
                logger.warning(f"Session {session_id} already at full capacity on release")
        return released
