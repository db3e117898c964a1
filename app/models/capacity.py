"""Seat counters shared by class sessions and schedules."""

import enum
from typing import Tuple

from sqlalchemy import Integer, case, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column


class SeatPool(str, enum.Enum):
    """Independent seat pools of a slot."""

    REGULAR = "regular"
    DEMO = "demo"


class CapacityMixin:
    """
    Regular and demo seat pools with atomic booking operations.

    Every mutation is a single conditional UPDATE, so concurrent requests on the
    same row can never push a pool below zero or above its total. Statements only
    flush; the caller owns the transaction and commits.
    """

    total_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    available_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    demo_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_demo_capacity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    @classmethod
    def _pool_columns(cls, pool: SeatPool) -> Tuple:
        if SeatPool(pool) == SeatPool.DEMO:
            return cls.available_demo_capacity, cls.demo_capacity
        return cls.available_capacity, cls.total_capacity

    @classmethod
    async def reserve_slot(
        cls, db_session: AsyncSession, slot_id: str, pool: SeatPool = SeatPool.REGULAR
    ) -> bool:
        """Take one seat. Returns False, changing nothing, if the pool is empty."""
        available, _ = cls._pool_columns(pool)
        stmt = (
            update(cls)
            .where(cls.id == slot_id, available > 0)
            .values({available.key: available - 1})
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def release_slot(
        cls, db_session: AsyncSession, slot_id: str, pool: SeatPool = SeatPool.REGULAR
    ) -> bool:
        """Give one seat back. Returns False if the pool is already full."""
        available, total = cls._pool_columns(pool)
        stmt = (
            update(cls)
            .where(cls.id == slot_id, available < total)
            .values({available.key: available + 1})
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(stmt)
        return result.rowcount == 1

    @classmethod
    async def resize_pool(
        cls,
        db_session: AsyncSession,
        slot_id: str,
        new_total: int,
        pool: SeatPool = SeatPool.REGULAR,
    ) -> bool:
        """
        Change a pool's total, moving available by the same delta.

        The new available count is clamped to [0, new_total].
        """
        if new_total < 0:
            raise ValueError("Capacity cannot be negative")
        available, total = cls._pool_columns(pool)
        shifted = available + (new_total - total)
        stmt = (
            update(cls)
            .where(cls.id == slot_id)
            .values({
                total.key: new_total,
                available.key: case(
                    (shifted < 0, 0),
                    (shifted > new_total, new_total),
                    else_=shifted,
                ),
            })
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(stmt)
        return result.rowcount == 1

    def available_in(self, pool: SeatPool) -> int:
        if SeatPool(pool) == SeatPool.DEMO:
            return self.available_demo_capacity
        return self.available_capacity

    @property
    def enrolled_count(self) -> int:
        return self.total_capacity - self.available_capacity

    @property
    def demo_enrolled_count(self) -> int:
        return self.demo_capacity - self.available_demo_capacity
