"""Run-locks for scheduled jobs."""

from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.utils.dates import utcnow
from core.db import Base


class JobLock(Base):
    """
    One row per job name. A lock is held while ``locked_until`` is in the future;
    a crashed holder therefore frees the job once the TTL elapses.
    """

    __tablename__ = "job_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    holder: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    locked_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @classmethod
    async def acquire(
        cls,
        db_session: AsyncSession,
        name: str,
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Take the lock. Returns a holder token, or None if someone else holds it."""
        now = now or utcnow()
        holder = str(uuid4())
        until = now + timedelta(seconds=ttl_seconds)

        existing = await db_session.execute(select(cls.name).where(cls.name == name))
        if existing.first() is None:
            db_session.add(cls(name=name, holder=holder, locked_until=until))
            try:
                await db_session.commit()
                return holder
            except IntegrityError:
                # another worker inserted the row first; fall through to the update
                await db_session.rollback()

        result = await db_session.execute(
            update(cls)
            .where(
                cls.name == name,
                (cls.locked_until.is_(None)) | (cls.locked_until <= now),
            )
            .values(holder=holder, locked_until=until)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        return holder if result.rowcount == 1 else None

    @classmethod
    async def release(cls, db_session: AsyncSession, name: str, holder: str) -> bool:
        result = await db_session.execute(
            update(cls)
            .where(cls.name == name, cls.holder == holder)
            .values(holder=None, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        await db_session.commit()
        return result.rowcount == 1
