"""Student progress rollups."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, TimestampMixin


def completion_percentage(completed: int, total: int) -> Decimal:
    if total <= 0:
        return Decimal("0.00")
    return (Decimal(completed) * 100 / Decimal(total)).quantize(Decimal("0.01"))


class CompletedTopic(Base, TimestampMixin):
    __tablename__ = "completed_topics"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    topic_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("topics.id", ondelete="CASCADE"), nullable=False
    )
    module_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    score: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "topic_id", name="uq_completed_topics_student_topic"),
    )

    @classmethod
    async def get(
        cls, db_session: AsyncSession, student_id: str, topic_id: str
    ) -> Optional["CompletedTopic"]:
        result = await db_session.execute(
            select(cls).where(cls.student_id == student_id, cls.topic_id == topic_id)
        )
        return result.scalars().first()

    @classmethod
    async def count_for_module(
        cls, db_session: AsyncSession, student_id: str, module_id: str
    ) -> int:
        result = await db_session.execute(
            select(func.count(cls.id)).where(
                cls.student_id == student_id, cls.module_id == module_id
            )
        )
        return result.scalar() or 0

    @classmethod
    async def average_score_for_module(
        cls, db_session: AsyncSession, student_id: str, module_id: str
    ) -> Optional[Decimal]:
        result = await db_session.execute(
            select(func.avg(cls.score)).where(
                cls.student_id == student_id,
                cls.module_id == module_id,
                cls.score.is_not(None),
            )
        )
        value = result.scalar()
        return Decimal(str(value)).quantize(Decimal("0.01")) if value is not None else None


class ModuleProgress(Base, TimestampMixin):
    __tablename__ = "module_progress"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    module_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("modules.id", ondelete="CASCADE"), nullable=False
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=False, index=True
    )
    enrollment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("enrollments.id"), nullable=True, index=True
    )
    completed_topics: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_topics: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completion_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0.00"), nullable=False
    )
    marks: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "module_id", name="uq_module_progress_student_module"),
    )

    @classmethod
    async def get(
        cls, db_session: AsyncSession, student_id: str, module_id: str
    ) -> Optional["ModuleProgress"]:
        result = await db_session.execute(
            select(cls).where(cls.student_id == student_id, cls.module_id == module_id)
        )
        return result.scalars().first()

    @classmethod
    async def get_for_program(
        cls, db_session: AsyncSession, student_id: str, program_id: str
    ) -> Sequence["ModuleProgress"]:
        result = await db_session.execute(
            select(cls).where(cls.student_id == student_id, cls.program_id == program_id)
        )
        return result.scalars().all()

    @property
    def is_complete(self) -> bool:
        return self.total_topics > 0 and self.completed_topics >= self.total_topics


class ProgramProgress(Base, TimestampMixin):
    __tablename__ = "program_progress"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id"), nullable=False
    )
    enrollment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("enrollments.id"), nullable=True, index=True
    )
    completed_modules: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_modules: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completion_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0.00"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("student_id", "program_id", name="uq_program_progress_student_program"),
    )

    @classmethod
    async def get(
        cls, db_session: AsyncSession, student_id: str, program_id: str
    ) -> Optional["ProgramProgress"]:
        result = await db_session.execute(
            select(cls).where(cls.student_id == student_id, cls.program_id == program_id)
        )
        return result.scalars().first()

    @classmethod
    async def get_for_student(
        cls, db_session: AsyncSession, student_id: str
    ) -> Sequence["ProgramProgress"]:
        result = await db_session.execute(select(cls).where(cls.student_id == student_id))
        return result.scalars().all()
