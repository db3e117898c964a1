"""Student progress rollups: creation at enrollment and bottom-up recompute."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.program import Module, Program, Topic
from app.models.progress import (
    CompletedTopic,
    ModuleProgress,
    ProgramProgress,
    completion_percentage,
)
from app.services.catalog_cache import ProgramSnapshot
from app.utils.dates import utcnow
from core.exceptions.base import NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StudentProgress:
    programs: List[ProgramProgress] = field(default_factory=list)
    modules: List[ModuleProgress] = field(default_factory=list)
    completed_topics: List[CompletedTopic] = field(default_factory=list)


class ProgressService:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def create_for_enrollment(
        self, student_id: str, program: ProgramSnapshot, enrollment_id: str
    ) -> ProgramProgress:
        """
        Add the program rollup and one module rollup per module.

        Rows left from an earlier enrollment in the same program are re-linked
        rather than duplicated. Only flushes; the enrollment transaction commits.
        """
        program_progress = await ProgramProgress.get(self.db_session, student_id, program.id)
        if program_progress is None:
            program_progress = ProgramProgress(
                student_id=student_id,
                program_id=program.id,
                completed_modules=0,
                completion_percentage=Decimal("0.00"),
            )
            self.db_session.add(program_progress)
        program_progress.enrollment_id = enrollment_id
        program_progress.total_modules = program.total_modules

        existing = {
            row.module_id: row
            for row in await ModuleProgress.get_for_program(
                self.db_session, student_id, program.id
            )
        }
        for module in program.modules:
            module_progress = existing.get(module.id)
            if module_progress is None:
                module_progress = ModuleProgress(
                    student_id=student_id,
                    module_id=module.id,
                    program_id=program.id,
                    completed_topics=0,
                    completion_percentage=Decimal("0.00"),
                )
                self.db_session.add(module_progress)
            module_progress.enrollment_id = enrollment_id
            module_progress.total_topics = module.total_topics

        await self.db_session.flush()
        logger.info(
            f"Progress records ready for student {student_id} in program {program.id} "
            f"({program.total_modules} modules)"
        )
        return program_progress

    async def delete_for_enrollment(self, enrollment_id: str) -> None:
        await self.db_session.execute(
            delete(ModuleProgress).where(ModuleProgress.enrollment_id == enrollment_id)
        )
        await self.db_session.execute(
            delete(ProgramProgress).where(ProgramProgress.enrollment_id == enrollment_id)
        )

    async def mark_topic_complete(
        self, student_id: str, topic_id: str, score: Optional[Decimal] = None
    ) -> CompletedTopic:
        """Record a finished topic, then refresh its module and program rollups."""
        topic = await Topic.get_by_id(self.db_session, topic_id)
        if topic is None:
            raise NotFoundException(message="Topic not found")

        completed = await CompletedTopic.get(self.db_session, student_id, topic_id)
        if completed is None:
            completed = CompletedTopic(
                student_id=student_id, topic_id=topic_id, module_id=topic.module_id
            )
            self.db_session.add(completed)
        completed.score = score
        completed.completed_at = utcnow()
        await self.db_session.flush()

        module = await self.db_session.get(Module, topic.module_id)
        await self._recompute_module(student_id, module)
        await self._recompute_program(student_id, module.program_id)
        return completed

    async def _recompute_module(self, student_id: str, module: Module) -> ModuleProgress:
        total = len(module.topics)
        done = await CompletedTopic.count_for_module(self.db_session, student_id, module.id)

        progress = await ModuleProgress.get(self.db_session, student_id, module.id)
        if progress is None:
            progress = ModuleProgress(
                student_id=student_id, module_id=module.id, program_id=module.program_id
            )
            self.db_session.add(progress)
        progress.total_topics = total
        progress.completed_topics = min(done, total)
        progress.completion_percentage = completion_percentage(progress.completed_topics, total)
        progress.marks = await CompletedTopic.average_score_for_module(
            self.db_session, student_id, module.id
        )
        await self.db_session.flush()
        return progress

    async def _recompute_program(self, student_id: str, program_id: str) -> ProgramProgress:
        program = await Program.get_by_id(self.db_session, program_id)
        total = len(program.modules)
        modules = await ModuleProgress.get_for_program(self.db_session, student_id, program_id)
        done = sum(1 for row in modules if row.is_complete)

        progress = await ProgramProgress.get(self.db_session, student_id, program_id)
        if progress is None:
            progress = ProgramProgress(student_id=student_id, program_id=program_id)
            self.db_session.add(progress)
        progress.total_modules = total
        progress.completed_modules = done
        progress.completion_percentage = completion_percentage(done, total)
        await self.db_session.flush()
        return progress

    async def get_student_progress(self, student_id: str) -> StudentProgress:
        programs = await ProgramProgress.get_for_student(self.db_session, student_id)
        modules = await self.db_session.execute(
            select(ModuleProgress).where(ModuleProgress.student_id == student_id)
        )
        topics = await self.db_session.execute(
            select(CompletedTopic)
            .where(CompletedTopic.student_id == student_id)
            .order_by(CompletedTopic.completed_at)
        )
        return StudentProgress(
            programs=list(programs),
            modules=list(modules.scalars().all()),
            completed_topics=list(topics.scalars().all()),
        )
