from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_staff, get_current_user
from app.models.user import Role, User
from app.schemas.progress import (
    CompletedTopicResponse,
    ModuleProgressResponse,
    ProgramProgressResponse,
    StudentProgressResponse,
    TopicCompletionRequest,
)
from app.services.policy import Action, ensure_access
from app.services.progress_service import ProgressService
from core.db import get_db
from core.exceptions.base import BadRequestException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/progress", tags=["Progress"])


async def _get_student(db_session: AsyncSession, student_id: str) -> User:
    student = await User.get_by_id(db_session, student_id)
    if not student:
        raise NotFoundException(message="Student not found")
    if student.role != Role.STUDENT:
        raise BadRequestException(message="User is not a student")
    return student


@router.post("/topics/{topic_id}/complete", response_model=CompletedTopicResponse)
async def complete_topic(
    topic_id: str,
    data: TopicCompletionRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff),
) -> CompletedTopicResponse:
    """
    Mark a topic finished for a student, with an optional score.

    The module and program rollups are recomputed in the same commit.
    Requires teacher, location manager, admin or owner role.
    """
    logger.info(
        f"Complete topic {topic_id} for student {data.student_id} by user: {current_user.id}"
    )
    student = await _get_student(db_session, data.student_id)
    ensure_access(current_user, student, Action.READ)

    completed = await ProgressService(db_session).mark_topic_complete(
        student.id, topic_id, score=data.score
    )
    await db_session.commit()
    await db_session.refresh(completed)
    return CompletedTopicResponse.model_validate(completed)


@router.get("/students/{student_id}", response_model=StudentProgressResponse)
async def get_student_progress(
    student_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> StudentProgressResponse:
    """Program, module and topic progress of one student."""
    logger.info(f"Get progress for student {student_id} by user: {current_user.id}")
    student = await _get_student(db_session, student_id)
    ensure_access(current_user, student, Action.READ)

    progress = await ProgressService(db_session).get_student_progress(student.id)
    return StudentProgressResponse(
        programs=[ProgramProgressResponse.model_validate(p) for p in progress.programs],
        modules=[ModuleProgressResponse.model_validate(m) for m in progress.modules],
        completed_topics=[
            CompletedTopicResponse.model_validate(t) for t in progress.completed_topics
        ],
    )
