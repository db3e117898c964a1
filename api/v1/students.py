from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_parent_or_admin, get_current_user
from app.models.user import User
from app.schemas.user import StudentCreate, UserResponse
from app.services.student_service import StudentService
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/students", tags=["Students"])


@router.post("/", response_model=UserResponse, status_code=201)
async def add_student(
    data: StudentCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
) -> UserResponse:
    """
    Add a student account.

    Parents add students to their own account; admins and owners name the
    parent with ``parent_id``.
    """
    logger.info(f"Add student request by {current_user.id}: {data.first_name} {data.last_name}")
    student = await StudentService(db_session).add_student(data, current_user)
    return UserResponse.model_validate(student)


@router.get("/", response_model=List[UserResponse])
async def list_students(
    parent_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[UserResponse]:
    """Students of a parent; parents always get their own."""
    logger.info(f"List students request by {current_user.id}, parent: {parent_id}")
    students = await StudentService(db_session).list_for_parent(current_user, parent_id)
    return [UserResponse.model_validate(s) for s in students]


@router.get("/{student_id}", response_model=UserResponse)
async def get_student(
    student_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    logger.info(f"Get student request by {current_user.id}: {student_id}")
    student = await StudentService(db_session).get_student(student_id, current_user)
    return UserResponse.model_validate(student)
