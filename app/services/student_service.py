"""Student accounts managed by their parents."""

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import Role, User
from app.schemas.user import StudentCreate
from app.services.enrollment_orchestrator import generate_username
from app.services.policy import Action, ensure_access
from app.utils.security import hash_password
from core.config import config
from core.exceptions.base import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from core.logging import get_logger

logger = get_logger(__name__)

# Roles that may add a student for some parent
STUDENT_MANAGERS = (Role.PARENT, Role.ADMIN, Role.OWNER)


class StudentService:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def _parent_for(self, actor: User, parent_id: Optional[str]) -> User:
        """The parent account a request acts on; parents only ever act on themselves."""
        if actor.role == Role.PARENT:
            if parent_id and parent_id != actor.id:
                raise ForbiddenException(message="You can only manage your own students")
            return actor
        if not parent_id:
            raise ValidationException(message="parent_id is required")
        parent = await User.get_by_id(self.db_session, parent_id)
        if parent is None or parent.role != Role.PARENT or parent.is_deleted:
            raise NotFoundException(message="Parent not found")
        ensure_access(actor, parent, Action.READ)
        return parent

    async def add_student(self, data: StudentCreate, actor: User) -> User:
        """
        Create a student under a parent.

        The student gets a generated username, the parent's location and, unless
        one is given, an email on STUDENT_EMAIL_DOMAIN.
        """
        if actor.role not in STUDENT_MANAGERS:
            raise ForbiddenException(message="Only parents or admins can add students")
        parent = await self._parent_for(actor, data.parent_id)

        if data.email and await User.get_by_email(self.db_session, data.email):
            raise ConflictException(message="Email is already in use")

        username = await generate_username(self.db_session, data.first_name, data.last_name)
        student = await User.create_user(
            db_session=self.db_session,
            email=data.email or f"{username}@{config.STUDENT_EMAIL_DOMAIN}",
            first_name=data.first_name,
            last_name=data.last_name,
            hashed_password=hash_password(data.password),
            role=Role.STUDENT,
            phone=data.phone,
            location_id=parent.location_id,
            username=username,
            parent_id=parent.id,
        )
        logger.info(f"Student {student.id} ({username}) added for parent {parent.id} by {actor.id}")
        return student

    async def list_for_parent(self, actor: User, parent_id: Optional[str] = None) -> Sequence[User]:
        if actor.role not in (Role.PARENT, Role.ADMIN, Role.LOCATION_MANAGER, Role.OWNER):
            raise ForbiddenException(message="You can only view your own students")
        parent = await self._parent_for(actor, parent_id)
        result = await self.db_session.execute(
            select(User)
            .where(
                User.parent_id == parent.id,
                User.role == Role.STUDENT,
                User.is_deleted == False,
            )
            .order_by(User.created_at)
        )
        return result.scalars().all()

    async def get_student(self, student_id: str, actor: User) -> User:
        student = await User.get_by_id(self.db_session, student_id)
        if student is None or student.role != Role.STUDENT or student.is_deleted:
            raise NotFoundException(message="Student not found")
        ensure_access(actor, student, Action.READ)
        return student
