import enum
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, TimestampMixin, SoftDeleteMixin, LocationMixin


class Role(str, enum.Enum):
    """User roles in the system."""
    OWNER = "owner"
    ADMIN = "admin"
    LOCATION_MANAGER = "location_manager"
    TEACHER = "teacher"
    PARENT = "parent"
    STUDENT = "student"


STAFF_ROLES = (Role.ADMIN, Role.LOCATION_MANAGER, Role.TEACHER)


class User(Base, TimestampMixin, SoftDeleteMixin, LocationMixin):
    """User model with class methods for database operations."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, unique=True
    )
    hashed_password: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=True, values_callable=lambda x: [e.value for e in x]),
        default=Role.PARENT,
        nullable=False
    )
    # Students point at the parent account that pays for them
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    parent: Mapped[Optional["User"]] = relationship(
        "User", remote_side="User.id", back_populates="students"
    )
    students: Mapped[List["User"]] = relationship("User", back_populates="parent")

    @property
    def full_name(self) -> str:
        """Get user's full name."""
        return f"{self.first_name} {self.last_name}".strip()

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalize emails so uniqueness checks are case-insensitive."""
        return email.strip().lower()

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["User"]:
        """Get user by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_email(
        cls, db_session: AsyncSession, email: str
    ) -> Optional["User"]:
        """Get user by email."""
        result = await db_session.execute(
            select(cls).where(cls.email == cls.normalize_email(email))
        )
        return result.scalars().first()

    @classmethod
    async def get_by_login(
        cls, db_session: AsyncSession, login: str
    ) -> Optional["User"]:
        """Get user by email or, for students, by username."""
        if "@" in login:
            return await cls.get_by_email(db_session, login)
        result = await db_session.execute(
            select(cls).where(func.lower(cls.username) == login.strip().lower())
        )
        return result.scalars().first()

    @classmethod
    async def username_exists(cls, db_session: AsyncSession, username: str) -> bool:
        result = await db_session.execute(
            select(cls.id).where(cls.username == username)
        )
        return result.first() is not None

    @classmethod
    async def get_owners(cls, db_session: AsyncSession) -> Sequence["User"]:
        """Get all active owner accounts."""
        result = await db_session.execute(
            select(cls).where(
                cls.role == Role.OWNER,
                cls.is_active == True,
                cls.is_deleted == False,
            )
        )
        return result.scalars().all()

    @classmethod
    async def create_user(
        cls,
        db_session: AsyncSession,
        email: str,
        first_name: str,
        last_name: str,
        hashed_password: Optional[str] = None,
        role: Role = Role.PARENT,
        phone: Optional[str] = None,
        location_id: Optional[str] = None,
        username: Optional[str] = None,
        parent_id: Optional[str] = None,
        commit: bool = True,
    ) -> "User":
        """Create a new user.

        Pass ``commit=False`` to only flush, when the user is part of a larger
        transaction.
        """
        user = cls(
            email=cls.normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            hashed_password=hashed_password,
            role=role,
            phone=phone,
            location_id=location_id,
            username=username,
            parent_id=parent_id,
        )
        db_session.add(user)
        if commit:
            await db_session.commit()
            await db_session.refresh(user)
        else:
            await db_session.flush()
        return user
