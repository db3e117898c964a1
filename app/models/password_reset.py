"""Password reset codes for the forgot password flow."""

import secrets
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from app.utils.dates import as_utc, utcnow
from core.config import config
from core.db import Base, TimestampMixin


class PasswordReset(Base, TimestampMixin):
    """
    A six digit code mailed to the user, exchanged for a one-time reset token.

    The code is verified first; only a verified, unexpired and unused request
    may change the password. Requests expire PASSWORD_RESET_TTL_HOURS after
    creation and are locked after PASSWORD_RESET_MAX_ATTEMPTS wrong codes.
    """

    __tablename__ = "password_resets"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @staticmethod
    def generate_code() -> str:
        return f"{secrets.randbelow(900000) + 100000}"

    @classmethod
    async def create_for_user(
        cls, db_session: AsyncSession, user_id: str, now: Optional[datetime] = None
    ) -> "PasswordReset":
        """Start a new request for the user, closing any earlier open one."""
        now = now or utcnow()
        await db_session.execute(
            update(cls)
            .where(cls.user_id == user_id, cls.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        reset = cls(
            user_id=user_id,
            code=cls.generate_code(),
            token=secrets.token_urlsafe(32),
            expires_at=now + timedelta(hours=config.PASSWORD_RESET_TTL_HOURS),
        )
        db_session.add(reset)
        await db_session.commit()
        await db_session.refresh(reset)
        return reset

    @classmethod
    async def get_open_for_user(
        cls, db_session: AsyncSession, user_id: str
    ) -> Optional["PasswordReset"]:
        """The user's newest request that has not been used or closed."""
        result = await db_session.execute(
            select(cls)
            .where(cls.user_id == user_id, cls.used_at.is_(None))
            .order_by(cls.created_at.desc())
        )
        return result.scalars().first()

    @classmethod
    async def get_by_token(
        cls, db_session: AsyncSession, token: str
    ) -> Optional["PasswordReset"]:
        result = await db_session.execute(select(cls).where(cls.token == token))
        return result.scalars().first()

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """Not used, not locked and not expired."""
        if self.used_at is not None:
            return False
        if self.failed_attempts >= config.PASSWORD_RESET_MAX_ATTEMPTS:
            return False
        return (now or utcnow()) < as_utc(self.expires_at)

    def matches(self, code: str) -> bool:
        return secrets.compare_digest(self.code, code.strip())
