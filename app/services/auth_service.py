from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.password_reset import PasswordReset
from app.models.user import Role, User
from app.schemas.user import TokenResponse, UserCreate, UserResponse
from app.tasks.email_tasks import send_password_reset_email
from app.utils.dates import utcnow
from app.utils.security import create_tokens, decode_token, hash_password, verify_password
from core.config import config
from core.exceptions.base import (
    BadRequestException,
    ForbiddenException,
    UnauthorizedException,
)
from core.logging import get_logger

logger = get_logger(__name__)

# Accounts each role may create
CREATABLE_ROLES = {
    Role.OWNER: set(Role),
    Role.ADMIN: {Role.LOCATION_MANAGER, Role.TEACHER, Role.PARENT},
}


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    def _tokens(self, user: User) -> TokenResponse:
        access_token, refresh_token = create_tokens(user.id, user.role.value)
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            user=UserResponse.model_validate(user),
        )

    async def login(self, login: str, password: str) -> Tuple[User, TokenResponse]:
        """Authenticate with an email address (or a student username) and password."""
        user = await User.get_by_login(self.db_session, login)

        if not user or not user.hashed_password:
            raise UnauthorizedException(message="Invalid email or password")

        if not verify_password(password, user.hashed_password):
            raise UnauthorizedException(message="Invalid email or password")

        if not user.is_active:
            raise UnauthorizedException(message="Account is deactivated")

        # Update last login
        user.last_login = datetime.now(timezone.utc)
        await self.db_session.commit()

        return user, self._tokens(user)

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Refresh access token using refresh token."""
        payload = decode_token(refresh_token)

        if payload.get("type") != "refresh":
            raise UnauthorizedException(message="Invalid token type")

        user = await User.get_by_id(self.db_session, payload.get("sub"))

        if not user or not user.is_active:
            raise UnauthorizedException(message="User not found or inactive")

        return self._tokens(user)

    async def create_user(self, data: UserCreate, actor: User) -> User:
        """Create a staff or parent account. Admins stay within their own location."""
        if data.role not in CREATABLE_ROLES.get(actor.role, set()):
            raise ForbiddenException(message=f"Not allowed to create {data.role.value} accounts")
        location_id = data.location_id
        if actor.role == Role.ADMIN:
            if location_id and location_id != actor.location_id:
                raise ForbiddenException(message="Admins can only add users to their own location")
            location_id = actor.location_id

        if await User.get_by_email(self.db_session, data.email):
            raise BadRequestException(message="Email already registered")

        return await User.create_user(
            db_session=self.db_session,
            email=data.email,
            first_name=data.first_name,
            last_name=data.last_name,
            hashed_password=hash_password(data.password),
            role=data.role,
            phone=data.phone,
            location_id=location_id,
            parent_id=data.parent_id,
        )

    async def forgot_password(self, email: str) -> Optional[PasswordReset]:
        """
        Mail a reset code to an active account.

        Returns None, sending nothing, for unknown or inactive addresses; the
        caller answers the same way in both cases.
        """
        user = await User.get_by_email(self.db_session, email)
        if not user or not user.is_active or user.is_deleted:
            logger.info("Password reset requested for an unknown or inactive account")
            return None

        reset = await PasswordReset.create_for_user(self.db_session, user.id)
        logger.info(f"Password reset code created for user: {user.id}")
        try:
            send_password_reset_email.delay(
                email=user.email,
                user_name=user.full_name,
                code=reset.code,
                expires_in_hours=config.PASSWORD_RESET_TTL_HOURS,
            )
        except Exception as e:
            logger.warning(f"Failed to queue password reset email: {e}")
        return reset

    async def verify_reset_code(self, email: str, code: str) -> str:
        """Exchange a mailed code for the reset token. Wrong codes count toward a lock."""
        user = await User.get_by_email(self.db_session, email)
        reset = await PasswordReset.get_open_for_user(self.db_session, user.id) if user else None
        if reset is None or not reset.is_open():
            raise BadRequestException(message="Invalid or expired code")

        if not reset.matches(code):
            reset.failed_attempts += 1
            await self.db_session.commit()
            logger.info(f"Wrong password reset code for user: {user.id} ({reset.failed_attempts})")
            raise BadRequestException(message="Invalid or expired code")

        reset.verified_at = utcnow()
        await self.db_session.commit()
        return reset.token

    async def reset_password(self, reset_token: str, new_password: str) -> User:
        """Set a new password with a verified reset token; the token works once."""
        reset = await PasswordReset.get_by_token(self.db_session, reset_token)
        if reset is None or reset.verified_at is None or not reset.is_open():
            raise BadRequestException(message="Invalid or expired reset request")

        user = await User.get_by_id(self.db_session, reset.user_id)
        if not user or not user.is_active:
            raise BadRequestException(message="User not found or inactive")

        user.hashed_password = hash_password(new_password)
        reset.used_at = utcnow()
        await self.db_session.commit()
        return user
