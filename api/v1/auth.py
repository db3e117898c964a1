from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_current_user
from app.models.user import User
from app.schemas.user import (
    ForgotPasswordRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    VerifyResetCodeRequest,
    VerifyResetCodeResponse,
)
from app.services.auth_service import AuthService
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

RESET_REQUESTED_MESSAGE = (
    "If your email is registered, you will receive a password reset code shortly"
)


@router.post("/token", response_model=TokenResponse)
async def login_for_swagger(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db_session: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """
    OAuth2 compatible token endpoint for Swagger UI.

    The username field takes an email address or a student username.
    """
    logger.info(f"OAuth2 login attempt for: {form_data.username}")
    service = AuthService(db_session)
    user, tokens = await service.login(form_data.username, form_data.password)
    logger.info(f"User logged in successfully: {user.id}")
    return tokens


@router.post("/login", response_model=TokenResponse)
async def login(
    data: UserLogin,
    db_session: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Authenticate with a JSON body. Use this for the frontend application."""
    logger.info(f"Login attempt for: {data.login}")
    service = AuthService(db_session)
    user, tokens = await service.login(data.login, data.password)
    logger.info(f"User logged in successfully: {user.id}")
    return tokens


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshTokenRequest,
    db_session: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Refresh access token using refresh token."""
    logger.info("Token refresh request")
    service = AuthService(db_session)
    return await service.refresh_token(data.refresh_token)


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Get the authenticated user's profile."""
    logger.info(f"Get profile request for user: {current_user.id}")
    return UserResponse.model_validate(current_user)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    data: UserCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
) -> UserResponse:
    """
    Create a staff or parent account.

    Owners may create any role; admins may add location managers, teachers and
    parents at their own location.
    """
    logger.info(f"Create user request by {current_user.id}: {data.email} ({data.role.value})")
    user = await AuthService(db_session).create_user(data, current_user)
    logger.info(f"User created: {user.id}")
    return UserResponse.model_validate(user)


@router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest,
    db_session: AsyncSession = Depends(get_db),
) -> dict:
    """
    Email a six digit reset code.

    Always answers with the same message, whether or not the account exists.
    """
    logger.info(f"Forgot password request for email: {data.email}")
    await AuthService(db_session).forgot_password(data.email)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/verify-reset-code", response_model=VerifyResetCodeResponse)
async def verify_reset_code(
    data: VerifyResetCodeRequest,
    db_session: AsyncSession = Depends(get_db),
) -> VerifyResetCodeResponse:
    """Check the mailed code and hand out the one-time reset token."""
    logger.info(f"Verify reset code request for email: {data.email}")
    reset_token = await AuthService(db_session).verify_reset_code(data.email, data.code)
    return VerifyResetCodeResponse(message="Code verified successfully", reset_token=reset_token)


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db_session: AsyncSession = Depends(get_db),
) -> dict:
    logger.info("Reset password request with token")
    user = await AuthService(db_session).reset_password(data.reset_token, data.new_password)
    logger.info(f"Password reset successfully for user: {user.id}")
    return {"message": "Password reset successfully"}
