from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_catalog_cache, get_current_manager, get_gateways
from app.models.enrollment import PaymentMethodType
from app.models.user import User
from app.schemas.enrollment import EnrollmentResponse
from app.schemas.registration import (
    RegistrationCreate,
    RegistrationFinalize,
    RegistrationFinalizeResponse,
    RegistrationResponse,
)
from app.services.catalog_cache import CatalogCache
from app.services.enrollment_orchestrator import EnrollmentOrchestrator
from app.services.payment_gateway import PaymentGateway
from app.services.registration_service import RegistrationInput, RegistrationService
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/registrations", tags=["Registrations"])


@router.post("/", response_model=RegistrationResponse, status_code=201)
async def create_registration(
    data: RegistrationCreate,
    db_session: AsyncSession = Depends(get_db),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> RegistrationResponse:
    """
    Start a registration and price it.

    Public endpoint - no authentication required. The parent receives an email
    with a link to finish setting up the account.
    """
    logger.info(f"Create registration request for {data.parent_email}, program: {data.program_id}")
    registration = await RegistrationService(db_session, catalog).create(
        RegistrationInput(**data.model_dump())
    )
    return RegistrationResponse.model_validate(registration)


@router.get("/", response_model=List[RegistrationResponse])
async def list_registrations(
    is_complete: Optional[bool] = None,
    email: Optional[str] = None,
    program_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> List[RegistrationResponse]:
    """Unexpired registrations, newest first."""
    logger.info(f"List registrations request by user: {current_user.id}")
    registrations = await RegistrationService(db_session, catalog).list_for(
        current_user, is_complete=is_complete, email=email, program_id=program_id
    )
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.get("/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: str,
    db_session: AsyncSession = Depends(get_db),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> RegistrationResponse:
    """
    Get a registration by ID while it is unexpired.

    Public endpoint - the ID is the secret sent to the parent.
    """
    logger.info(f"Get registration request for id: {registration_id}")
    registration = await RegistrationService(db_session, catalog).get(registration_id)
    return RegistrationResponse.model_validate(registration)


@router.delete("/{registration_id}")
async def delete_registration(
    registration_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> dict:
    logger.info(f"Delete registration request by user: {current_user.id}, id: {registration_id}")
    await RegistrationService(db_session, catalog).delete(registration_id, current_user)
    return {"message": "Registration deleted successfully"}


@router.post("/{registration_id}/finalize", response_model=RegistrationFinalizeResponse)
async def finalize_registration(
    registration_id: str,
    data: RegistrationFinalize,
    db_session: AsyncSession = Depends(get_db),
    catalog: CatalogCache = Depends(get_catalog_cache),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> RegistrationFinalizeResponse:
    """
    Create the parent and student accounts and enroll the student.

    Public endpoint - no authentication required. Accounts, seats, the discount
    and the payment succeed or fail together.
    """
    logger.info(f"Finalize registration request for id: {registration_id}")
    orchestrator = EnrollmentOrchestrator(db_session, catalog, gateways)
    attempt = await orchestrator.finalize_registration(
        registration_id, data.password, payment_method_id=data.payment_method_id
    )
    enrollment = attempt.enrollment
    await db_session.refresh(enrollment)
    student = await User.get_by_id(db_session, enrollment.student_id)
    return RegistrationFinalizeResponse(
        registration_id=registration_id,
        parent_id=enrollment.parent_id,
        student_id=student.id,
        student_username=student.username,
        enrollment=EnrollmentResponse.model_validate(enrollment),
        approval_url=attempt.approval_url,
    )
