from typing import Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import (
    get_catalog_cache,
    get_current_admin,
    get_current_parent_or_admin,
    get_current_user,
    get_gateways,
)
from app.models.enrollment import Enrollment, PaymentMethodType, PaymentStatus
from app.models.user import User
from app.schemas.enrollment import (
    EnrollmentCheckoutResponse,
    EnrollmentCreate,
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollmentUpdate,
    ProcessPaymentRequest,
)
from app.services.catalog_cache import CatalogCache
from app.services.enrollment_orchestrator import (
    EnrollmentAttempt,
    EnrollmentOrchestrator,
    EnrollmentRequest,
)
from app.services.enrollment_service import EnrollmentService
from app.services.payment_gateway import PaymentGateway
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])


async def _reload(db_session: AsyncSession, enrollment: Enrollment) -> EnrollmentResponse:
    await db_session.refresh(enrollment)
    return EnrollmentResponse.model_validate(enrollment)


async def _checkout_response(
    db_session: AsyncSession, attempt: EnrollmentAttempt
) -> EnrollmentCheckoutResponse:
    return EnrollmentCheckoutResponse(
        enrollment=await _reload(db_session, attempt.enrollment),
        approval_url=attempt.approval_url,
    )


@router.post("/", response_model=EnrollmentCheckoutResponse, status_code=201)
async def create_enrollment(
    data: EnrollmentCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentCheckoutResponse:
    """
    Enroll a student directly.

    Parents enroll their own students; admins and owners enroll anyone they
    manage. Seats, the discount and the payment are handled as one unit: if any
    step fails nothing is kept. PayPal checkouts return an approval URL the
    payer must visit.
    """
    logger.info(
        f"Create enrollment request by user: {current_user.id}, "
        f"student: {data.student_id}, program: {data.program_id}"
    )
    orchestrator = EnrollmentOrchestrator(db_session, catalog, gateways)
    attempt = await orchestrator.enroll(
        EnrollmentRequest(**data.model_dump()), actor=current_user
    )
    logger.info(f"Enrollment created successfully: {attempt.enrollment.id}")
    return await _checkout_response(db_session, attempt)


@router.get("/", response_model=EnrollmentListResponse)
async def list_enrollments(
    payment_status: Optional[PaymentStatus] = None,
    location_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentListResponse:
    """List the enrollments the caller may see."""
    logger.info(f"List enrollments request by user: {current_user.id}")
    enrollments = await EnrollmentService(db_session, gateways).list_for(
        current_user, payment_status=payment_status, location_id=location_id
    )
    return EnrollmentListResponse(
        items=[EnrollmentResponse.model_validate(e) for e in enrollments],
        total=len(enrollments),
    )


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentResponse:
    logger.info(f"Get enrollment request for id: {enrollment_id} by user: {current_user.id}")
    enrollment = await EnrollmentService(db_session, gateways).get(enrollment_id, current_user)
    return EnrollmentResponse.model_validate(enrollment)


@router.patch("/{enrollment_id}", response_model=EnrollmentResponse)
async def update_enrollment(
    enrollment_id: str,
    data: EnrollmentUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentResponse:
    """
    Edit status, notes or the monthly billing fields.

    Requires admin or owner role.
    """
    logger.info(f"Update enrollment request by user: {current_user.id}, enrollment_id: {enrollment_id}")
    enrollment = await EnrollmentService(db_session, gateways).update(
        enrollment_id, current_user, **data.model_dump(exclude_unset=True)
    )
    return await _reload(db_session, enrollment)


@router.delete("/{enrollment_id}")
async def delete_enrollment(
    enrollment_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> dict:
    """
    Delete an enrollment with its progress, releasing its seats.

    Requires admin or owner role.
    """
    logger.info(f"Delete enrollment request by user: {current_user.id}, enrollment_id: {enrollment_id}")
    await EnrollmentService(db_session, gateways).delete(enrollment_id, current_user)
    return {"message": "Enrollment deleted successfully"}


@router.post("/{enrollment_id}/process-payment", response_model=EnrollmentCheckoutResponse)
async def process_payment(
    enrollment_id: str,
    data: ProcessPaymentRequest,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_parent_or_admin),
    catalog: CatalogCache = Depends(get_catalog_cache),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentCheckoutResponse:
    """Charge a pending, failed or suspended enrollment again."""
    logger.info(f"Process payment request by user: {current_user.id}, enrollment_id: {enrollment_id}")
    orchestrator = EnrollmentOrchestrator(db_session, catalog, gateways)
    attempt = await orchestrator.process_payment(
        enrollment_id, actor=current_user, payment_method_id=data.payment_method_id
    )
    return await _checkout_response(db_session, attempt)


@router.post("/{enrollment_id}/cancel-subscription", response_model=EnrollmentResponse)
async def cancel_subscription(
    enrollment_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin),
    gateways: Dict[PaymentMethodType, PaymentGateway] = Depends(get_gateways),
) -> EnrollmentResponse:
    """
    Stop a Marathon enrollment's monthly billing and free its seats.

    Requires admin or owner role.
    """
    logger.info(f"Cancel subscription request by user: {current_user.id}, enrollment_id: {enrollment_id}")
    enrollment = await EnrollmentService(db_session, gateways).cancel_subscription(
        enrollment_id, current_user
    )
    return await _reload(db_session, enrollment)
