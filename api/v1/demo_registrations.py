from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_manager, get_current_staff
from app.models.demo_registration import DemoStatus
from app.models.user import User
from app.schemas.demo_registration import (
    DemoRegistrationCreate,
    DemoRegistrationResponse,
    DemoRegistrationUpdate,
)
from app.services.demo_registration_service import (
    DemoRegistrationInput,
    DemoRegistrationService,
)
from core.db import get_db
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/demo-registrations", tags=["Demo Registrations"])


@router.post("/", response_model=DemoRegistrationResponse, status_code=201)
async def create_demo_registration(
    data: DemoRegistrationCreate,
    db_session: AsyncSession = Depends(get_db),
) -> DemoRegistrationResponse:
    """
    Book a free demo class.

    Public endpoint - no authentication required. Takes one seat from the demo
    pool of the chosen schedule or class session.
    """
    logger.info(f"Demo registration request for {data.parent_email}")
    registration = await DemoRegistrationService(db_session).create(
        DemoRegistrationInput(**data.model_dump())
    )
    return DemoRegistrationResponse.model_validate(registration)


@router.get("/", response_model=List[DemoRegistrationResponse])
async def list_demo_registrations(
    status: Optional[DemoStatus] = None,
    email: Optional[str] = None,
    demo_date: Optional[date] = Query(None, alias="date"),
    upcoming: bool = False,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff),
) -> List[DemoRegistrationResponse]:
    """Bookings by demo date. ``upcoming`` keeps future, non-cancelled ones."""
    logger.info(f"List demo registrations request by user: {current_user.id}")
    registrations = await DemoRegistrationService(db_session).list_for(
        current_user, status=status, email=email, on_date=demo_date, upcoming=upcoming
    )
    return [DemoRegistrationResponse.model_validate(r) for r in registrations]


@router.get("/{registration_id}", response_model=DemoRegistrationResponse)
async def get_demo_registration(
    registration_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_staff),
) -> DemoRegistrationResponse:
    registration = await DemoRegistrationService(db_session).get(registration_id, current_user)
    return DemoRegistrationResponse.model_validate(registration)


@router.put("/{registration_id}", response_model=DemoRegistrationResponse)
async def update_demo_registration(
    registration_id: str,
    data: DemoRegistrationUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> DemoRegistrationResponse:
    """Confirm, complete or cancel a booking, or move it to another date."""
    logger.info(f"Update demo registration {registration_id} by user: {current_user.id}")
    registration = await DemoRegistrationService(db_session).update(
        registration_id, current_user, **data.model_dump(exclude_unset=True)
    )
    return DemoRegistrationResponse.model_validate(registration)


@router.delete("/{registration_id}")
async def delete_demo_registration(
    registration_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> dict:
    logger.info(f"Delete demo registration {registration_id} by user: {current_user.id}")
    await DemoRegistrationService(db_session).delete(registration_id, current_user)
    return {"message": "Demo registration deleted successfully", "registration_id": registration_id}
