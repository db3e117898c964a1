from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_catalog_cache, get_current_owner, get_current_user
from app.models.location import Location, LocationOffering, LocationPriceOverride
from app.models.program import Offering
from app.models.user import User
from app.schemas.location import (
    LocationCreate,
    LocationOfferingSchema,
    LocationResponse,
    LocationUpdate,
    OfferingPricingResponse,
)
from app.services.catalog_cache import CatalogCache
from app.services.enrollment_orchestrator import resolve_price
from app.services.policy import Action, ensure_access
from core.config import config
from core.db import get_db
from core.exceptions.base import NotFoundException, ValidationException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/locations", tags=["Locations"])


async def _get_location(db_session: AsyncSession, location_id: str) -> Location:
    location = await Location.get_by_id(db_session, location_id)
    if not location:
        logger.warning(f"Location not found: {location_id}")
        raise NotFoundException(message="Location not found")
    return location


async def _build_offerings(
    db_session: AsyncSession, offerings: List[LocationOfferingSchema]
) -> List[LocationOffering]:
    seen = set()
    rows = []
    for item in offerings:
        if item.offering_id in seen:
            raise ValidationException(
                message="An offering can only be added once per location",
                data={"offering_id": item.offering_id},
            )
        seen.add(item.offering_id)
        if not await Offering.get_by_id(db_session, item.offering_id):
            raise NotFoundException(message=f"Offering not found: {item.offering_id}")
        rows.append(
            LocationOffering(
                offering_id=item.offering_id,
                price_overrides=[
                    LocationPriceOverride(**override.model_dump())
                    for override in item.price_overrides
                ],
            )
        )
    return rows


@router.get("/", response_model=List[LocationResponse])
async def list_locations(
    db_session: AsyncSession = Depends(get_db),
) -> List[LocationResponse]:
    """
    List all locations.

    Public endpoint - no authentication required.
    """
    logger.info("List locations request")
    locations = await Location.get_all(db_session)
    return [LocationResponse.model_validate(location) for location in locations]


@router.get("/{location_id}", response_model=LocationResponse)
async def get_location(
    location_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> LocationResponse:
    """Get a location with the offerings it carries."""
    logger.info(f"Get location request for id: {location_id}")
    return LocationResponse.model_validate(await _get_location(db_session, location_id))


@router.get("/{location_id}/pricing", response_model=OfferingPricingResponse)
async def get_location_pricing(
    location_id: str,
    program_id: str,
    plan_id: Optional[str] = None,
    db_session: AsyncSession = Depends(get_db),
    catalog: CatalogCache = Depends(get_catalog_cache),
) -> OfferingPricingResponse:
    """
    Price and tax charged at this location for a program, or a plan of a
    Marathon program. Location overrides win over catalog values.
    """
    logger.info(f"Pricing request at {location_id} for program {program_id}, plan {plan_id}")
    location = await _get_location(db_session, location_id)
    program = await catalog.get_program(db_session, program_id)
    if program is None:
        raise NotFoundException(message="Program not found")
    offering = await catalog.get_offering(db_session, program.offering_id)
    if offering is None:
        raise NotFoundException(message="Offering not found")
    plan = None
    if plan_id:
        plan = offering.find_plan(plan_id)
        if plan is None:
            raise NotFoundException(message="Plan not found for this offering")

    pricing = resolve_price(
        location, offering, program, plan, Decimal(str(config.ENROLLMENT_TAX_PERCENT))
    )
    return OfferingPricingResponse(
        location_id=location.id,
        offering_id=offering.id,
        plan_id=plan.id if plan else None,
        program_id=program.id,
        price=pricing.price,
        tax_percent=pricing.tax_percent,
        overridden=pricing.overridden,
    )


@router.post("/", response_model=LocationResponse, status_code=201)
async def create_location(
    data: LocationCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_owner),
) -> LocationResponse:
    """
    Create a location.

    Requires owner role.
    """
    logger.info(f"Create location request by user: {current_user.id}, name: {data.name}")
    location = Location(
        **data.model_dump(exclude={"offerings"}),
        offerings=await _build_offerings(db_session, data.offerings),
    )
    db_session.add(location)
    await db_session.commit()
    location = await _get_location(db_session, location.id)
    logger.info(f"Location created successfully: {location.id}")
    return LocationResponse.model_validate(location)


@router.put("/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: str,
    data: LocationUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> LocationResponse:
    """
    Update a location.

    Owners may update any location; admins and location managers only their own.
    """
    logger.info(f"Update location request by user: {current_user.id}, location_id: {location_id}")
    location = await _get_location(db_session, location_id)
    ensure_access(current_user, location, Action.UPDATE)

    update_data = data.model_dump(exclude_unset=True, exclude={"offerings"})
    for field, value in update_data.items():
        setattr(location, field, value)

    if data.offerings is not None:
        offerings = await _build_offerings(db_session, data.offerings)
        # old rows go first; (location, offering) is unique
        location.offerings.clear()
        await db_session.flush()
        location.offerings.extend(offerings)

    await db_session.commit()
    await db_session.refresh(location)
    logger.info(f"Location updated successfully: {location_id}")
    return LocationResponse.model_validate(location)


@router.delete("/{location_id}")
async def delete_location(
    location_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_owner),
) -> dict:
    """
    Soft delete a location.

    Requires owner role.
    """
    logger.info(f"Delete location request by user: {current_user.id}, location_id: {location_id}")
    location = await _get_location(db_session, location_id)
    location.soft_delete()
    location.is_active = False
    await db_session.commit()
    logger.info(f"Location deleted successfully: {location_id}")
    return {"message": "Location deleted successfully"}
