from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_manager, get_current_user
from app.models.discount import DiscountCode, DiscountUsage
from app.models.user import Role, User
from app.schemas.discount import (
    DiscountCodeCreate,
    DiscountCodeResponse,
    DiscountCodeUpdate,
    DiscountCodeValidate,
    DiscountRedemptionResponse,
    DiscountValidationResponse,
)
from app.services.discount_service import DiscountService
from app.services.policy import Action, can_access, ensure_access
from core.db import get_db
from core.exceptions.base import ConflictException, NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/discount-codes", tags=["Discounts"])


async def _get_code(db_session: AsyncSession, code_id: str) -> DiscountCode:
    discount = await DiscountCode.get_by_id(db_session, code_id)
    if not discount:
        raise NotFoundException(message="Discount code not found")
    return discount


@router.post("/validate", response_model=DiscountValidationResponse)
async def validate_discount_code(
    data: DiscountCodeValidate,
    db_session: AsyncSession = Depends(get_db),
) -> DiscountValidationResponse:
    """
    Check a code without using it.

    Public endpoint - no authentication required.
    """
    logger.info(f"Validate discount code request: {data.code}")
    result = await DiscountService(db_session).validate(data.code, data.location_id)
    return DiscountValidationResponse.model_validate(result)


@router.post("/apply", response_model=DiscountRedemptionResponse)
async def apply_discount_code(
    data: DiscountCodeValidate,
    db_session: AsyncSession = Depends(get_db),
) -> DiscountRedemptionResponse:
    """
    Count one use of a code.

    Public endpoint - no authentication required.
    """
    logger.info(f"Apply discount code request: {data.code}")
    result = await DiscountService(db_session).apply(data.code, data.location_id)
    await db_session.commit()
    return DiscountRedemptionResponse.model_validate(result)


@router.get("/", response_model=List[DiscountCodeResponse])
async def list_discount_codes(
    location_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[DiscountCodeResponse]:
    logger.info(f"List discount codes request by user: {current_user.id}")
    codes = await DiscountCode.get_filtered(
        db_session, location_id=location_id, is_active=is_active
    )
    return [
        DiscountCodeResponse.model_validate(c)
        for c in codes
        if can_access(current_user, c, Action.READ)
    ]


@router.get("/{code_id}", response_model=DiscountCodeResponse)
async def get_discount_code(
    code_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DiscountCodeResponse:
    logger.info(f"Get discount code request for id: {code_id}")
    discount = await _get_code(db_session, code_id)
    ensure_access(current_user, discount, Action.READ)
    return DiscountCodeResponse.model_validate(discount)


@router.post("/", response_model=DiscountCodeResponse, status_code=201)
async def create_discount_code(
    data: DiscountCodeCreate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> DiscountCodeResponse:
    """
    Create a discount code.

    Managers create codes for their own location; global codes are owner-only.
    """
    logger.info(f"Create discount code request by user: {current_user.id}, code: {data.code}")
    if await DiscountCode.get_by_code(db_session, data.code):
        raise ConflictException(message="Discount code already exists")

    location_id = data.location_id
    if location_id is None and current_user.role != Role.OWNER:
        location_id = current_user.location_id

    discount = DiscountCode(
        code=DiscountCode.normalize_code(data.code),
        description=data.description,
        percent=data.percent,
        usage=data.usage,
        max_uses=1 if data.usage == DiscountUsage.SINGLE else data.max_uses,
        current_uses=0,
        expire_date=data.expire_date,
        location_id=location_id,
        created_by_id=current_user.id,
    )
    ensure_access(current_user, discount, Action.CREATE)
    db_session.add(discount)
    await db_session.commit()
    await db_session.refresh(discount)
    logger.info(f"Discount code created: {discount.code}")
    return DiscountCodeResponse.model_validate(discount)


@router.put("/{code_id}", response_model=DiscountCodeResponse)
async def update_discount_code(
    code_id: str,
    data: DiscountCodeUpdate,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> DiscountCodeResponse:
    logger.info(f"Update discount code request by user: {current_user.id}, code_id: {code_id}")
    discount = await _get_code(db_session, code_id)
    ensure_access(current_user, discount, Action.UPDATE)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(discount, field, value)
    await db_session.commit()
    await db_session.refresh(discount)
    logger.info(f"Discount code updated: {discount.code}")
    return DiscountCodeResponse.model_validate(discount)


@router.delete("/{code_id}")
async def delete_discount_code(
    code_id: str,
    db_session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_manager),
) -> dict:
    """Deactivate a code. Its redemption count is kept."""
    logger.info(f"Delete discount code request by user: {current_user.id}, code_id: {code_id}")
    discount = await _get_code(db_session, code_id)
    ensure_access(current_user, discount, Action.DELETE)
    await discount.deactivate(db_session)
    logger.info(f"Discount code deactivated: {discount.code}")
    return {"message": "Discount code deactivated successfully"}
