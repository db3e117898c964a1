"""Discount code schemas."""

from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from app.models.discount import DiscountUsage
from app.schemas.base import BaseSchema


class DiscountCodeValidate(BaseSchema):
    """Check or redeem a code at a location."""

    code: str = Field(..., min_length=1, max_length=50)
    location_id: Optional[str] = None


class DiscountValidationResponse(BaseSchema):
    valid: bool
    code: str
    percent: int
    usage: DiscountUsage
    description: Optional[str] = None
    remaining_uses: Optional[int] = None


class DiscountRedemptionResponse(BaseSchema):
    code: str
    percent: int
    remaining_uses: Optional[int] = None


class DiscountCodeCreate(BaseSchema):
    """Create a new discount code (admin only)."""

    code: str = Field(..., min_length=3, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    percent: int = Field(..., ge=1, le=100)
    usage: DiscountUsage = DiscountUsage.MULTIPLE
    max_uses: Optional[int] = Field(None, ge=1)
    expire_date: Optional[datetime] = None
    location_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_usage(self) -> "DiscountCodeCreate":
        if self.usage == DiscountUsage.SINGLE and self.max_uses not in (None, 1):
            raise ValueError("A single-use code cannot have max_uses above 1")
        return self


class DiscountCodeUpdate(BaseSchema):
    description: Optional[str] = Field(None, max_length=500)
    percent: Optional[int] = Field(None, ge=1, le=100)
    max_uses: Optional[int] = Field(None, ge=1)
    expire_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class DiscountCodeResponse(BaseSchema):
    id: str
    code: str
    description: Optional[str] = None
    percent: int
    usage: DiscountUsage
    max_uses: Optional[int] = None
    current_uses: int
    expire_date: Optional[datetime] = None
    is_active: bool
    location_id: Optional[str] = None
    created_at: datetime
