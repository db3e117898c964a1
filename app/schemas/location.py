"""Location schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import EmailStr, Field, model_validator

from app.schemas.base import BaseSchema


class PriceOverrideSchema(BaseSchema):
    """Per-location price/tax for one plan or one program."""

    plan_id: Optional[str] = None
    program_id: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    tax_percent: Optional[Decimal] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def validate_target(self) -> "PriceOverrideSchema":
        if bool(self.plan_id) == bool(self.program_id):
            raise ValueError("A price override targets exactly one of plan_id or program_id")
        return self


class LocationOfferingSchema(BaseSchema):
    offering_id: str
    price_overrides: List[PriceOverrideSchema] = Field(default_factory=list)


class LocationCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    offerings: List[LocationOfferingSchema] = Field(default_factory=list)


class LocationUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    street: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None
    # Replaces the whole offering list when present
    offerings: Optional[List[LocationOfferingSchema]] = None


class LocationResponse(BaseSchema):
    id: str
    name: str
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    offerings: List[LocationOfferingSchema] = Field(default_factory=list)


class OfferingPricingResponse(BaseSchema):
    location_id: str
    offering_id: str
    plan_id: Optional[str] = None
    program_id: Optional[str] = None
    price: Decimal
    tax_percent: Decimal
    overridden: bool
