"""Catalog schemas: offerings, plans, programs, modules and topics."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from app.models.program import OfferingType
from app.schemas.base import BaseSchema


# ============== Offering / Plan ==============


class PlanCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(..., ge=0)
    tax_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class PlanUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    tax_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class PlanResponse(BaseSchema):
    id: str
    offering_id: str
    name: str
    description: str
    price: Decimal
    tax_percent: Optional[Decimal] = None


class OfferingCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    offering_type: OfferingType


class OfferingUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class OfferingResponse(BaseSchema):
    id: str
    name: str
    description: str
    offering_type: OfferingType
    is_active: bool
    plans: List[PlanResponse] = Field(default_factory=list)


# ============== Program / Module / Topic ==============


class TopicCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    estimated_duration: int = Field(0, ge=0)
    position: Optional[int] = Field(None, ge=0)


class TopicResponse(BaseSchema):
    id: str
    module_id: str
    name: str
    description: str
    estimated_duration: int
    position: int


class ModuleCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    estimated_duration: int = Field(0, ge=0)
    position: Optional[int] = Field(None, ge=0)
    topics: List[TopicCreate] = Field(default_factory=list)


class ModuleResponse(BaseSchema):
    id: str
    program_id: str
    name: str
    description: str
    estimated_duration: int
    position: int
    topics: List[TopicResponse] = Field(default_factory=list)


class ProgramCreate(BaseSchema):
    offering_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    estimated_duration: int = Field(0, ge=0)
    price: Decimal = Field(..., ge=0)
    sessions_per_week: int = Field(1, ge=1, le=2)
    modules: List[ModuleCreate] = Field(default_factory=list)


class ProgramUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    estimated_duration: Optional[int] = Field(None, ge=0)
    price: Optional[Decimal] = Field(None, ge=0)
    sessions_per_week: Optional[int] = Field(None, ge=1, le=2)
    is_active: Optional[bool] = None


class ProgramResponse(BaseSchema):
    id: str
    offering_id: str
    name: str
    description: str
    estimated_duration: int
    price: Decimal
    sessions_per_week: int
    is_active: bool
    stripe_product_id: Optional[str] = None
    paypal_product_id: Optional[str] = None
    modules: List[ModuleResponse] = Field(default_factory=list)
    created_at: datetime
