"""Registration checkout schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import EmailStr, Field

from app.models.enrollment import PaymentMethodType
from app.schemas.base import BaseSchema
from app.schemas.enrollment import EnrollmentResponse


class RegistrationCreate(BaseSchema):
    parent_first_name: str = Field(..., min_length=1, max_length=100)
    parent_last_name: str = Field(..., min_length=1, max_length=100)
    parent_email: EmailStr
    parent_phone: str = Field(..., min_length=1, max_length=20)
    student_first_name: str = Field(..., min_length=1, max_length=100)
    student_last_name: str = Field(..., min_length=1, max_length=100)
    student_dob: date
    location_id: str
    program_id: str
    offering_id: Optional[str] = None
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    class_session_ids: List[str] = Field(default_factory=list, max_length=2)
    enrollment_date: date
    payment_method: PaymentMethodType
    discount_code: Optional[str] = None
    stripe_payment_method_id: Optional[str] = None


class RegistrationFinalize(BaseSchema):
    """Account password chosen by the parent; the student gets the same one."""

    password: str = Field(..., min_length=8, max_length=100)
    payment_method_id: Optional[str] = None


class RegistrationResponse(BaseSchema):
    id: str
    parent_first_name: str
    parent_last_name: str
    parent_email: str
    parent_phone: str
    student_first_name: str
    student_last_name: str
    student_dob: date
    location_id: str
    program_id: str
    offering_id: str
    plan_id: Optional[str] = None
    schedule_id: Optional[str] = None
    class_session_ids: List[str] = Field(default_factory=list)
    enrollment_date: date
    payment_method: PaymentMethodType
    first_payment_amount: Decimal
    monthly_amount: Optional[Decimal] = None
    discount_code: Optional[str] = None
    discount_percent: Optional[int] = None
    discount_amount: Decimal
    admin_percent: Decimal
    tax_percent: Decimal
    admin_fee: Decimal
    tax_amount: Decimal
    total_amount_due: Decimal
    is_registration_complete: bool
    is_reg_linked_with_enrollment: bool
    is_user_setup: bool
    enrollment_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class RegistrationFinalizeResponse(BaseSchema):
    registration_id: str
    parent_id: str
    student_id: str
    student_username: str
    enrollment: EnrollmentResponse
    approval_url: Optional[str] = None
