"""Demo class booking schemas."""

from datetime import date, datetime
from typing import Optional

from pydantic import EmailStr, Field

from app.models.demo_registration import DemoStatus
from app.schemas.base import BaseSchema


class DemoRegistrationCreate(BaseSchema):
    """A public demo booking; pick a dated schedule or a weekly session."""

    parent_first_name: str = Field(..., min_length=1, max_length=100)
    parent_last_name: str = Field(..., min_length=1, max_length=100)
    parent_email: EmailStr
    parent_phone: str = Field(..., min_length=1, max_length=20)
    student_first_name: str = Field(..., min_length=1, max_length=100)
    student_last_name: str = Field(..., min_length=1, max_length=100)
    student_dob: date
    location_id: str
    demo_class_date: Optional[date] = None
    class_session_id: Optional[str] = None
    schedule_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class DemoRegistrationUpdate(BaseSchema):
    status: Optional[DemoStatus] = None
    demo_class_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)
    attendance_marked: Optional[bool] = None


class DemoRegistrationResponse(BaseSchema):
    id: str
    parent_first_name: str
    parent_last_name: str
    parent_email: str
    parent_phone: str
    student_first_name: str
    student_last_name: str
    student_dob: date
    location_id: str
    class_session_id: Optional[str] = None
    schedule_id: Optional[str] = None
    demo_class_date: date
    status: DemoStatus
    notes: Optional[str] = None
    attendance_marked: bool
    created_at: datetime
