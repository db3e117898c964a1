"""Class session and schedule schemas."""

import datetime
import re
from typing import Optional

from pydantic import Field, field_validator, model_validator

from app.models.capacity import SeatPool
from app.models.class_session import SessionType, Weekday
from app.schemas.base import BaseSchema

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_time(value: Optional[str]) -> Optional[str]:
    if value is not None and not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM format")
    return value


class SeatRequest(BaseSchema):
    """Book or cancel one seat."""

    pool: SeatPool = SeatPool.REGULAR


# ============== Class Session ==============


class ClassSessionCreate(BaseSchema):
    name: Optional[str] = Field(None, max_length=200)
    location_id: Optional[str] = None
    weekday: Weekday
    session_type: Optional[SessionType] = None
    start_time: str
    end_time: str
    total_capacity: int = Field(..., ge=0)
    demo_capacity: int = Field(0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_time(v)

    @model_validator(mode="after")
    def validate_times(self) -> "ClassSessionCreate":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class ClassSessionUpdate(BaseSchema):
    name: Optional[str] = Field(None, max_length=200)
    weekday: Optional[Weekday] = None
    session_type: Optional[SessionType] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    total_capacity: Optional[int] = Field(None, ge=0)
    demo_capacity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, v: Optional[str]) -> Optional[str]:
        return _check_time(v)


class ClassSessionResponse(BaseSchema):
    id: str
    name: Optional[str] = None
    location_id: Optional[str] = None
    weekday: Weekday
    session_type: SessionType
    start_time: str
    end_time: str
    total_capacity: int
    available_capacity: int
    demo_capacity: int
    available_demo_capacity: int
    is_active: bool


# ============== Schedule ==============


class ScheduleCreate(BaseSchema):
    location_id: str
    session_id: str
    date: datetime.date
    program_id: Optional[str] = None
    plan_id: Optional[str] = None
    total_capacity: int = Field(..., ge=1)
    demo_capacity: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_schedule(self) -> "ScheduleCreate":
        if bool(self.program_id) == bool(self.plan_id):
            raise ValueError("Provide exactly one of program_id or plan_id")
        if self.demo_capacity > self.total_capacity:
            raise ValueError("demo_capacity cannot exceed total_capacity")
        return self


class ScheduleUpdate(BaseSchema):
    session_id: Optional[str] = None
    date: Optional[datetime.date] = None
    total_capacity: Optional[int] = Field(None, ge=1)
    demo_capacity: Optional[int] = Field(None, ge=0)


class ScheduleResponse(BaseSchema):
    id: str
    location_id: str
    session_id: str
    date: datetime.date
    program_id: Optional[str] = None
    plan_id: Optional[str] = None
    total_capacity: int
    available_capacity: int
    demo_capacity: int
    available_demo_capacity: int
    session: Optional[ClassSessionResponse] = None
