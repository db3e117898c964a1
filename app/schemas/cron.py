"""Cron control surface schemas."""

from typing import List, Optional

from pydantic import Field

from app.schemas.base import BaseSchema


class CronJobResponse(BaseSchema):
    name: str
    label: str
    expression: str
    enabled: bool
    timezone: str


class CronConfigResponse(BaseSchema):
    jobs: List[CronJobResponse]


class CronValidateRequest(BaseSchema):
    expression: str = Field(..., min_length=1)


class CronValidateResponse(BaseSchema):
    valid: bool
    error: Optional[str] = None


class CronRunResponse(BaseSchema):
    job: str
    skipped: bool
    reason: Optional[str] = None
    matched: int = 0
    notified: int = 0
    suspended: int = 0
    owner_summaries: int = 0
    failed: List[str] = Field(default_factory=list)
