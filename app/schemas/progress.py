"""Progress schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from app.schemas.base import BaseSchema


class TopicCompletionRequest(BaseSchema):
    student_id: str
    score: Optional[Decimal] = Field(None, ge=0, le=100)


class CompletedTopicResponse(BaseSchema):
    id: str
    student_id: str
    topic_id: str
    module_id: str
    score: Optional[Decimal] = None
    completed_at: datetime


class ModuleProgressResponse(BaseSchema):
    id: str
    student_id: str
    module_id: str
    program_id: str
    enrollment_id: Optional[str] = None
    completed_topics: int
    total_topics: int
    completion_percentage: Decimal
    marks: Optional[Decimal] = None


class ProgramProgressResponse(BaseSchema):
    id: str
    student_id: str
    program_id: str
    enrollment_id: Optional[str] = None
    completed_modules: int
    total_modules: int
    completion_percentage: Decimal


class StudentProgressResponse(BaseSchema):
    programs: List[ProgramProgressResponse] = Field(default_factory=list)
    modules: List[ModuleProgressResponse] = Field(default_factory=list)
    completed_topics: List[CompletedTopicResponse] = Field(default_factory=list)
