"""
Domain entities shared by the pipeline and the stores.
What it defines:
- Subject / Topic (the per-user catalog)
- StudyPlan (the persisted plan document, ids only)
- PlanRequest (what the user asks for)

And, the main purpose:
One typed shape per concept, independent of SQL rows and HTTP DTOs.
"""

from datetime import date, datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class PlanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"


class Subject(BaseModel):
    id: str
    user_id: str
    name: str = Field(..., min_length=1)
    color: str = "#3B82F6"
    priority: int = Field(0, ge=0)


class Topic(BaseModel):
    id: str
    name: str
    subject_id: str
    estimated_hours: int = Field(0, ge=0)
    priority: int = Field(0, ge=0)
    completed: bool = False


class StudyPlan(BaseModel):
    id: str
    user_id: str
    title: str
    description: str = ""
    start_date: date
    end_date: date
    subject_refs: List[str] = []
    topic_refs: List[str] = []
    total_hours: int = 0
    completed_hours: int = 0
    status: PlanStatus = PlanStatus.ACTIVE
    created_at: datetime


class PlanRequest(BaseModel):
    title: str
    description: str = ""
    subject_ids: List[str]
    start_date: date
    end_date: date
    hours_per_day: int
