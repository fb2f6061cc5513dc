"""
API request and response schemas.
What it defines:
- Input payloads (camelCase on the wire)
- Response formats (no userId, ISO dates)
- Field-by-field mapping from domain entities

And, the main purpose:
Ensure structured communication between client and server.
"""


from datetime import date, datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from studyplan.core.entities import PlanRequest, StudyPlan, Subject, Topic


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlanRequestBody(_Camel):
    title: str
    description: str = ""
    subject_ids: List[str]
    start_date: date
    end_date: date
    hours_per_day: int

    def to_request(self) -> PlanRequest:
        return PlanRequest(
            title=self.title,
            description=self.description,
            subject_ids=list(self.subject_ids),
            start_date=self.start_date,
            end_date=self.end_date,
            hours_per_day=self.hours_per_day,
        )


class ProgressBody(_Camel):
    completed_hours: int


class SubjectBody(_Camel):
    name: str = Field(..., min_length=1)
    color: str = "#3B82F6"
    priority: int = Field(0, ge=0)


class SubjectResponse(_Camel):
    id: str
    name: str
    color: str
    priority: int

    @classmethod
    def from_subject(cls, s: Subject) -> "SubjectResponse":
        return cls(id=s.id, name=s.name, color=s.color, priority=s.priority)


class TopicResponse(_Camel):
    id: str
    name: str
    subject_id: str
    estimated_hours: int
    priority: int
    completed: bool

    @classmethod
    def from_topic(cls, t: Topic) -> "TopicResponse":
        return cls(
            id=t.id,
            name=t.name,
            subject_id=t.subject_id,
            estimated_hours=t.estimated_hours,
            priority=t.priority,
            completed=t.completed,
        )


class StudyPlanResponse(_Camel):
    id: str
    title: str
    description: str
    start_date: date
    end_date: date
    subject_refs: List[str]
    topic_refs: List[str]
    subjects: List[SubjectResponse] = []
    topics: List[TopicResponse] = []
    total_hours: int
    completed_hours: int
    status: str
    created_at: datetime

    @classmethod
    def from_plan(cls, plan: StudyPlan, subjects: List[Subject], topics: List[Topic]) -> "StudyPlanResponse":
        return cls(
            id=plan.id,
            title=plan.title,
            description=plan.description,
            start_date=plan.start_date,
            end_date=plan.end_date,
            subject_refs=list(plan.subject_refs),
            topic_refs=list(plan.topic_refs),
            subjects=[SubjectResponse.from_subject(s) for s in subjects],
            topics=[TopicResponse.from_topic(t) for t in topics],
            total_hours=plan.total_hours,
            completed_hours=plan.completed_hours,
            status=plan.status.value,
            created_at=plan.created_at,
        )
