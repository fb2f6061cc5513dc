"""
Catalog and plan stores used by the pipeline.
What it provides:
- CatalogStore / PlanStore interfaces
- SQLAlchemy-backed implementations (one session per call)
- In-memory implementations for tests and local runs

And, the main purpose:
Keep the orchestrator independent of how plans and catalogs are persisted.
"""

import functools
from datetime import timezone
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from studyplan.core.entities import PlanStatus, StudyPlan, Subject, Topic
from studyplan.core.errors import StorageError
from studyplan.core.logging import get_logger
from studyplan.db import repo
from studyplan.db.models import StudyPlanRow, SubjectRow, TopicRow

log = get_logger("db.stores")


class CatalogStore(Protocol):
    async def add_subject(self, subject: Subject) -> Subject: ...

    async def list_subjects(self, user_id: str) -> list[Subject]: ...

    async def subjects_by_ids(self, user_id: str, subject_ids: list[str]) -> list[Subject]: ...

    async def topics_for_subjects(self, subject_ids: list[str]) -> list[Topic]: ...

    async def topics_by_ids(self, topic_ids: list[str]) -> list[Topic]: ...


class PlanStore(Protocol):
    async def create(self, plan: StudyPlan, new_topics: list[Topic]) -> StudyPlan: ...

    async def get(self, plan_id: str, user_id: str) -> Optional[StudyPlan]: ...

    async def list_by_user(self, user_id: str) -> list[StudyPlan]: ...

    async def save(self, plan: StudyPlan) -> Optional[StudyPlan]: ...

    async def delete(self, plan_id: str, user_id: str) -> bool: ...


def _subject(row: SubjectRow) -> Subject:
    return Subject(id=row.id, user_id=row.user_id, name=row.name, color=row.color, priority=row.priority)


def _topic(row: TopicRow) -> Topic:
    return Topic(
        id=row.id,
        name=row.name,
        subject_id=row.subject_id,
        estimated_hours=row.estimated_hours,
        priority=row.priority,
        completed=row.completed,
    )


def _topic_row(topic: Topic) -> TopicRow:
    return TopicRow(
        id=topic.id,
        name=topic.name,
        subject_id=topic.subject_id,
        estimated_hours=topic.estimated_hours,
        priority=topic.priority,
        completed=topic.completed,
    )


def _plan(row: StudyPlanRow) -> StudyPlan:
    created_at = row.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; everything is written as UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    return StudyPlan(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description or "",
        start_date=row.start_date,
        end_date=row.end_date,
        subject_refs=list(row.subject_refs or []),
        topic_refs=list(row.topic_refs or []),
        total_hours=row.total_hours,
        completed_hours=row.completed_hours,
        status=PlanStatus(row.status),
        created_at=created_at,
    )


def _plan_row(plan: StudyPlan) -> StudyPlanRow:
    return StudyPlanRow(
        id=plan.id,
        user_id=plan.user_id,
        title=plan.title,
        description=plan.description,
        start_date=plan.start_date,
        end_date=plan.end_date,
        subject_refs=list(plan.subject_refs),
        topic_refs=list(plan.topic_refs),
        total_hours=plan.total_hours,
        completed_hours=plan.completed_hours,
        status=plan.status.value,
        created_at=plan.created_at,
    )


def _storage_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as e:
            log.error(f"{fn.__qualname__} failed: {type(e).__name__}: {e}")
            raise StorageError("Storage operation failed") from e
    return wrapper


class SqlCatalogStore:
    def __init__(self, sessions: async_sessionmaker):
        self._sessions = sessions

    @_storage_errors
    async def add_subject(self, subject: Subject) -> Subject:
        async with self._sessions() as db:
            row = SubjectRow(
                id=subject.id,
                user_id=subject.user_id,
                name=subject.name,
                color=subject.color,
                priority=subject.priority,
            )
            return _subject(await repo.add_subject(db, row))

    @_storage_errors
    async def list_subjects(self, user_id: str) -> list[Subject]:
        async with self._sessions() as db:
            return [_subject(r) for r in await repo.list_subjects(db, user_id)]

    @_storage_errors
    async def subjects_by_ids(self, user_id: str, subject_ids: list[str]) -> list[Subject]:
        async with self._sessions() as db:
            return [_subject(r) for r in await repo.get_subjects(db, user_id, list(subject_ids))]

    @_storage_errors
    async def topics_for_subjects(self, subject_ids: list[str]) -> list[Topic]:
        async with self._sessions() as db:
            return [_topic(r) for r in await repo.get_topics_for_subjects(db, list(subject_ids))]

    @_storage_errors
    async def topics_by_ids(self, topic_ids: list[str]) -> list[Topic]:
        async with self._sessions() as db:
            return [_topic(r) for r in await repo.get_topics(db, list(topic_ids))]


class SqlPlanStore:
    def __init__(self, sessions: async_sessionmaker):
        self._sessions = sessions

    @_storage_errors
    async def create(self, plan: StudyPlan, new_topics: list[Topic]) -> StudyPlan:
        async with self._sessions() as db:
            row = await repo.create_plan(db, _plan_row(plan), [_topic_row(t) for t in new_topics])
            return _plan(row)

    @_storage_errors
    async def get(self, plan_id: str, user_id: str) -> Optional[StudyPlan]:
        async with self._sessions() as db:
            row = await repo.get_plan(db, plan_id, user_id)
            return _plan(row) if row else None

    @_storage_errors
    async def list_by_user(self, user_id: str) -> list[StudyPlan]:
        async with self._sessions() as db:
            return [_plan(r) for r in await repo.list_plans(db, user_id)]

    @_storage_errors
    async def save(self, plan: StudyPlan) -> Optional[StudyPlan]:
        async with self._sessions() as db:
            row = await repo.get_plan(db, plan.id, plan.user_id)
            if row is None:
                return None
            row.title = plan.title
            row.description = plan.description
            row.topic_refs = list(plan.topic_refs)
            row.total_hours = plan.total_hours
            row.completed_hours = plan.completed_hours
            row.status = plan.status.value
            return _plan(await repo.update_plan(db, row))

    @_storage_errors
    async def delete(self, plan_id: str, user_id: str) -> bool:
        async with self._sessions() as db:
            return await repo.delete_plan(db, plan_id, user_id)


class MemoryCatalogStore:
    def __init__(self, subjects: Optional[list[Subject]] = None, topics: Optional[list[Topic]] = None):
        self.subjects: dict[str, Subject] = {s.id: s for s in subjects or []}
        self.topics: dict[str, Topic] = {t.id: t for t in topics or []}

    async def add_subject(self, subject: Subject) -> Subject:
        self.subjects[subject.id] = subject.model_copy()
        return subject

    async def list_subjects(self, user_id: str) -> list[Subject]:
        found = [s for s in self.subjects.values() if s.user_id == user_id]
        return sorted(found, key=lambda s: (s.name, s.id))

    async def subjects_by_ids(self, user_id: str, subject_ids: list[str]) -> list[Subject]:
        wanted = set(subject_ids)
        return [s.model_copy() for s in self.subjects.values() if s.id in wanted and s.user_id == user_id]

    async def topics_for_subjects(self, subject_ids: list[str]) -> list[Topic]:
        wanted = set(subject_ids)
        found = [t.model_copy() for t in self.topics.values() if t.subject_id in wanted]
        return sorted(found, key=lambda t: t.id)

    async def topics_by_ids(self, topic_ids: list[str]) -> list[Topic]:
        wanted = set(topic_ids)
        return [t.model_copy() for t in self.topics.values() if t.id in wanted]


class MemoryPlanStore:
    def __init__(self, catalog: MemoryCatalogStore):
        self.catalog = catalog
        self.plans: dict[str, StudyPlan] = {}

    async def create(self, plan: StudyPlan, new_topics: list[Topic]) -> StudyPlan:
        for topic in new_topics:
            self.catalog.topics[topic.id] = topic.model_copy()
        self.plans[plan.id] = plan.model_copy(deep=True)
        return plan.model_copy(deep=True)

    async def get(self, plan_id: str, user_id: str) -> Optional[StudyPlan]:
        plan = self.plans.get(plan_id)
        if plan is None or plan.user_id != user_id:
            return None
        return plan.model_copy(deep=True)

    async def list_by_user(self, user_id: str) -> list[StudyPlan]:
        mine = sorted((p for p in self.plans.values() if p.user_id == user_id), key=lambda p: p.id)
        mine.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy(deep=True) for p in mine]

    async def save(self, plan: StudyPlan) -> Optional[StudyPlan]:
        current = self.plans.get(plan.id)
        if current is None or current.user_id != plan.user_id:
            return None
        self.plans[plan.id] = plan.model_copy(deep=True)
        return plan.model_copy(deep=True)

    async def delete(self, plan_id: str, user_id: str) -> bool:
        plan = self.plans.get(plan_id)
        if plan is None or plan.user_id != user_id:
            return False
        del self.plans[plan_id]
        return True
