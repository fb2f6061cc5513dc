"""
Creates and manages study plans.
What it does:
- Validates the plan request
- Builds the prompt and calls the LLM (deadline-bounded)
- Parses and validates the reply into a ParsedPlan
- Reconciles subjects/topics with the caller's catalog
- Persists the plan (and any new topics) in one write
- Reads, lists, updates progress on and deletes plans, always scoped to the owner

And, the main purpose:
Convert a user request into a stored plan: prompt → call → parse → reconcile → persist.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from studyplan.core.entities import PlanRequest, PlanStatus, StudyPlan, Subject, Topic
from studyplan.core.errors import Cancelled, NotFound, ParseError, PlanValidationError
from studyplan.core.ids import PLAN_PREFIX, SUBJECT_PREFIX, new_id
from studyplan.core.logging import get_logger
from studyplan.db.stores import CatalogStore, PlanStore
from studyplan.llm.client import LLMClient
from studyplan.llm.prompts import build_messages
from studyplan.llm.schemas import ParsedPlan, parse_plan
from studyplan.pipeline.reconciler import Reconciler, Reconciliation

log = get_logger("pipeline.planner")


def validate_request(req: PlanRequest) -> None:
    if not (req.title or "").strip():
        raise PlanValidationError("title must not be empty")
    if not req.subject_ids:
        raise PlanValidationError("at least one subjectId is required")
    if any(not isinstance(sid, str) or not sid.strip() for sid in req.subject_ids):
        raise PlanValidationError("subjectIds must be non-empty strings")
    if req.start_date > req.end_date:
        raise PlanValidationError("startDate must not be after endDate")
    if req.hours_per_day < 1:
        raise PlanValidationError("hoursPerDay must be at least 1")


def plan_hours(req: PlanRequest) -> int:
    """hoursPerDay over every day of the range, both ends included."""
    return req.hours_per_day * ((req.end_date - req.start_date).days + 1)


class PlanOrchestrator:
    def __init__(
        self,
        catalog: CatalogStore,
        plans: PlanStore,
        llm: LLMClient,
        *,
        deadline_seconds: Optional[float] = None,
    ):
        self.catalog = catalog
        self.plans = plans
        self.llm = llm
        self.reconciler = Reconciler(catalog)
        self.deadline_seconds = deadline_seconds

    async def create(self, req: PlanRequest, user_id: str, timeout: Optional[float] = None) -> StudyPlan:
        validate_request(req)

        budget = timeout if timeout is not None else self.deadline_seconds
        deadline = asyncio.get_running_loop().time() + budget if budget else None

        # duplicate subject ids collapse, request order kept
        req = req.model_copy(update={"subject_ids": list(dict.fromkeys(req.subject_ids))})

        catalog_view = {s.id: s for s in await self.catalog.subjects_by_ids(user_id, req.subject_ids)}
        messages = build_messages(req, catalog_view)
        result = await self.llm.complete(messages, deadline=deadline)
        log.info(f"LLM replied for user={user_id} after {result.attempts} attempt(s)")

        try:
            parsed = self._parse(result.content, req, catalog_view)
            reconciled = await self.reconciler.reconcile(parsed, user_id, req)
            plan = self._assemble(req, user_id, parsed, reconciled)
        except asyncio.CancelledError as e:
            log.info(f"plan creation cancelled for user={user_id}; nothing saved")
            raise Cancelled("Plan creation was cancelled before it was saved") from e

        saved = await self._persist(plan, reconciled.new_topics)
        log.info(
            f"created plan {saved.id} for user={user_id}: "
            f"{len(saved.subject_refs)} subjects, {len(saved.topic_refs)} topics "
            f"({len(reconciled.new_topics)} new), {saved.total_hours}h"
        )
        return saved

    @staticmethod
    def _parse(text: str, req: PlanRequest, catalog_view: dict[str, Subject]) -> ParsedPlan:
        names = [catalog_view[sid].name for sid in req.subject_ids if sid in catalog_view]
        try:
            return parse_plan(text, req.subject_ids, names)
        except ParseError as e:
            log.warning(f"LLM reply rejected: {e.reason}. Excerpt={e.excerpt!r}")
            raise

    @staticmethod
    def _assemble(req: PlanRequest, user_id: str, parsed: ParsedPlan, reconciled: Reconciliation) -> StudyPlan:
        total = plan_hours(req)
        if parsed.total_hours is not None and parsed.total_hours != total:
            log.info(f"LLM suggested totalHours={parsed.total_hours}, using {total} from the request")
        estimated = sum(t.estimated_hours for t in reconciled.topics)
        if estimated > total:
            log.warning(f"topics need {estimated}h but the plan only budgets {total}h")

        return StudyPlan(
            id=new_id(PLAN_PREFIX),
            user_id=user_id,
            title=req.title.strip(),
            description=(req.description or "").strip() or parsed.description,
            start_date=req.start_date,
            end_date=req.end_date,
            subject_refs=reconciled.subject_ids,
            topic_refs=reconciled.topic_ids,
            total_hours=total,
            completed_hours=0,
            status=PlanStatus.ACTIVE,
            created_at=datetime.now(timezone.utc),
        )

    async def _persist(self, plan: StudyPlan, new_topics: list[Topic]) -> StudyPlan:
        # once issued, the write runs to completion even if the caller goes away
        write = asyncio.ensure_future(self.plans.create(plan, new_topics))
        while True:
            try:
                return await asyncio.shield(write)
            except asyncio.CancelledError:
                if write.done():
                    return write.result()
                log.warning(f"cancellation ignored while plan {plan.id} is being written")

    async def get(self, plan_id: str, user_id: str) -> StudyPlan:
        plan = await self.plans.get(plan_id, user_id)
        if plan is None:
            raise NotFound("Study plan not found")
        return plan

    async def list_mine(self, user_id: str) -> list[StudyPlan]:
        return await self.plans.list_by_user(user_id)

    async def delete(self, plan_id: str, user_id: str) -> None:
        if not await self.plans.delete(plan_id, user_id):
            raise NotFound("Study plan not found")
        log.info(f"deleted plan {plan_id} for user={user_id}")

    async def update_progress(self, plan_id: str, user_id: str, completed_hours: int) -> StudyPlan:
        plan = await self.get(plan_id, user_id)
        if plan.status == PlanStatus.ARCHIVED:
            raise PlanValidationError("Archived plans cannot be updated")
        if not 0 <= completed_hours <= plan.total_hours:
            raise PlanValidationError(f"completedHours must be between 0 and {plan.total_hours}")

        plan.completed_hours = completed_hours
        plan.status = PlanStatus.COMPLETED if completed_hours == plan.total_hours else PlanStatus.ACTIVE
        saved = await self.plans.save(plan)
        if saved is None:
            raise NotFound("Study plan not found")
        return saved

    async def resolve(self, plan: StudyPlan) -> tuple[list[Subject], list[Topic]]:
        """Load the subjects and topics a plan points at, in plan order."""
        return (await self.resolve_many([plan]))[0]

    async def resolve_many(self, plans: list[StudyPlan]) -> list[tuple[list[Subject], list[Topic]]]:
        """Same as resolve, with one subject read and one topic read for the whole batch."""
        subjects: dict[str, Subject] = {}
        for user_id in dict.fromkeys(p.user_id for p in plans):
            wanted = list(dict.fromkeys(sid for p in plans if p.user_id == user_id for sid in p.subject_refs))
            if wanted:
                subjects.update((s.id, s) for s in await self.catalog.subjects_by_ids(user_id, wanted))

        wanted_topics = list(dict.fromkeys(tid for p in plans for tid in p.topic_refs))
        topics = {t.id: t for t in await self.catalog.topics_by_ids(wanted_topics)} if wanted_topics else {}

        return [
            (
                [subjects[sid] for sid in p.subject_refs if sid in subjects],
                [topics[tid] for tid in p.topic_refs if tid in topics],
            )
            for p in plans
        ]

    async def add_subject(self, user_id: str, name: str, color: str, priority: int) -> Subject:
        if not (name or "").strip():
            raise PlanValidationError("name must not be empty")
        subject = Subject(
            id=new_id(SUBJECT_PREFIX),
            user_id=user_id,
            name=name.strip(),
            color=color,
            priority=priority,
        )
        return await self.catalog.add_subject(subject)

    async def list_subjects(self, user_id: str) -> list[Subject]:
        return await self.catalog.list_subjects(user_id)
