"""Tests for the plan orchestrator: the end-to-end create pipeline and owner-scoped reads/writes."""

import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import pytest

from studyplan.core.entities import PlanStatus, StudyPlan
from studyplan.core.errors import (
    Cancelled,
    NotFound,
    ParseError,
    PlanValidationError,
    StorageError,
    Truncated,
    UnknownSubject,
    UpstreamUnavailable,
)
from studyplan.db.stores import MemoryCatalogStore, MemoryPlanStore
from studyplan.pipeline.planner import PlanOrchestrator, plan_hours


@pytest.mark.asyncio
async def test_happy_path_creates_active_plan_and_topic(make_planner, fake_llm_cls, finals_request, plans, catalog):
    llm = fake_llm_cls()
    planner = make_planner(llm)

    plan = await planner.create(finals_request, "u1")

    assert plan.user_id == "u1"
    assert plan.title == "Finals"
    assert plan.total_hours == 21
    assert plan.completed_hours == 0
    assert plan.status == PlanStatus.ACTIVE
    assert plan.subject_refs == ["s1", "s2"]
    assert len(plan.topic_refs) == 1
    assert plans.plans[plan.id] == plan

    new_topic = catalog.topics[plan.topic_refs[0]]
    assert new_topic.name == "Calc"
    assert new_topic.subject_id == "s1"
    assert new_topic.completed is False
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_prompt_names_subjects_from_catalog(make_planner, fake_llm_cls, finals_request):
    llm = fake_llm_cls()
    await make_planner(llm).create(finals_request, "u1")

    user_message = llm.calls[0]["messages"][1]["content"]
    assert "Subjects: Math, Physics" in user_message


@pytest.mark.asyncio
async def test_cross_tenant_subject_is_rejected_without_write(make_planner, fake_llm_cls, finals_request, plans, catalog):
    planner = make_planner(fake_llm_cls())

    with pytest.raises(UnknownSubject):
        await planner.create(finals_request, "u2")

    assert plans.plans == {}
    assert catalog.topics == {}


@pytest.mark.asyncio
async def test_truncated_reply_is_surfaced_without_retry(make_planner, fake_llm_cls, finals_request, plans):
    llm = fake_llm_cls(Truncated("length"))
    planner = make_planner(llm)

    with pytest.raises(Truncated):
        await planner.create(finals_request, "u1")

    assert len(llm.calls) == 1
    assert plans.plans == {}


@pytest.mark.asyncio
async def test_malformed_reply_is_a_parse_error(make_planner, fake_llm_cls, finals_request, plans):
    llm = fake_llm_cls("Here is your plan: {title: Finals, subjects: [s1]}")
    planner = make_planner(llm)

    with pytest.raises(ParseError) as exc:
        await planner.create(finals_request, "u1")

    assert len(exc.value.excerpt) <= 200
    assert len(llm.calls) == 1
    assert plans.plans == {}


@pytest.mark.asyncio
async def test_upstream_failure_propagates(make_planner, fake_llm_cls, finals_request, plans):
    planner = make_planner(fake_llm_cls(UpstreamUnavailable("down")))

    with pytest.raises(UpstreamUnavailable):
        await planner.create(finals_request, "u1")
    assert plans.plans == {}


@pytest.mark.asyncio
async def test_llm_introducing_subjects_is_a_parse_error(make_planner, fake_llm_cls, finals_request):
    reply = json.dumps({"title": "Finals", "subjects": [{"id": "s1"}, {"name": "Biology"}]})
    with pytest.raises(ParseError, match="Biology"):
        await make_planner(fake_llm_cls(reply)).create(finals_request, "u1")


@pytest.mark.parametrize(
    "changes",
    [
        {"title": "  "},
        {"subject_ids": []},
        {"subject_ids": ["s1", ""]},
        {"start_date": date(2025, 2, 1)},
        {"hours_per_day": 0},
    ],
)
@pytest.mark.asyncio
async def test_invalid_requests_never_reach_the_llm(make_planner, fake_llm_cls, finals_request, changes):
    llm = fake_llm_cls()
    req = finals_request.model_copy(update=changes)

    with pytest.raises(PlanValidationError):
        await make_planner(llm).create(req, "u1")
    assert llm.calls == []


def test_total_hours_counts_both_ends_of_the_range(finals_request):
    assert plan_hours(finals_request) == 21
    one_day = finals_request.model_copy(update={"end_date": finals_request.start_date})
    assert plan_hours(one_day) == 3


@pytest.mark.asyncio
async def test_deadline_is_passed_to_the_llm(make_planner, fake_llm_cls, finals_request):
    llm = fake_llm_cls()
    before = asyncio.get_running_loop().time()

    await make_planner(llm).create(finals_request, "u1", timeout=30)

    deadline = llm.calls[0]["deadline"]
    assert before + 29 <= deadline <= asyncio.get_running_loop().time() + 30


@pytest.mark.asyncio
async def test_duplicate_subject_ids_collapse(make_planner, fake_llm_cls, finals_request):
    req = finals_request.model_copy(update={"subject_ids": ["s1", "s2", "s1"]})
    plan = await make_planner(fake_llm_cls()).create(req, "u1")
    assert plan.subject_refs == ["s1", "s2"]


@pytest.mark.asyncio
async def test_get_is_scoped_to_owner(make_planner, fake_llm_cls, finals_request):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    assert (await planner.get(plan.id, "u1")).id == plan.id
    with pytest.raises(NotFound):
        await planner.get(plan.id, "u2")
    with pytest.raises(NotFound):
        await planner.get("plan_missing", "u1")


@pytest.mark.asyncio
async def test_delete_not_owned_leaves_plan_in_place(make_planner, fake_llm_cls, finals_request):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    with pytest.raises(NotFound):
        await planner.delete(plan.id, "u2")

    assert (await planner.get(plan.id, "u1")).id == plan.id


@pytest.mark.asyncio
async def test_delete_then_get_and_second_delete_are_not_found(make_planner, fake_llm_cls, finals_request, catalog):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    await planner.delete(plan.id, "u1")

    with pytest.raises(NotFound):
        await planner.get(plan.id, "u1")
    with pytest.raises(NotFound):
        await planner.delete(plan.id, "u1")
    # catalog entities outlive the plan
    assert plan.topic_refs[0] in catalog.topics


@pytest.mark.asyncio
async def test_list_mine_returns_only_own_plans_newest_first(catalog, plans):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _plan(pid, user, minutes):
        return StudyPlan(
            id=pid,
            user_id=user,
            title=pid,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 2),
            total_hours=2,
            created_at=base + timedelta(minutes=minutes),
        )

    for p in [_plan("p_a", "u1", 1), _plan("p_c", "u1", 5), _plan("p_b", "u1", 5), _plan("p_x", "u2", 9)]:
        plans.plans[p.id] = p

    planner = PlanOrchestrator(catalog, plans, llm=None)
    mine = await planner.list_mine("u1")

    assert [p.id for p in mine] == ["p_b", "p_c", "p_a"]
    assert await planner.list_mine("nobody") == []


class _FailingPlanStore(MemoryPlanStore):
    async def create(self, plan, new_topics):
        raise StorageError("Storage operation failed")


@pytest.mark.asyncio
async def test_write_failure_is_a_storage_error(catalog, fake_llm_cls, finals_request):
    planner = PlanOrchestrator(catalog, _FailingPlanStore(catalog), fake_llm_cls())

    with pytest.raises(StorageError):
        await planner.create(finals_request, "u1")
    assert catalog.topics == {}


class _CancelledCatalog(MemoryCatalogStore):
    async def topics_for_subjects(self, subject_ids):
        raise asyncio.CancelledError()


@pytest.mark.asyncio
async def test_cancel_after_llm_reply_saves_nothing(catalog, fake_llm_cls, finals_request):
    cancelling = _CancelledCatalog(subjects=list(catalog.subjects.values()))
    store = MemoryPlanStore(cancelling)
    planner = PlanOrchestrator(cancelling, store, fake_llm_cls())

    with pytest.raises(Cancelled):
        await planner.create(finals_request, "u1")
    assert store.plans == {}


class _SlowPlanStore(MemoryPlanStore):
    def __init__(self, catalog):
        super().__init__(catalog)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def create(self, plan, new_topics):
        self.started.set()
        await self.release.wait()
        return await super().create(plan, new_topics)


@pytest.mark.asyncio
async def test_cancel_during_write_still_completes_the_write(catalog, fake_llm_cls, finals_request):
    store = _SlowPlanStore(catalog)
    planner = PlanOrchestrator(catalog, store, fake_llm_cls())

    task = asyncio.create_task(planner.create(finals_request, "u1"))
    await store.started.wait()
    task.cancel()
    await asyncio.sleep(0)
    store.release.set()

    plan = await task
    assert store.plans[plan.id].user_id == "u1"


@pytest.mark.asyncio
async def test_update_progress_drives_completion(make_planner, fake_llm_cls, finals_request):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    partial = await planner.update_progress(plan.id, "u1", 10)
    assert partial.completed_hours == 10
    assert partial.status == PlanStatus.ACTIVE

    done = await planner.update_progress(plan.id, "u1", 21)
    assert done.status == PlanStatus.COMPLETED

    reopened = await planner.update_progress(plan.id, "u1", 20)
    assert reopened.status == PlanStatus.ACTIVE
    assert (await planner.get(plan.id, "u1")).completed_hours == 20


@pytest.mark.asyncio
async def test_update_progress_rejects_out_of_range_and_foreign(make_planner, fake_llm_cls, finals_request, plans):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    with pytest.raises(PlanValidationError):
        await planner.update_progress(plan.id, "u1", 22)
    with pytest.raises(PlanValidationError):
        await planner.update_progress(plan.id, "u1", -1)
    with pytest.raises(NotFound):
        await planner.update_progress(plan.id, "u2", 5)

    plans.plans[plan.id].status = PlanStatus.ARCHIVED
    with pytest.raises(PlanValidationError, match="Archived"):
        await planner.update_progress(plan.id, "u1", 5)


@pytest.mark.asyncio
async def test_resolve_returns_referenced_entities_in_order(make_planner, fake_llm_cls, finals_request):
    planner = make_planner(fake_llm_cls())
    plan = await planner.create(finals_request, "u1")

    subjects, topics = await planner.resolve(plan)

    assert [s.name for s in subjects] == ["Math", "Physics"]
    assert [t.name for t in topics] == ["Calc"]


class _CountingCatalog(MemoryCatalogStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.reads = {"subjects": 0, "topics": 0}

    async def subjects_by_ids(self, user_id, subject_ids):
        self.reads["subjects"] += 1
        return await super().subjects_by_ids(user_id, subject_ids)

    async def topics_by_ids(self, topic_ids):
        self.reads["topics"] += 1
        return await super().topics_by_ids(topic_ids)


@pytest.mark.asyncio
async def test_resolve_many_reads_the_catalog_once_per_batch(catalog, fake_llm_cls, finals_request):
    counting = _CountingCatalog(subjects=list(catalog.subjects.values()))
    planner = PlanOrchestrator(counting, MemoryPlanStore(counting), fake_llm_cls())
    created = [await planner.create(finals_request, "u1") for _ in range(3)]
    counting.reads = {"subjects": 0, "topics": 0}

    resolved = await planner.resolve_many(await planner.list_mine("u1"))

    assert counting.reads == {"subjects": 1, "topics": 1}
    assert len(resolved) == len(created)
    assert all([s.name for s in subjects] == ["Math", "Physics"] for subjects, _ in resolved)
    assert all(topics and topics[0].name == "Calc" for _, topics in resolved)
    assert await planner.resolve_many([]) == []
    assert counting.reads == {"subjects": 1, "topics": 1}


@pytest.mark.asyncio
async def test_subjects_are_added_and_listed_through_the_orchestrator(make_planner):
    planner = make_planner(llm=None)

    added = await planner.add_subject("u3", "  Biology ", "#00ff00", 1)

    assert added.name == "Biology"
    assert added.user_id == "u3"
    assert [s.id for s in await planner.list_subjects("u3")] == [added.id]
    with pytest.raises(PlanValidationError):
        await planner.add_subject("u3", "   ", "#00ff00", 0)
