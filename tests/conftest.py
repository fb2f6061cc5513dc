"""
Pytest configuration and fixtures
"""
import json
from datetime import date

import pytest

from studyplan.core.entities import PlanRequest, Subject
from studyplan.db.stores import MemoryCatalogStore, MemoryPlanStore
from studyplan.llm.client import CompletionResult
from studyplan.pipeline.planner import PlanOrchestrator


S1_REPLY = json.dumps(
    {
        "title": "Finals",
        "description": "",
        "subjects": [{"id": "s1"}, {"id": "s2"}],
        "topics": [{"name": "Calc", "subjectId": "s1", "estimatedHours": 4}],
        "totalHours": 21,
    }
)


class FakeLLM:
    """Stands in for LLMClient: hands out canned replies (or raises canned errors) in order."""

    def __init__(self, *replies):
        self.replies = list(replies) or [S1_REPLY]
        self.calls = []

    async def complete(self, messages, params=None, deadline=None):
        self.calls.append({"messages": messages, "deadline": deadline})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return CompletionResult(content=reply, finish_reason="stop", attempts=1)


@pytest.fixture
def s1_reply() -> str:
    return S1_REPLY


@pytest.fixture
def fake_llm_cls():
    return FakeLLM


@pytest.fixture
def catalog() -> MemoryCatalogStore:
    """u1 owns Math (s1) and Physics (s2); u2 owns Chemistry (s9)."""
    return MemoryCatalogStore(
        subjects=[
            Subject(id="s1", user_id="u1", name="Math"),
            Subject(id="s2", user_id="u1", name="Physics"),
            Subject(id="s9", user_id="u2", name="Chemistry"),
        ]
    )


@pytest.fixture
def plans(catalog) -> MemoryPlanStore:
    return MemoryPlanStore(catalog)


@pytest.fixture
def finals_request() -> PlanRequest:
    return PlanRequest(
        title="Finals",
        description="",
        subject_ids=["s1", "s2"],
        start_date=date(2025, 1, 1),
        end_date=date(2025, 1, 7),
        hours_per_day=3,
    )


@pytest.fixture
def make_planner(catalog, plans):
    def _make(llm, **kwargs) -> PlanOrchestrator:
        return PlanOrchestrator(catalog, plans, llm, **kwargs)
    return _make
