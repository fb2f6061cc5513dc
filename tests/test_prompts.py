"""Tests for prompt construction."""

import json

from studyplan.core.entities import Subject
from studyplan.llm.prompts import PLANNER_SYSTEM, build_messages
from studyplan.llm.schemas import parse_plan


def _catalog():
    return {
        "s1": Subject(id="s1", user_id="u1", name="Math"),
        "s2": Subject(id="s2", user_id="u1", name="Physics"),
    }


def test_build_messages_renders_canonical_user_message(finals_request):
    messages = build_messages(finals_request, _catalog())

    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[0]["content"] == PLANNER_SYSTEM
    user = messages[1]["content"]
    assert "Title: Finals" in user
    assert "Subjects: Math, Physics" in user
    assert "Subject IDs: s1, s2" in user
    assert "Start date: 2025-01-01" in user
    assert "End date: 2025-01-07" in user
    assert "Hours per day: 3" in user


def test_system_message_pins_response_keys():
    assert "{title, description, subjects, topics, totalHours}" in PLANNER_SYSTEM


def test_build_messages_is_deterministic(finals_request):
    first = build_messages(finals_request, _catalog())
    second = build_messages(finals_request.model_copy(), dict(reversed(list(_catalog().items()))))
    assert first == second


def test_missing_catalog_entry_falls_back_to_id(finals_request):
    messages = build_messages(finals_request, {"s2": _catalog()["s2"]})
    assert "Subjects: s1, Physics" in messages[1]["content"]


def _echo_llm(messages) -> str:
    """Stub model that echoes the structured request back as a plan."""
    fields = dict(
        line.split(": ", 1) for line in messages[1]["content"].splitlines() if ": " in line
    )
    ids = [s for s in fields["Subject IDs"].split(", ") if s]
    return json.dumps({"title": fields["Title"], "subjects": [{"id": s} for s in ids], "topics": []})


def test_prompt_round_trip_keeps_subject_set(finals_request):
    messages = build_messages(finals_request, _catalog())
    plan = parse_plan(_echo_llm(messages), finals_request.subject_ids, ["Math", "Physics"])
    assert {s.id for s in plan.subjects} == set(finals_request.subject_ids)
