from typing import Mapping

from studyplan.core.entities import PlanRequest, Subject


PLANNER_SYSTEM = """You are a study-plan generator.

Respond with a single JSON object whose top-level keys are exactly {title, description, subjects, topics, totalHours}:
{
  "title": "string",
  "description": "string",
  "subjects": [
    { "id": "string", "name": "string" }
  ],
  "topics": [
    {
      "name": "string",
      "subjectId": "string",
      "estimatedHours": 0
    }
  ],
  "totalHours": 0
}

Rules:
- Use ONLY the subjects listed by the user. Copy their ids exactly; never invent a subject.
- Every topic MUST reference one of those subject ids in "subjectId".
- estimatedHours and totalHours are whole numbers (no fractions, no units).
- Break each subject into concrete topics that fit the date range and the daily hour budget.
- Output only JSON. No markdown, no code fences, no commentary.
"""


PLANNER_USER = """Create a study plan.
Title: {title}
Description: {description}
Subjects: {subject_names}
Subject IDs: {subject_ids}
Start date: {start_date}
End date: {end_date}
Hours per day: {hours_per_day}"""


def build_messages(req: PlanRequest, catalog: Mapping[str, Subject]) -> list[dict[str, str]]:
    """
    Deterministic system + user messages for a plan request.
    Subject names come from catalog (keyed by id) in request order; an id that
    is not in the catalog is rendered as itself.
    """
    names = [catalog[sid].name if sid in catalog else sid for sid in req.subject_ids]
    user = PLANNER_USER.format(
        title=req.title.strip(),
        description=(req.description or "").strip(),
        subject_names=", ".join(names),
        subject_ids=", ".join(req.subject_ids),
        start_date=req.start_date.isoformat(),
        end_date=req.end_date.isoformat(),
        hours_per_day=int(req.hours_per_day),
    )
    return [
        {"role": "system", "content": PLANNER_SYSTEM},
        {"role": "user", "content": user},
    ]
