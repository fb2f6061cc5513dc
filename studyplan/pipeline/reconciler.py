"""
Resolves the subjects and topics named by the LLM against the caller's catalog.
What it does:
- One batched read of the requested subjects (scoped to the user)
- One batched read of the topics under those subjects
- Subject refs: by id, else by case-insensitive name
- Topic refs: by case-insensitive name inside the parent subject
- Unknown topics become new Topic entities (saved later, with the plan)

And, the main purpose:
Turn a ParsedPlan into ids the plan document can safely point at.
"""

from dataclasses import dataclass, field
from typing import Optional

from studyplan.core.entities import PlanRequest, Subject, Topic
from studyplan.core.errors import OwnershipViolation, UnknownSubject
from studyplan.core.ids import TOPIC_PREFIX, new_id
from studyplan.core.logging import get_logger
from studyplan.db.stores import CatalogStore
from studyplan.llm.schemas import ParsedPlan

log = get_logger("pipeline.reconciler")


@dataclass
class Reconciliation:
    subject_ids: list[str] = field(default_factory=list)
    topic_ids: list[str] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    new_topics: list[Topic] = field(default_factory=list)


class Reconciler:
    def __init__(self, catalog: CatalogStore):
        self.catalog = catalog

    async def reconcile(self, parsed: ParsedPlan, user_id: str, req: PlanRequest) -> Reconciliation:
        subjects = await self.catalog.subjects_by_ids(user_id, list(req.subject_ids))
        for s in subjects:
            if s.user_id != user_id:
                log.error(f"catalog returned subject {s.id} owned by another user")
                raise OwnershipViolation("A referenced subject does not belong to the caller")

        by_id = {s.id: s for s in subjects}
        missing = [sid for sid in req.subject_ids if sid not in by_id]
        if missing:
            raise UnknownSubject(f"Unknown subject(s): {', '.join(missing)}")

        by_name: dict[str, Subject] = {}
        for sid in req.subject_ids:
            by_name.setdefault(by_id[sid].name.casefold(), by_id[sid])

        out = Reconciliation()
        for ref in parsed.subjects:
            subject = self._resolve_subject(ref.id, ref.name, by_id, by_name)
            if subject.id not in out.subject_ids:
                out.subject_ids.append(subject.id)

        existing = await self.catalog.topics_for_subjects(list(by_id))
        known: dict[str, dict[str, Topic]] = {}
        for t in existing:
            known.setdefault(t.subject_id, {}).setdefault(t.name.casefold(), t)

        for draft in parsed.topics:
            subject = self._resolve_subject(draft.subject_id, draft.subject_name, by_id, by_name)
            siblings = known.setdefault(subject.id, {})
            topic = siblings.get(draft.name.casefold())
            if topic is None:
                topic = Topic(
                    id=new_id(TOPIC_PREFIX),
                    name=draft.name,
                    subject_id=subject.id,
                    estimated_hours=draft.estimated_hours,
                    priority=0,
                    completed=False,
                )
                siblings[draft.name.casefold()] = topic
                out.new_topics.append(topic)

            if topic.id not in out.topic_ids:
                out.topic_ids.append(topic.id)
                out.topics.append(topic)
            # a topic's subject must be part of the plan
            if subject.id not in out.subject_ids:
                out.subject_ids.append(subject.id)

        return out

    @staticmethod
    def _resolve_subject(
        subject_id: Optional[str],
        subject_name: Optional[str],
        by_id: dict[str, Subject],
        by_name: dict[str, Subject],
    ) -> Subject:
        if subject_id:
            subject = by_id.get(subject_id)
            if subject is None:
                raise UnknownSubject(f"Unknown subject: {subject_id}")
            return subject
        subject = by_name.get((subject_name or "").casefold())
        if subject is None:
            raise UnknownSubject(f"Unknown subject: {subject_name}")
        return subject
