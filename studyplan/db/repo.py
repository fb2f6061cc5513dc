# studyplan/db/repo.py

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from studyplan.db.models import SubjectRow, TopicRow, StudyPlanRow


async def add_subject(db: AsyncSession, subject: SubjectRow) -> SubjectRow:
    db.add(subject)
    await db.commit()
    await db.refresh(subject)
    return subject


async def list_subjects(db: AsyncSession, user_id: str) -> list[SubjectRow]:
    res = await db.execute(
        select(SubjectRow).where(SubjectRow.user_id == user_id).order_by(SubjectRow.name, SubjectRow.id)
    )
    return list(res.scalars().all())


async def get_subjects(db: AsyncSession, user_id: str, subject_ids: list[str]) -> list[SubjectRow]:
    if not subject_ids:
        return []
    res = await db.execute(
        select(SubjectRow).where(SubjectRow.user_id == user_id, SubjectRow.id.in_(subject_ids))
    )
    return list(res.scalars().all())


async def get_topics_for_subjects(db: AsyncSession, subject_ids: list[str]) -> list[TopicRow]:
    if not subject_ids:
        return []
    res = await db.execute(
        select(TopicRow).where(TopicRow.subject_id.in_(subject_ids)).order_by(TopicRow.id)
    )
    return list(res.scalars().all())


async def get_topics(db: AsyncSession, topic_ids: list[str]) -> list[TopicRow]:
    if not topic_ids:
        return []
    res = await db.execute(select(TopicRow).where(TopicRow.id.in_(topic_ids)))
    return list(res.scalars().all())


async def create_plan(db: AsyncSession, plan: StudyPlanRow, new_topics: list[TopicRow]) -> StudyPlanRow:
    # topics created during reconciliation commit together with the plan
    db.add_all(new_topics)
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


async def get_plan(db: AsyncSession, plan_id: str, user_id: str) -> StudyPlanRow | None:
    res = await db.execute(
        select(StudyPlanRow).where(StudyPlanRow.id == plan_id, StudyPlanRow.user_id == user_id)
    )
    return res.scalar_one_or_none()


async def list_plans(db: AsyncSession, user_id: str) -> list[StudyPlanRow]:
    res = await db.execute(
        select(StudyPlanRow)
        .where(StudyPlanRow.user_id == user_id)
        .order_by(StudyPlanRow.created_at.desc(), StudyPlanRow.id)
    )
    return list(res.scalars().all())


async def update_plan(db: AsyncSession, plan: StudyPlanRow) -> StudyPlanRow:
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


async def delete_plan(db: AsyncSession, plan_id: str, user_id: str) -> bool:
    res = await db.execute(
        delete(StudyPlanRow).where(StudyPlanRow.id == plan_id, StudyPlanRow.user_id == user_id)
    )
    await db.commit()
    return res.rowcount > 0
