"""
Database table definitions and it stores:
- Subjects (per-user catalog)
- Topics (under a subject)
- Study plans (ids of subjects/topics kept as JSON lists)
Main purpose:
Define persistent data structure.
"""



from sqlalchemy import String, Text, Integer, Date, DateTime, Boolean, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime
from studyplan.db.base import Base

class SubjectRow(Base):
    __tablename__ = "subjects"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    color: Mapped[str] = mapped_column(String, default="#3B82F6")
    priority: Mapped[int] = mapped_column(Integer, default=0)

class TopicRow(Base):
    __tablename__ = "topics"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    # no FK: topics live in the catalog and outlive plans
    subject_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    estimated_hours: Mapped[int] = mapped_column(Integer, default=0)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)

class StudyPlanRow(Base):
    __tablename__ = "study_plans"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(Text, default="")
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    subject_refs: Mapped[list] = mapped_column(JSON, default=list)
    topic_refs: Mapped[list] = mapped_column(JSON, default=list)
    total_hours: Mapped[int] = mapped_column(Integer, default=0)
    completed_hours: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String, default="ACTIVE")  # ACTIVE|COMPLETED|ARCHIVED
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
Index("ix_study_plans_id_user", StudyPlanRow.id, StudyPlanRow.user_id, unique=True)
