"""
Mastery Ledger Models.

SQLAlchemy models backing SqlAlchemyLedgerStore:
- Student registry
- Mastery records (one row per student × node, optimistic version column)
- Ledger events (append-only, autoincrement seq gives insert order)
- Branch unlock states, branch choices and exclusive-choice holders
- Gamification snapshot cache

Uses generic JSON and timezone-aware DateTime so the same models run on
PostgreSQL and on sqlite in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StudentRow(Base):
    """Registered student (registry collaborator)."""

    __tablename__ = "students"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, default="")
    grade_level: Mapped[int | None] = mapped_column(Integer)
    domain_focus: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<StudentRow {self.student_id} grade={self.grade_level}>"


class MasteryRecordRow(Base):
    """
    Mastery record per student per node.

    interactions and review hold the serialized history and schedule;
    version backs compare-and-append.
    """

    __tablename__ = "mastery_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    mastery_level: Mapped[str] = mapped_column(String(16), nullable=False)
    truly_mastered: Mapped[bool] = mapped_column(Boolean, default=False)
    mastered_days: Mapped[list[str]] = mapped_column(JSON, default=list)
    mastered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    interactions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    # Review schedule (denormalized due date for forecast queries)
    review: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    next_review_due: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("student_id", "node_id", name="uq_mastery_student_node"),
        Index("idx_mastery_next_review", "student_id", "next_review_due"),
    )

    def __repr__(self) -> str:
        return f"<MasteryRecordRow {self.student_id}/{self.node_id} level={self.mastery_level} v{self.version}>"


class LedgerEventRow(Base):
    """Append-only ledger event consumed by gamification."""

    __tablename__ = "ledger_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    credit: Mapped[float] = mapped_column(Float, nullable=False)
    hint_count: Mapped[int] = mapped_column(Integer, default=0)
    difficulty: Mapped[int] = mapped_column(Integer, default=1)
    domain: Mapped[str] = mapped_column(String(64), default="")
    level_before: Mapped[str] = mapped_column(String(16), nullable=False)
    level_after: Mapped[str] = mapped_column(String(16), nullable=False)
    truly_mastered: Mapped[bool] = mapped_column(Boolean, default=False)
    review: Mapped[str | None] = mapped_column(String(16))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_ledger_events_student", "student_id", "seq"),)

    def __repr__(self) -> str:
        return f"<LedgerEventRow #{self.seq} {self.student_id}/{self.node_id} credit={self.credit}>"


class BranchStateRow(Base):
    """AVAILABLE / CHOSEN state per student per branch (LOCKED = no row)."""

    __tablename__ = "branch_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(128), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("student_id", "branch_id", name="uq_branch_state_student_branch"),)


class BranchChoiceRow(Base):
    """Append-only branch choice history."""

    __tablename__ = "branch_choices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chosen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_branch_choices_student_node", "student_id", "node_id"),)


class ExclusiveChoiceRow(Base):
    """
    Holder of an exclusive-choice node per student.

    The first branch to insert its row wins the node; the unique constraint
    turns a concurrent second insert into an IntegrityError.
    """

    __tablename__ = "exclusive_choices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    node_id: Mapped[str] = mapped_column(String(128), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(128), nullable=False)
    chosen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (UniqueConstraint("student_id", "node_id", name="uq_exclusive_choice_student_node"),)


class GamificationSnapshotRow(Base):
    """Cached gamification state; verified against the ledger on every read."""

    __tablename__ = "gamification_snapshots"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_cursor: Mapped[int] = mapped_column(Integer, default=0)
    state: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
