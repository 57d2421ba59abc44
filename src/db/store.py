"""
SQLAlchemy-backed LedgerStore.

Compare-and-append is optimistic: an existing record is updated with
`UPDATE ... WHERE version = :expected`, a first record relies on the
(student_id, node_id) unique constraint. Either way a lost race surfaces as
ConcurrentModificationError and nothing from the losing request commits.
The ledger event is inserted in the same transaction as the record.

Branch unlocks and exclusive choices use the same pattern: the unique
constraints on branch_states and exclusive_choices decide which of two
concurrent inserts wins.
"""

from __future__ import annotations

from datetime import date

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from src.core.clock import ensure_utc
from src.core.errors import ConcurrentModificationError
from src.core.mastery import InteractionOutcome, MasteryLevel, MasteryRecord, ReviewSchedule
from src.core.models import (
    BranchChoice,
    BranchState,
    GamificationState,
    LedgerEvent,
    ReviewOutcome,
    StudentProfile,
)
from src.db.database import session_scope
from src.db.models import (
    BranchChoiceRow,
    BranchStateRow,
    ExclusiveChoiceRow,
    GamificationSnapshotRow,
    LedgerEventRow,
    MasteryRecordRow,
    StudentRow,
)


def _record_from_row(row: MasteryRecordRow) -> MasteryRecord:
    return MasteryRecord(
        student_id=row.student_id,
        node_id=row.node_id,
        interactions=tuple(InteractionOutcome.from_dict(i) for i in row.interactions or []),
        mastery_level=MasteryLevel(row.mastery_level),
        truly_mastered=bool(row.truly_mastered),
        mastered_days=tuple(date.fromisoformat(d) for d in row.mastered_days or []),
        mastered_at=ensure_utc(row.mastered_at) if row.mastered_at else None,
        review=ReviewSchedule.from_dict(row.review) if row.review else None,
        version=row.version,
    )


def _record_values(record: MasteryRecord) -> dict:
    data = record.to_dict()
    return {
        "version": record.version,
        "mastery_level": record.mastery_level.value,
        "truly_mastered": record.truly_mastered,
        "mastered_days": data["mastered_days"],
        "mastered_at": record.mastered_at,
        "interactions": data["interactions"],
        "review": data["review"],
        "next_review_due": record.next_review_due,
    }


def _event_from_row(row: LedgerEventRow) -> LedgerEvent:
    return LedgerEvent(
        seq=row.seq,
        student_id=row.student_id,
        node_id=row.node_id,
        credit=row.credit,
        hint_count=row.hint_count,
        difficulty=row.difficulty,
        domain=row.domain,
        level_before=MasteryLevel(row.level_before),
        level_after=MasteryLevel(row.level_after),
        truly_mastered=bool(row.truly_mastered),
        timestamp=ensure_utc(row.timestamp),
        review=ReviewOutcome(row.review) if row.review else None,
    )


def _profile_from_row(row: StudentRow) -> StudentProfile:
    return StudentProfile(
        student_id=row.student_id,
        display_name=row.display_name or "",
        grade_level=row.grade_level,
        domain_focus=row.domain_focus,
    )


class SqlAlchemyLedgerStore:
    """LedgerStore over the configured SQLAlchemy engine."""

    # ========================================
    # Students
    # ========================================

    def get_student(self, student_id: str) -> StudentProfile | None:
        with session_scope() as session:
            row = session.get(StudentRow, student_id)
            return _profile_from_row(row) if row else None

    def save_student(self, profile: StudentProfile) -> None:
        with session_scope() as session:
            session.merge(
                StudentRow(
                    student_id=profile.student_id,
                    display_name=profile.display_name,
                    grade_level=profile.grade_level,
                    domain_focus=profile.domain_focus,
                )
            )

    def list_students(self) -> list[StudentProfile]:
        with session_scope() as session:
            rows = session.scalars(select(StudentRow).order_by(StudentRow.student_id)).all()
            return [_profile_from_row(r) for r in rows]

    # ========================================
    # Mastery records
    # ========================================

    def get_record(self, student_id: str, node_id: str) -> MasteryRecord | None:
        with session_scope() as session:
            row = session.scalars(
                select(MasteryRecordRow).where(
                    MasteryRecordRow.student_id == student_id,
                    MasteryRecordRow.node_id == node_id,
                )
            ).first()
            return _record_from_row(row) if row else None

    def list_records(self, student_id: str) -> list[MasteryRecord]:
        with session_scope() as session:
            rows = session.scalars(
                select(MasteryRecordRow)
                .where(MasteryRecordRow.student_id == student_id)
                .order_by(MasteryRecordRow.node_id)
            ).all()
            return [_record_from_row(r) for r in rows]

    def _current_version(self, student_id: str, node_id: str) -> int | None:
        with session_scope() as session:
            return session.scalar(
                select(MasteryRecordRow.version).where(
                    MasteryRecordRow.student_id == student_id,
                    MasteryRecordRow.node_id == node_id,
                )
            )

    def append_interaction(
        self,
        record: MasteryRecord,
        expected_version: int,
        event: LedgerEvent,
    ) -> LedgerEvent:
        student_id, node_id = record.student_id, record.node_id
        try:
            with session_scope() as session:
                if expected_version == 0:
                    session.add(MasteryRecordRow(student_id=student_id, node_id=node_id, **_record_values(record)))
                    session.flush()
                else:
                    result = session.execute(
                        update(MasteryRecordRow)
                        .where(
                            MasteryRecordRow.student_id == student_id,
                            MasteryRecordRow.node_id == node_id,
                            MasteryRecordRow.version == expected_version,
                        )
                        .values(**_record_values(record))
                    )
                    if result.rowcount != 1:
                        raise ConcurrentModificationError(student_id, node_id, expected_version)

                event_row = LedgerEventRow(
                    student_id=event.student_id,
                    node_id=event.node_id,
                    credit=event.credit,
                    hint_count=event.hint_count,
                    difficulty=event.difficulty,
                    domain=event.domain,
                    level_before=event.level_before.value,
                    level_after=event.level_after.value,
                    truly_mastered=event.truly_mastered,
                    review=event.review.value if event.review else None,
                    timestamp=event.timestamp,
                )
                session.add(event_row)
                session.flush()
                committed = _event_from_row(event_row)
        except IntegrityError as e:
            logger.debug(f"Insert race on {student_id}/{node_id}: {e.orig}")
            raise ConcurrentModificationError(
                student_id, node_id, expected_version, self._current_version(student_id, node_id)
            ) from e
        except ConcurrentModificationError as e:
            e.context["actual_version"] = self._current_version(student_id, node_id)
            raise
        return committed

    def list_events(self, student_id: str, after_seq: int = 0, up_to_seq: int | None = None) -> list[LedgerEvent]:
        with session_scope() as session:
            query = select(LedgerEventRow).where(
                LedgerEventRow.student_id == student_id,
                LedgerEventRow.seq > after_seq,
            )
            if up_to_seq is not None:
                query = query.where(LedgerEventRow.seq <= up_to_seq)
            rows = session.scalars(query.order_by(LedgerEventRow.seq)).all()
            return [_event_from_row(r) for r in rows]

    # ========================================
    # Branches
    # ========================================

    def get_branch_states(self, student_id: str) -> dict[str, BranchState]:
        with session_scope() as session:
            rows = session.scalars(select(BranchStateRow).where(BranchStateRow.student_id == student_id)).all()
            return {r.branch_id: BranchState(r.state) for r in rows}

    def set_branch_state(self, student_id: str, branch_id: str, state: BranchState) -> None:
        with session_scope() as session:
            if state is BranchState.LOCKED:
                session.execute(
                    delete(BranchStateRow).where(
                        BranchStateRow.student_id == student_id,
                        BranchStateRow.branch_id == branch_id,
                    )
                )
                return
            row = session.scalars(
                select(BranchStateRow).where(
                    BranchStateRow.student_id == student_id,
                    BranchStateRow.branch_id == branch_id,
                )
            ).first()
            if row is None:
                session.add(BranchStateRow(student_id=student_id, branch_id=branch_id, state=state.value))
            else:
                row.state = state.value

    def mark_branch_available(self, student_id: str, branch_id: str) -> bool:
        try:
            with session_scope() as session:
                session.add(
                    BranchStateRow(student_id=student_id, branch_id=branch_id, state=BranchState.AVAILABLE.value)
                )
        except IntegrityError:
            # Row exists: already AVAILABLE or CHOSEN, possibly by a concurrent unlock
            return False
        return True

    def append_branch_choice(self, choice: BranchChoice, exclusive: bool = False) -> BranchChoice:
        try:
            with session_scope() as session:
                if exclusive:
                    holder = session.scalars(
                        select(ExclusiveChoiceRow).where(
                            ExclusiveChoiceRow.student_id == choice.student_id,
                            ExclusiveChoiceRow.node_id == choice.node_id,
                        )
                    ).first()
                    if holder is None:
                        session.add(
                            ExclusiveChoiceRow(
                                student_id=choice.student_id,
                                node_id=choice.node_id,
                                branch_id=choice.branch_id,
                                chosen_at=choice.chosen_at,
                            )
                        )
                        session.flush()
                    elif holder.branch_id != choice.branch_id:
                        return BranchChoice(
                            student_id=holder.student_id,
                            node_id=holder.node_id,
                            branch_id=holder.branch_id,
                            chosen_at=ensure_utc(holder.chosen_at),
                        )
                session.add(
                    BranchChoiceRow(
                        student_id=choice.student_id,
                        node_id=choice.node_id,
                        branch_id=choice.branch_id,
                        chosen_at=choice.chosen_at,
                    )
                )
        except IntegrityError as e:
            # Lost the insert race; the holder row is committed now
            logger.debug(f"Exclusive choice race on {choice.student_id}/{choice.node_id}: {e.orig}")
            return self.append_branch_choice(choice, exclusive=True)
        return choice

    def list_branch_choices(self, student_id: str) -> list[BranchChoice]:
        with session_scope() as session:
            rows = session.scalars(
                select(BranchChoiceRow)
                .where(BranchChoiceRow.student_id == student_id)
                .order_by(BranchChoiceRow.id)
            ).all()
            return [
                BranchChoice(
                    student_id=r.student_id,
                    node_id=r.node_id,
                    branch_id=r.branch_id,
                    chosen_at=ensure_utc(r.chosen_at),
                )
                for r in rows
            ]

    # ========================================
    # Gamification snapshot
    # ========================================

    def get_gamification_state(self, student_id: str) -> GamificationState | None:
        with session_scope() as session:
            row = session.get(GamificationSnapshotRow, student_id)
            return GamificationState.from_dict(row.state) if row else None

    def save_gamification_state(self, state: GamificationState) -> None:
        with session_scope() as session:
            session.merge(
                GamificationSnapshotRow(
                    student_id=state.student_id,
                    event_cursor=state.event_cursor,
                    state=state.to_dict(),
                )
            )
