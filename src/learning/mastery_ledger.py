"""
Mastery Ledger.

Single source of truth for per (student, node) practice history. Every
graded interaction is appended here; mastery level, trulyMastered, the
review schedule and the ledger event consumed by gamification are all
derived inside the same compare-and-append.

Flow for record_interaction:
1. Validate student, node and outcome (nothing is written on failure)
2. Read the current record and its version
3. Append the outcome, evaluate the fixed window, update mastered days
4. Let the review scheduler update the schedule
5. Compare-and-append record + event; on a version conflict re-read and
   retry against the latest history
"""

from __future__ import annotations

from dataclasses import replace

from loguru import logger

from src.core.clock import Clock, SystemClock
from src.core.errors import ConcurrentModificationError, UnknownNodeError
from src.core.mastery import (
    InteractionOutcome,
    MasteryCalculator,
    MasteryConfig,
    MasteryLevel,
    MasteryRecord,
)
from src.core.models import LedgerEvent
from src.core.store import LedgerStore, require_student
from src.graph.knowledge_graph import KnowledgeGraph
from src.study.review_scheduler import ReviewScheduler


class MasteryLedger:
    """Append-only mastery history with derived level."""

    def __init__(
        self,
        store: LedgerStore,
        graph: KnowledgeGraph,
        scheduler: ReviewScheduler,
        clock: Clock | None = None,
        config: MasteryConfig | None = None,
        max_retries: int = 3,
    ):
        self.store = store
        self.graph = graph
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.calculator = MasteryCalculator(config)
        self.max_retries = max_retries

    def record_interaction(
        self,
        student_id: str,
        node_id: str,
        outcome: InteractionOutcome,
    ) -> MasteryRecord:
        """
        Append a graded interaction and recompute mastery.

        Args:
            student_id: Registered student
            node_id: Knowledge node the interaction was about
            outcome: Credit, latency and hints (timestamp defaults to now)

        Returns:
            The committed MasteryRecord

        Raises:
            UnknownNodeError: node is not in the knowledge graph
            UnknownStudentError: student is not registered
            ConcurrentModificationError: retries exhausted
        """
        if not self.graph.has_node(node_id):
            raise UnknownNodeError(node_id)
        require_student(self.store, student_id)
        outcome = outcome.stamped(self.clock.now())

        attempt = 0
        while True:
            current = self.store.get_record(student_id, node_id) or MasteryRecord.empty(student_id, node_id)
            record, event = self._apply(current, outcome)
            try:
                self.store.append_interaction(record, expected_version=current.version, event=event)
            except ConcurrentModificationError:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(f"Giving up on {student_id}/{node_id} after {attempt} conflicting appends")
                    raise
                logger.debug(f"Retrying append for {student_id}/{node_id} (attempt {attempt})")
                continue

            if record.mastery_level is not current.mastery_level:
                logger.info(
                    f"{student_id} {node_id}: {current.mastery_level.value} -> {record.mastery_level.value}"
                )
            return record

    def _apply(self, current: MasteryRecord, outcome: InteractionOutcome) -> tuple[MasteryRecord, LedgerEvent]:
        """Pure transition from one record version to the next."""
        now = outcome.timestamp
        interactions = (*current.interactions, outcome)
        transition = self.calculator.evaluate(current.mastery_level, interactions)
        mastered_days, truly_mastered = self.calculator.update_mastered_days(
            current.mastered_days, transition.current, now
        )
        review, review_outcome = self.scheduler.apply_interaction(current.review, transition, outcome, now)

        mastered_at = current.mastered_at
        if mastered_at is None and transition.current is MasteryLevel.MASTERED:
            mastered_at = now

        record = replace(
            current,
            interactions=interactions,
            mastery_level=transition.current,
            truly_mastered=truly_mastered,
            mastered_days=mastered_days,
            mastered_at=mastered_at,
            review=review,
            version=current.version + 1,
        )
        node = self.graph.get_node(current.node_id)
        event = LedgerEvent(
            student_id=current.student_id,
            node_id=current.node_id,
            credit=outcome.credit,
            hint_count=outcome.hint_count,
            difficulty=node.difficulty,
            domain=node.domain,
            level_before=transition.previous,
            level_after=transition.current,
            truly_mastered=truly_mastered,
            timestamp=now,
            review=review_outcome,
        )
        return record, event

    # ========================================
    # Reads
    # ========================================

    def get_record(self, student_id: str, node_id: str) -> MasteryRecord | None:
        return self.store.get_record(student_id, node_id)

    def get_records(self, student_id: str) -> list[MasteryRecord]:
        require_student(self.store, student_id)
        return self.store.list_records(student_id)

    def get_level(self, student_id: str, node_id: str) -> MasteryLevel:
        record = self.store.get_record(student_id, node_id)
        return record.mastery_level if record else MasteryLevel.NOVICE

    def is_proficient(self, student_id: str, node_id: str) -> bool:
        return self.get_level(student_id, node_id).at_least(MasteryLevel.PROFICIENT)

    def get_mastery_map(self, student_id: str) -> dict[str, MasteryLevel]:
        """Level for every node the student has touched."""
        return {r.node_id: r.mastery_level for r in self.get_records(student_id)}
