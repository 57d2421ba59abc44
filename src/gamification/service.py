"""
Gamification State Machine.

Folds the per-student ledger event log into XP, level, streaks, badges and
boss eligibility. It consumes ledger events only and never writes to the
ledger, the review schedule or branch state.

The persisted GamificationState is a cache with an event cursor and the
number of events folded. On every read the stored snapshot is checked
against a re-fold of the same events, and the fold's per-node levels are
checked against the mastery records. Any disagreement is a data-corruption
bug: it is logged with the full ledger snapshot and raised as
InvariantViolationError, never repaired silently.

The one expected gap is an event that committed after the snapshot was
saved but carries a lower seq than its cursor (two writers on different
nodes, the earlier insert committing last). The snapshot is then stale,
not corrupt, and is rolled forward from the full ledger.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from loguru import logger

from src.core.clock import Clock, SystemClock, utc_date
from src.core.errors import ConflictError, InvariantViolationError
from src.core.mastery import MasteryRecord
from src.core.models import GamificationState, LedgerEvent, ReviewOutcome
from src.core.store import LedgerStore, require_student
from src.gamification.badges import BADGES_BY_ID, ProgressContext, evaluate_badges
from src.gamification.boss import BossConfig, evaluate_boss_eligibility
from src.gamification.xp import XPCalculator, XPConfig
from src.graph.knowledge_graph import KnowledgeGraph

PERSISTENCE_WRONG_RUN = 3
COMEBACK_GAP_DAYS = 3
MAX_SNAPSHOT_READS = 5


@dataclass
class FoldResult:
    xp: int = 0
    context: ProgressContext = field(default_factory=ProgressContext)
    badges: set[str] = field(default_factory=set)
    first_mastered: set[str] = field(default_factory=set)
    wrong_runs: dict[str, int] = field(default_factory=dict)
    cursor: int = 0
    count: int = 0


class GamificationService:
    """Derives gamification state from ledger events."""

    def __init__(
        self,
        store: LedgerStore,
        graph: KnowledgeGraph,
        clock: Clock | None = None,
        xp_config: XPConfig | None = None,
        boss_config: BossConfig | None = None,
    ):
        self.store = store
        self.graph = graph
        self.clock = clock or SystemClock()
        self.xp = XPCalculator(xp_config)
        self.boss_config = boss_config or BossConfig()

    # ========================================
    # Fold
    # ========================================

    def apply_event(self, state: FoldResult, event: LedgerEvent) -> None:
        """Consume one ledger event. Mutates state in place."""
        ctx = state.context
        node_id = event.node_id
        correct = event.is_correct

        day = utc_date(event.timestamp)
        previous_day = ctx.day_streak.last_active
        ctx.day_streak.record_activity(day)
        if previous_day is not None and (day - previous_day).days >= COMEBACK_GAP_DAYS and correct:
            ctx.comebacks += 1

        if correct:
            if state.wrong_runs.get(node_id, 0) >= PERSISTENCE_WRONG_RUN:
                ctx.persistence_wins += 1
            state.wrong_runs[node_id] = 0
        else:
            state.wrong_runs[node_id] = state.wrong_runs.get(node_id, 0) + 1

        ctx.accuracy.record(correct, event.hint_count > 0)
        if correct:
            state.xp += self.xp.correct_answer_xp(event.difficulty, ctx.accuracy.current)
        if event.reached_mastered and node_id not in state.first_mastered:
            state.first_mastered.add(node_id)
            state.xp += self.xp.config.node_mastered
        if event.review is ReviewOutcome.PASSED:
            state.xp += self.xp.config.review_passed

        ctx.domains[node_id] = event.domain
        ctx.levels[node_id] = event.level_after.value
        if event.truly_mastered:
            ctx.truly_mastered.add(node_id)
        else:
            ctx.truly_mastered.discard(node_id)

        ctx.level = self.xp.levels.level_for(state.xp)
        state.badges |= evaluate_badges(ctx, state.badges)
        state.cursor = event.seq
        state.count += 1

    def fold(self, events: list[LedgerEvent]) -> FoldResult:
        state = FoldResult()
        for event in events:
            self.apply_event(state, event)
        return state

    # ========================================
    # Public read
    # ========================================

    def get_student_gamification_data(self, student_id: str) -> GamificationState:
        """
        XP, level, streak, badges, boss eligibility and mastery map.

        Raises:
            UnknownStudentError: student is not registered
            InvariantViolationError: stored or derived state disagrees with the ledger
        """
        require_student(self.store, student_id)
        events, records = self._read_ledger(student_id)
        folded = self.fold(events)

        self._check_against_records(student_id, folded, records)
        stored = self.store.get_gamification_state(student_id)
        if stored is not None and self._missed_late_commits(stored, events):
            logger.info(
                f"Gamification snapshot for {student_id} missed events that committed after it was saved; "
                f"rolling forward from the full ledger"
            )
        elif stored is not None:
            self._check_against_snapshot(student_id, stored, events, records)

        state = self._to_state(student_id, folded, records)
        if stored is None or (stored.event_cursor, stored.event_count) != (state.event_cursor, state.event_count):
            self.store.save_gamification_state(state)
            if stored is not None and state.level > stored.level:
                logger.info(f"{student_id} reached level {state.level} ({state.level_title})")
        return state

    def _read_ledger(self, student_id: str) -> tuple[list[LedgerEvent], list[MasteryRecord]]:
        """
        Events and records from the same committed ledger state.

        Records and events commit together, so if the event log is unchanged
        after the records were read, the two reads describe one snapshot. The
        whole log is compared because a late commit can land below the last
        seq already read.
        """
        for _ in range(MAX_SNAPSHOT_READS):
            events = self.store.list_events(student_id)
            records = self.store.list_records(student_id)
            if [e.seq for e in self.store.list_events(student_id)] == [e.seq for e in events]:
                return events, records
        raise ConflictError(
            f"Ledger for {student_id} kept changing while reading; retry the request",
            student_id=student_id,
        )

    def get_badge_details(self, state: GamificationState) -> list[dict[str, str]]:
        return [BADGES_BY_ID[b].to_dict() for b in sorted(state.badges) if b in BADGES_BY_ID]

    def _to_state(self, student_id: str, folded: FoldResult, records: list[MasteryRecord]) -> GamificationState:
        ctx = folded.context
        today = utc_date(self.clock.now())
        return GamificationState(
            student_id=student_id,
            xp=folded.xp,
            level=ctx.level,
            level_title=self.xp.levels.title_for(ctx.level),
            xp_to_next_level=self.xp.levels.xp_to_next(folded.xp),
            streak=ctx.day_streak.as_of(today),
            longest_streak=ctx.day_streak.longest,
            last_active_date=ctx.day_streak.last_active,
            badges=set(folded.badges),
            boss_eligibility=evaluate_boss_eligibility(ctx, today, self.graph.domains(), self.boss_config),
            mastery_map={r.node_id: r.mastery_level.value for r in records},
            event_cursor=folded.cursor,
            event_count=folded.count,
        )

    # ========================================
    # Invariant checks
    # ========================================

    def _violation(self, student_id: str, message: str, records: list[MasteryRecord], **context) -> None:
        snapshot = json.dumps([r.to_dict() for r in records], default=str)
        logger.error(f"Invariant violation for {student_id}: {message} | context={context} | ledger={snapshot}")
        raise InvariantViolationError(message, student_id=student_id, **context)

    def _check_against_records(self, student_id: str, folded: FoldResult, records: list[MasteryRecord]) -> None:
        from_ledger = {r.node_id: r.mastery_level.value for r in records}
        if folded.context.levels != from_ledger:
            self._violation(
                student_id,
                "Event log levels disagree with mastery records",
                records,
                event_levels=folded.context.levels,
                record_levels=from_ledger,
            )
        truly = {r.node_id for r in records if r.truly_mastered}
        if folded.context.truly_mastered != truly:
            self._violation(
                student_id,
                "Event log trulyMastered flags disagree with mastery records",
                records,
                event_truly_mastered=sorted(folded.context.truly_mastered),
                record_truly_mastered=sorted(truly),
            )

    def _missed_late_commits(self, stored: GamificationState, events: list[LedgerEvent]) -> bool:
        """
        True when more events sit at or below the cursor than the snapshot folded.

        Sequence numbers are handed out at insert time, so a transaction can
        commit an event below a cursor that a faster writer already moved past.
        """
        covered = sum(1 for e in events if e.seq <= stored.event_cursor)
        return covered > stored.event_count

    def _check_against_snapshot(
        self,
        student_id: str,
        stored: GamificationState,
        events: list[LedgerEvent],
        records: list[MasteryRecord],
    ) -> None:
        last_seq = events[-1].seq if events else 0
        if stored.event_cursor > last_seq:
            self._violation(
                student_id,
                "Stored gamification snapshot is ahead of the ledger",
                records,
                event_cursor=stored.event_cursor,
                last_seq=last_seq,
            )
        replay = self._to_state(
            student_id,
            self.fold([e for e in events if e.seq <= stored.event_cursor]),
            records,
        )
        if replay.ledger_fields() != stored.ledger_fields():
            self._violation(
                student_id,
                "Stored gamification snapshot disagrees with the ledger",
                records,
                stored=stored.ledger_fields(),
                derived=replay.ledger_fields(),
            )
