"""
Spaced-Repetition Review Scheduler.

Simplified exponential-backoff spacing for mastered nodes. Only two review
grades exist: passed and failed.

- First time a node reaches MASTERED: interval = base (1 day)
- Passed review: interval *= growth (2.0), capped at 60 days
- Failed review (wrong answer on a due review, or any mastery regression
  on a scheduled node): interval resets to base

next_review_due is always recomputed as now + interval, never set by a
caller. Forecast queries are pure projections over the stored due dates;
nothing runs in the background.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta

from loguru import logger

from src.core.clock import Clock, SystemClock, ensure_utc, utc_date
from src.core.errors import InvalidInputError
from src.core.mastery import InteractionOutcome, LevelTransition, MasteryLevel, ReviewSchedule
from src.core.models import ReviewOutcome
from src.core.store import LedgerStore, require_student
from src.graph.knowledge_graph import KnowledgeGraph

MAX_FORECAST_DAYS = 3650


@dataclass
class ReviewConfig:
    """Configuration for the review interval curve."""

    base_interval_days: float = 1.0
    growth_factor: float = 2.0
    max_interval_days: float = 60.0
    forecast_days: int = 7

    def __post_init__(self):
        if self.base_interval_days <= 0:
            raise InvalidInputError("base_interval_days must be positive", base_interval_days=self.base_interval_days)
        if self.growth_factor < 1.0:
            raise InvalidInputError("growth_factor must be at least 1.0", growth_factor=self.growth_factor)
        if self.max_interval_days < self.base_interval_days:
            raise InvalidInputError(
                "max_interval_days must be >= base_interval_days",
                max_interval_days=self.max_interval_days,
            )
        if not 0 <= self.forecast_days <= MAX_FORECAST_DAYS:
            raise InvalidInputError(
                f"forecast_days must be between 0 and {MAX_FORECAST_DAYS}", forecast_days=self.forecast_days
            )


@dataclass
class UpcomingReview:
    node_id: str
    code: str
    title: str
    due_at: datetime
    interval_days: float
    mastery_level: MasteryLevel
    overdue: bool = False

    @property
    def due_date(self) -> date:
        return utc_date(self.due_at)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "code": self.code,
            "title": self.title,
            "due_at": self.due_at.isoformat(),
            "due_date": self.due_date.isoformat(),
            "interval_days": self.interval_days,
            "mastery_level": self.mastery_level.value,
            "overdue": self.overdue,
        }


@dataclass
class ReviewSummary:
    overdue: int = 0
    due_today: int = 0
    due_this_week: int = 0
    scheduled: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "overdue": self.overdue,
            "due_today": self.due_today,
            "due_this_week": self.due_this_week,
            "scheduled": self.scheduled,
        }


@dataclass
class ForecastDay:
    day: date
    node_ids: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.node_ids)

    def to_dict(self) -> dict:
        return {"day": self.day.isoformat(), "count": self.count, "node_ids": list(self.node_ids)}


class ReviewScheduler:
    """
    Computes and queries review due dates.

    apply_interaction is the only writer of ReviewSchedule and is called by
    the mastery ledger inside its append. Everything else is read-only.
    """

    def __init__(
        self,
        store: LedgerStore,
        graph: KnowledgeGraph,
        clock: Clock | None = None,
        config: ReviewConfig | None = None,
    ):
        self.store = store
        self.graph = graph
        self.clock = clock or SystemClock()
        self.config = config or ReviewConfig()

    # ========================================
    # Interval updates
    # ========================================

    def apply_interaction(
        self,
        review: ReviewSchedule | None,
        transition: LevelTransition,
        outcome: InteractionOutcome,
        now: datetime,
    ) -> tuple[ReviewSchedule | None, ReviewOutcome | None]:
        """
        Update the review schedule for one new interaction.

        Args:
            review: Schedule before the interaction (None if never mastered)
            transition: Mastery level change caused by the interaction
            outcome: The graded interaction
            now: Interaction time

        Returns:
            (new schedule, review outcome or None if this was not a review)
        """
        now = ensure_utc(now)
        if review is None:
            if transition.current is MasteryLevel.MASTERED:
                return ReviewSchedule.starting(now, self.config.base_interval_days), None
            return None, None

        if transition.regressed:
            return self._failed(review, now), ReviewOutcome.FAILED
        if not review.is_due(now):
            # Practice ahead of schedule does not move the due date
            return review, None
        if outcome.is_correct:
            return self._passed(review, now), ReviewOutcome.PASSED
        return self._failed(review, now), ReviewOutcome.FAILED

    def _passed(self, review: ReviewSchedule, now: datetime) -> ReviewSchedule:
        interval = min(review.interval_days * self.config.growth_factor, self.config.max_interval_days)
        return replace(
            review,
            interval_days=interval,
            last_reviewed_at=now,
            next_review_due=now + timedelta(days=interval),
            review_count=review.review_count + 1,
        )

    def _failed(self, review: ReviewSchedule, now: datetime) -> ReviewSchedule:
        interval = self.config.base_interval_days
        return replace(
            review,
            interval_days=interval,
            last_reviewed_at=now,
            next_review_due=now + timedelta(days=interval),
            review_count=review.review_count + 1,
            lapses=review.lapses + 1,
        )

    # ========================================
    # Queries
    # ========================================

    def _scheduled(self, student_id: str) -> list[tuple[str, ReviewSchedule, MasteryLevel]]:
        require_student(self.store, student_id)
        return [
            (record.node_id, record.review, record.mastery_level)
            for record in self.store.list_records(student_id)
            if record.review is not None
        ]

    def _horizon(self, forecast_days: int | None) -> int:
        days = self.config.forecast_days if forecast_days is None else forecast_days
        if not isinstance(days, int) or isinstance(days, bool):
            raise InvalidInputError("forecast_days must be an integer", forecast_days=days)
        if not 0 <= days <= MAX_FORECAST_DAYS:
            raise InvalidInputError(
                f"forecast_days must be between 0 and {MAX_FORECAST_DAYS}", forecast_days=days
            )
        return days

    def get_upcoming_reviews(self, student_id: str, forecast_days: int | None = None) -> list[UpcomingReview]:
        """
        Reviews due within the next forecast_days, overdue ones included.

        Args:
            student_id: Student identifier
            forecast_days: Horizon in days (default from config)

        Returns:
            Reviews ordered by due time, then node id
        """
        days = self._horizon(forecast_days)
        now = self.clock.now()
        horizon = now + timedelta(days=days)

        upcoming = []
        for node_id, review, level in self._scheduled(student_id):
            if review.next_review_due > horizon:
                continue
            node = self.graph.get_node(node_id)
            upcoming.append(
                UpcomingReview(
                    node_id=node_id,
                    code=node.code,
                    title=node.title,
                    due_at=review.next_review_due,
                    interval_days=review.interval_days,
                    mastery_level=level,
                    overdue=review.is_overdue(now),
                )
            )
        upcoming.sort(key=lambda r: (r.due_at, r.node_id))
        return upcoming

    def get_due_review_summary(self, student_id: str, forecast_days: int | None = None) -> ReviewSummary:
        """
        Count overdue / due-today / due-this-week reviews.

        Buckets are disjoint: an overdue review is not also due today, and
        due_this_week covers reviews after today up to the horizon.
        """
        days = self._horizon(forecast_days)
        now = self.clock.now()
        today = utc_date(now)
        horizon = now + timedelta(days=days)

        summary = ReviewSummary()
        for _node_id, review, _level in self._scheduled(student_id):
            summary.scheduled += 1
            due = review.next_review_due
            if due < now:
                summary.overdue += 1
            elif utc_date(due) == today:
                summary.due_today += 1
            elif due <= horizon:
                summary.due_this_week += 1
        logger.debug(f"Review summary for {student_id}: {summary.to_dict()}")
        return summary

    def get_due_nodes(self, student_id: str) -> list[str]:
        """Node ids whose review is due right now (due time <= now)."""
        now = self.clock.now()
        due = [(review.next_review_due, node_id) for node_id, review, _ in self._scheduled(student_id)
               if review.next_review_due <= now]
        return [node_id for _, node_id in sorted(due)]

    def get_review_forecast(self, student_id: str, forecast_days: int | None = None) -> list[ForecastDay]:
        """
        Reviews grouped per calendar day, overdue ones folded into today.

        Returns one entry per day from today through the horizon, including
        empty days.
        """
        days = self._horizon(forecast_days)
        today = utc_date(self.clock.now())
        buckets: dict[date, list[str]] = defaultdict(list)
        for node_id, review, _ in self._scheduled(student_id):
            day = max(utc_date(review.next_review_due), today)
            if (day - today).days <= days:
                buckets[day].append(node_id)

        return [
            ForecastDay(day=today + timedelta(days=offset), node_ids=sorted(buckets.get(today + timedelta(days=offset), [])))
            for offset in range(days + 1)
        ]
