"""
Core Mastery Module.

Canonical mastery types shared by the ledger, scheduler, scorer, branch
engine and gamification layer.

Design:
- MasteryLevel: closed enum with explicit advance/regress transition tables
- InteractionOutcome: one graded answer (credit, latency, hints, timestamp)
- ReviewSchedule: spaced-repetition state embedded in the record
- MasteryRecord: per (student, node) history plus derived level
- MasteryCalculator: fixed-window evaluation of the level transition
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from src.core.clock import ensure_utc, utc_date
from src.core.errors import InvalidInputError


class MasteryLevel(str, Enum):
    """
    Discrete proficiency stage for a student on a node.

    Stages only move one step at a time; see _ADVANCE and _REGRESS.
    """

    NOVICE = "novice"
    DEVELOPING = "developing"
    PROFICIENT = "proficient"
    MASTERED = "mastered"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def advance(self) -> MasteryLevel:
        """Next stage up (MASTERED stays MASTERED)."""
        return _ADVANCE[self]

    def regress(self) -> MasteryLevel:
        """Next stage down (NOVICE stays NOVICE)."""
        return _REGRESS[self]

    def at_least(self, other: MasteryLevel) -> bool:
        return self.rank >= other.rank

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.title()

    @property
    def emoji(self) -> str:
        """Status glyph for CLI display."""
        return {
            MasteryLevel.NOVICE: "◔",
            MasteryLevel.DEVELOPING: "◑",
            MasteryLevel.PROFICIENT: "◕",
            MasteryLevel.MASTERED: "●",
        }[self]

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryLevel.NOVICE: "red",
            MasteryLevel.DEVELOPING: "yellow",
            MasteryLevel.PROFICIENT: "cyan",
            MasteryLevel.MASTERED: "green",
        }[self]


_RANK: dict[MasteryLevel, int] = {
    MasteryLevel.NOVICE: 0,
    MasteryLevel.DEVELOPING: 1,
    MasteryLevel.PROFICIENT: 2,
    MasteryLevel.MASTERED: 3,
}

_ADVANCE: dict[MasteryLevel, MasteryLevel] = {
    MasteryLevel.NOVICE: MasteryLevel.DEVELOPING,
    MasteryLevel.DEVELOPING: MasteryLevel.PROFICIENT,
    MasteryLevel.PROFICIENT: MasteryLevel.MASTERED,
    MasteryLevel.MASTERED: MasteryLevel.MASTERED,
}

_REGRESS: dict[MasteryLevel, MasteryLevel] = {
    MasteryLevel.NOVICE: MasteryLevel.NOVICE,
    MasteryLevel.DEVELOPING: MasteryLevel.NOVICE,
    MasteryLevel.PROFICIENT: MasteryLevel.DEVELOPING,
    MasteryLevel.MASTERED: MasteryLevel.PROFICIENT,
}


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return ensure_utc(value) if value else None
    return ensure_utc(datetime.fromisoformat(value))


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class InteractionOutcome:
    """
    One graded answer.

    credit is a partial-credit fraction in [0, 1]; booleans are accepted
    and converted (True -> 1.0). An answer counts as correct at credit >= 0.5.
    """

    credit: float
    latency_ms: float = 0.0
    hint_count: int = 0
    timestamp: datetime | None = None

    def __post_init__(self):
        credit = self.credit
        if isinstance(credit, bool):
            credit = 1.0 if credit else 0.0
        try:
            credit = float(credit)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"credit must be numeric, got {self.credit!r}", credit=self.credit) from e
        if not 0.0 <= credit <= 1.0:
            raise InvalidInputError("credit must be within [0, 1]", credit=credit)
        if self.latency_ms < 0:
            raise InvalidInputError("latency_ms must be non-negative", latency_ms=self.latency_ms)
        if self.hint_count < 0:
            raise InvalidInputError("hint_count must be non-negative", hint_count=self.hint_count)
        object.__setattr__(self, "credit", credit)
        if self.timestamp is not None:
            object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def is_correct(self) -> bool:
        return self.credit >= 0.5

    @property
    def hinted(self) -> bool:
        return self.hint_count > 0

    def stamped(self, when: datetime) -> InteractionOutcome:
        """Copy with timestamp filled in (keeps an explicit one)."""
        if self.timestamp is not None:
            return self
        return replace(self, timestamp=ensure_utc(when))

    def to_dict(self) -> dict[str, Any]:
        return {
            "credit": self.credit,
            "latency_ms": self.latency_ms,
            "hint_count": self.hint_count,
            "timestamp": _format_dt(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InteractionOutcome:
        return cls(
            credit=data["credit"],
            latency_ms=data.get("latency_ms", 0.0),
            hint_count=data.get("hint_count", 0),
            timestamp=_parse_dt(data.get("timestamp")),
        )


@dataclass(frozen=True)
class ReviewSchedule:
    """
    Spaced-repetition state for a mastered node.

    next_review_due is always last_reviewed_at + interval_days and is only
    ever written by the review scheduler.
    """

    interval_days: float
    last_reviewed_at: datetime
    next_review_due: datetime
    review_count: int = 0
    lapses: int = 0

    @classmethod
    def starting(cls, now: datetime, interval_days: float) -> ReviewSchedule:
        now = ensure_utc(now)
        return cls(
            interval_days=interval_days,
            last_reviewed_at=now,
            next_review_due=now + timedelta(days=interval_days),
        )

    def is_due(self, now: datetime) -> bool:
        """A review attempt is possible from the due calendar day onward."""
        return utc_date(now) >= utc_date(self.next_review_due)

    def is_overdue(self, now: datetime) -> bool:
        return self.next_review_due < ensure_utc(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval_days": self.interval_days,
            "last_reviewed_at": _format_dt(self.last_reviewed_at),
            "next_review_due": _format_dt(self.next_review_due),
            "review_count": self.review_count,
            "lapses": self.lapses,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewSchedule:
        return cls(
            interval_days=float(data["interval_days"]),
            last_reviewed_at=_parse_dt(data["last_reviewed_at"]),
            next_review_due=_parse_dt(data["next_review_due"]),
            review_count=int(data.get("review_count", 0)),
            lapses=int(data.get("lapses", 0)),
        )


@dataclass(frozen=True)
class MasteryRecord:
    """
    Mastery state for one (student, node) pair.

    Created on first interaction, replaced (never edited in place) on every
    append. version counts appends and backs compare-and-append.
    """

    student_id: str
    node_id: str
    interactions: tuple[InteractionOutcome, ...] = ()
    mastery_level: MasteryLevel = MasteryLevel.NOVICE
    truly_mastered: bool = False
    mastered_days: tuple[date, ...] = ()
    mastered_at: datetime | None = None
    review: ReviewSchedule | None = None
    version: int = 0

    @classmethod
    def empty(cls, student_id: str, node_id: str) -> MasteryRecord:
        return cls(student_id=student_id, node_id=node_id)

    @property
    def interaction_count(self) -> int:
        return len(self.interactions)

    @property
    def last_interaction_at(self) -> datetime | None:
        return self.interactions[-1].timestamp if self.interactions else None

    @property
    def last_reviewed_at(self) -> datetime | None:
        return self.review.last_reviewed_at if self.review else None

    @property
    def next_review_due(self) -> datetime | None:
        return self.review.next_review_due if self.review else None

    @property
    def is_scheduled(self) -> bool:
        return self.review is not None

    def to_dict(self) -> dict[str, Any]:
        """Full snapshot, used for persistence and diagnostic logging."""
        return {
            "student_id": self.student_id,
            "node_id": self.node_id,
            "interactions": [i.to_dict() for i in self.interactions],
            "mastery_level": self.mastery_level.value,
            "truly_mastered": self.truly_mastered,
            "mastered_days": [d.isoformat() for d in self.mastered_days],
            "mastered_at": _format_dt(self.mastered_at),
            "review": self.review.to_dict() if self.review else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MasteryRecord:
        review = data.get("review")
        return cls(
            student_id=data["student_id"],
            node_id=data["node_id"],
            interactions=tuple(InteractionOutcome.from_dict(i) for i in data.get("interactions", [])),
            mastery_level=MasteryLevel(data.get("mastery_level", MasteryLevel.NOVICE.value)),
            truly_mastered=bool(data.get("truly_mastered", False)),
            mastered_days=tuple(date.fromisoformat(d) for d in data.get("mastered_days", [])),
            mastered_at=_parse_dt(data.get("mastered_at")),
            review=ReviewSchedule.from_dict(review) if review else None,
            version=int(data.get("version", 0)),
        )


# ============================================================================
# Fixed-Window Mastery Calculator
# ============================================================================


@dataclass
class MasteryConfig:
    """Thresholds for the fixed-window level transition."""

    window_size: int = 5
    advance_ratio: float = 0.8
    max_hinted: int = 1
    regress_ratio: float = 0.6
    truly_mastered_days: int = 2

    def __post_init__(self):
        if self.window_size < 1:
            raise InvalidInputError("window_size must be at least 1", window_size=self.window_size)
        if self.truly_mastered_days < 1:
            raise InvalidInputError(
                "truly_mastered_days must be at least 1", truly_mastered_days=self.truly_mastered_days
            )


@dataclass
class WindowStats:
    """Aggregates over the last K interactions."""

    window_size: int
    observed: int = 0
    correct_credit: float = 0.0
    incorrect_credit: float = 0.0
    hinted: int = 0

    @property
    def correct_ratio(self) -> float:
        return self.correct_credit / self.window_size

    @property
    def incorrect_ratio(self) -> float:
        return self.incorrect_credit / self.window_size


@dataclass
class LevelTransition:
    previous: MasteryLevel
    current: MasteryLevel
    stats: WindowStats | None = field(default=None, repr=False)

    @property
    def advanced(self) -> bool:
        return self.current.rank > self.previous.rank

    @property
    def regressed(self) -> bool:
        return self.current.rank < self.previous.rank


class MasteryCalculator:
    """
    Fixed-window mastery evaluation.

    The last K interactions are evaluated after every append. Ratios are
    taken over K itself, so fewer than K interactions can never satisfy a
    threshold that needs more correct answers than have been given.

    - advance one stage: correct >= 80% of K and at most one hinted answer
    - regress one stage: incorrect >= 60% of K
    """

    def __init__(self, config: MasteryConfig | None = None):
        self.config = config or MasteryConfig()

    def window_stats(self, interactions: tuple[InteractionOutcome, ...] | list[InteractionOutcome]) -> WindowStats:
        window = list(interactions)[-self.config.window_size :]
        stats = WindowStats(window_size=self.config.window_size, observed=len(window))
        for outcome in window:
            stats.correct_credit += outcome.credit
            stats.incorrect_credit += 1.0 - outcome.credit
            if outcome.hinted:
                stats.hinted += 1
        return stats

    def evaluate(self, current: MasteryLevel, interactions) -> LevelTransition:
        """
        Compute the level after the latest append.

        Args:
            current: Level before the append
            interactions: Full history including the new interaction

        Returns:
            LevelTransition with previous and new level
        """
        stats = self.window_stats(interactions)
        if stats.incorrect_ratio >= self.config.regress_ratio:
            new_level = current.regress()
        elif stats.correct_ratio >= self.config.advance_ratio and stats.hinted <= self.config.max_hinted:
            new_level = current.advance()
        else:
            new_level = current
        return LevelTransition(previous=current, current=new_level, stats=stats)

    def update_mastered_days(
        self,
        mastered_days: tuple[date, ...],
        level: MasteryLevel,
        now: datetime,
    ) -> tuple[tuple[date, ...], bool]:
        """
        Track distinct calendar days on which MASTERED was observed.

        Returns:
            (mastered_days, truly_mastered)
        """
        if level is not MasteryLevel.MASTERED:
            return (), False
        today = utc_date(now)
        days = mastered_days if today in mastered_days else (*mastered_days, today)
        return days, len(days) >= self.config.truly_mastered_days


def calculate_days_since(last_review: datetime | None, now: datetime | None = None) -> float | None:
    """
    Calculate days elapsed since a timestamp.

    Args:
        last_review: Timestamp (can be naive or aware)
        now: Current time (defaults to UTC now)

    Returns:
        Days elapsed as float, or None when there is no timestamp
    """
    if last_review is None:
        return None
    now = ensure_utc(now or datetime.now(UTC))
    delta = now - ensure_utc(last_review)
    return delta.total_seconds() / 86400.0
