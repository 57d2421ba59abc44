"""
Persisted value types shared by the store and the engine components.

StudentProfile is owned by the registry collaborator. LedgerEvent is the
append-only event log that the gamification layer folds over. BranchState
and BranchChoice belong to the unlock engine. GamificationState is the
derived snapshot, recomputable from the event log at any time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from src.core.clock import ensure_utc
from src.core.mastery import MasteryLevel


@dataclass(frozen=True)
class StudentProfile:
    student_id: str
    display_name: str = ""
    grade_level: int | None = None
    domain_focus: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "display_name": self.display_name,
            "grade_level": self.grade_level,
            "domain_focus": self.domain_focus,
        }


class ReviewOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerEvent:
    """
    One committed interaction, as seen by downstream consumers.

    Written by the ledger in the same commit as the mastery record, so the
    log never runs ahead of or behind the records. seq is assigned by the
    store and is strictly increasing in commit order.
    """

    student_id: str
    node_id: str
    credit: float
    hint_count: int
    difficulty: int
    domain: str
    level_before: MasteryLevel
    level_after: MasteryLevel
    truly_mastered: bool
    timestamp: datetime
    review: ReviewOutcome | None = None
    seq: int = 0

    @property
    def is_correct(self) -> bool:
        return self.credit >= 0.5

    @property
    def reached_mastered(self) -> bool:
        return self.level_after is MasteryLevel.MASTERED and self.level_before is not MasteryLevel.MASTERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "student_id": self.student_id,
            "node_id": self.node_id,
            "credit": self.credit,
            "hint_count": self.hint_count,
            "difficulty": self.difficulty,
            "domain": self.domain,
            "level_before": self.level_before.value,
            "level_after": self.level_after.value,
            "truly_mastered": self.truly_mastered,
            "timestamp": self.timestamp.isoformat(),
            "review": self.review.value if self.review else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEvent:
        ts = data["timestamp"]
        return cls(
            seq=int(data.get("seq", 0)),
            student_id=data["student_id"],
            node_id=data["node_id"],
            credit=float(data["credit"]),
            hint_count=int(data.get("hint_count", 0)),
            difficulty=int(data.get("difficulty", 1)),
            domain=data.get("domain", ""),
            level_before=MasteryLevel(data["level_before"]),
            level_after=MasteryLevel(data["level_after"]),
            truly_mastered=bool(data.get("truly_mastered", False)),
            timestamp=ensure_utc(ts if isinstance(ts, datetime) else datetime.fromisoformat(ts)),
            review=ReviewOutcome(data["review"]) if data.get("review") else None,
        )


class BranchState(str, Enum):
    """Per (student, branch) unlock state. LOCKED is never stored."""

    LOCKED = "locked"
    AVAILABLE = "available"
    CHOSEN = "chosen"

    @property
    def selectable(self) -> bool:
        return self is not BranchState.LOCKED


@dataclass(frozen=True)
class BranchChoice:
    student_id: str
    node_id: str
    branch_id: str
    chosen_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "node_id": self.node_id,
            "branch_id": self.branch_id,
            "chosen_at": self.chosen_at.isoformat(),
        }


@dataclass
class GamificationState:
    """
    Derived XP / level / streak / badge state for a student.

    xp, level, badges and the event-derived streak are pure functions of the
    ledger events up to event_cursor; nothing else may set them. event_count
    is how many events the fold consumed, so an event that commits later with
    a seq below the cursor is detectable.
    """

    student_id: str
    xp: int = 0
    level: int = 1
    level_title: str = ""
    xp_to_next_level: int | None = None
    streak: int = 0
    longest_streak: int = 0
    last_active_date: date | None = None
    badges: set[str] = field(default_factory=set)
    boss_eligibility: dict[str, bool] = field(default_factory=dict)
    mastery_map: dict[str, str] = field(default_factory=dict)
    event_cursor: int = 0
    event_count: int = 0

    def ledger_fields(self) -> dict[str, Any]:
        """The subset that must match a re-fold of the same events."""
        return {
            "xp": self.xp,
            "level": self.level,
            "longest_streak": self.longest_streak,
            "last_active_date": self.last_active_date.isoformat() if self.last_active_date else None,
            "badges": sorted(self.badges),
            "event_cursor": self.event_cursor,
            "event_count": self.event_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "xp": self.xp,
            "level": self.level,
            "level_title": self.level_title,
            "xp_to_next_level": self.xp_to_next_level,
            "streak": self.streak,
            "longest_streak": self.longest_streak,
            "last_active_date": self.last_active_date.isoformat() if self.last_active_date else None,
            "badges": sorted(self.badges),
            "boss_eligibility": dict(self.boss_eligibility),
            "mastery_map": dict(self.mastery_map),
            "event_cursor": self.event_cursor,
            "event_count": self.event_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GamificationState:
        last_active = data.get("last_active_date")
        return cls(
            student_id=data["student_id"],
            xp=int(data.get("xp", 0)),
            level=int(data.get("level", 1)),
            level_title=data.get("level_title", ""),
            xp_to_next_level=data.get("xp_to_next_level"),
            streak=int(data.get("streak", 0)),
            longest_streak=int(data.get("longest_streak", 0)),
            last_active_date=date.fromisoformat(last_active) if last_active else None,
            badges=set(data.get("badges", [])),
            boss_eligibility=dict(data.get("boss_eligibility", {})),
            mastery_map=dict(data.get("mastery_map", {})),
            event_cursor=int(data.get("event_cursor", 0)),
            event_count=int(data.get("event_count", 0)),
        )
