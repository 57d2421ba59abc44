"""
XP awards and level table.

Level is a pure function of cumulative XP through a fixed, strictly
increasing threshold table. No level is stored independently of XP, so it
cannot drift.

The table is validated against the largest XP a single ledger event can
award: as long as every gap between consecutive thresholds is at least that
large, one event can cross at most one threshold and a level is never
skipped.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field

from src.core.errors import InvalidInputError

DEFAULT_LEVEL_THRESHOLDS = [
    0, 100, 250, 400, 500, 700, 900, 1100, 1300, 1500,
    1900, 2300, 2700, 3100, 3500, 4200, 5000, 5800, 6600, 7500,
]

# (first level, title); a title holds until the next entry
LEVEL_TITLES = [
    (1, "Star Seeker"),
    (3, "Star Gazer"),
    (5, "Constellation Finder"),
    (7, "Orbit Runner"),
    (10, "Galaxy Explorer"),
    (13, "Nebula Navigator"),
    (15, "Cosmic Navigator"),
    (17, "Solar Sage"),
    (20, "Universe Master"),
]

MAX_DIFFICULTY = 5


class LevelTable:
    """Monotonic XP-to-level mapping."""

    def __init__(self, thresholds: list[int] | None = None):
        thresholds = list(thresholds if thresholds is not None else DEFAULT_LEVEL_THRESHOLDS)
        if not thresholds or thresholds[0] != 0:
            raise InvalidInputError("Level thresholds must start at 0", thresholds=thresholds)
        if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
            raise InvalidInputError("Level thresholds must be strictly increasing", thresholds=thresholds)
        self.thresholds = thresholds

    @property
    def max_level(self) -> int:
        return len(self.thresholds)

    @property
    def min_gap(self) -> int | None:
        gaps = [b - a for a, b in zip(self.thresholds, self.thresholds[1:])]
        return min(gaps) if gaps else None

    def level_for(self, xp: int) -> int:
        return max(1, bisect_right(self.thresholds, xp))

    def title_for(self, level: int) -> str:
        title = LEVEL_TITLES[0][1]
        for first_level, name in LEVEL_TITLES:
            if level >= first_level:
                title = name
        return title

    def xp_to_next(self, xp: int) -> int | None:
        """XP still needed for the next level (None at max level)."""
        level = self.level_for(xp)
        if level >= self.max_level:
            return None
        return self.thresholds[level] - xp


@dataclass
class XPConfig:
    correct_answer: int = 10
    difficulty_step: float = 0.25
    streak_step: float = 0.1
    streak_cap: float = 3.0
    node_mastered: int = 40
    review_passed: int = 15
    level_thresholds: list[int] = field(default_factory=lambda: list(DEFAULT_LEVEL_THRESHOLDS))


class XPCalculator:
    """
    XP awarded per ledger event.

    correct answer: base × (1 + (difficulty - 1) × 0.25) × streak multiplier
    streak multiplier: 1 + 0.1 × (accuracy_streak - 1), capped at 3×
    """

    def __init__(self, config: XPConfig | None = None):
        self.config = config or XPConfig()
        self.levels = LevelTable(self.config.level_thresholds)
        gap = self.levels.min_gap
        if gap is not None and gap < self.max_single_event_xp():
            raise InvalidInputError(
                "Level table gap is smaller than the largest single-event XP award",
                min_gap=gap,
                max_single_event_xp=self.max_single_event_xp(),
            )

    def streak_multiplier(self, accuracy_streak: int) -> float:
        if accuracy_streak <= 1:
            return 1.0
        return min(1.0 + self.config.streak_step * (accuracy_streak - 1), self.config.streak_cap)

    def difficulty_scale(self, difficulty: int) -> float:
        return 1.0 + (difficulty - 1) * self.config.difficulty_step

    def correct_answer_xp(self, difficulty: int, accuracy_streak: int) -> int:
        return round(
            self.config.correct_answer * self.difficulty_scale(difficulty) * self.streak_multiplier(accuracy_streak)
        )

    def max_single_event_xp(self) -> int:
        # First mastery and a passed review never happen on the same event:
        # the review schedule only exists after the first mastery.
        top_answer = round(self.config.correct_answer * self.difficulty_scale(MAX_DIFFICULTY) * self.config.streak_cap)
        return top_answer + max(self.config.node_mastered, self.config.review_passed)
