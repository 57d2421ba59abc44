"""
Badge definitions.

Each badge is a pure predicate over ProgressContext, the running summary the
gamification fold keeps while consuming ledger events. Badges are sticky:
once a predicate has held after some event the badge stays earned, even if
a later regression would make the predicate false.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from src.gamification.streak import AccuracyStreak, DayStreak


@dataclass
class ProgressContext:
    """Ledger-derived state visible to badge and boss predicates."""

    levels: dict[str, str] = field(default_factory=dict)
    domains: dict[str, str] = field(default_factory=dict)
    truly_mastered: set[str] = field(default_factory=set)
    day_streak: DayStreak = field(default_factory=DayStreak)
    accuracy: AccuracyStreak = field(default_factory=AccuracyStreak)
    level: int = 1
    persistence_wins: int = 0
    comebacks: int = 0

    @property
    def mastered_nodes(self) -> set[str]:
        return {node_id for node_id, level in self.levels.items() if level == "mastered"}

    def mastered_by_domain(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for node_id in self.mastered_nodes:
            domain = self.domains.get(node_id, "")
            counts[domain] = counts.get(domain, 0) + 1
        return counts


@dataclass(frozen=True)
class Badge:
    badge_id: str
    name: str
    description: str
    category: str
    icon: str
    predicate: Callable[[ProgressContext], bool]

    def to_dict(self) -> dict[str, str]:
        return {
            "badge_id": self.badge_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
        }


def _mastered_at_least(count: int) -> Callable[[ProgressContext], bool]:
    return lambda ctx: len(ctx.mastered_nodes) >= count


def _streak_at_least(days: int) -> Callable[[ProgressContext], bool]:
    return lambda ctx: ctx.day_streak.longest >= days


def _level_at_least(level: int) -> Callable[[ProgressContext], bool]:
    return lambda ctx: ctx.level >= level


BADGES: list[Badge] = [
    # Mastery
    Badge("first_star", "First Star", "Mastered your very first concept!", "MASTERY", "⭐", _mastered_at_least(1)),
    Badge("five_stars", "Star Cluster", "Mastered 5 concepts!", "MASTERY", "🌟", _mastered_at_least(5)),
    Badge("ten_stars", "Constellation Builder", "Mastered 10 concepts!", "MASTERY", "✨", _mastered_at_least(10)),
    Badge("twenty_five_stars", "Galaxy Architect", "Mastered 25 concepts!", "MASTERY", "🌌", _mastered_at_least(25)),
    Badge(
        "domain_specialist",
        "Subject Champion",
        "Mastered 5 concepts in one subject!",
        "MASTERY",
        "👑",
        lambda ctx: any(n >= 5 for n in ctx.mastered_by_domain().values()),
    ),
    Badge(
        "truly_mastered",
        "Rock Solid",
        "Kept a concept mastered across two different days!",
        "MASTERY",
        "🪨",
        lambda ctx: bool(ctx.truly_mastered),
    ),
    # Streaks
    Badge("streak_3", "Warming Up", "Practiced 3 days in a row!", "STREAK", "🔥", _streak_at_least(3)),
    Badge("streak_7", "Week Warrior", "Maintained a 7-day streak!", "STREAK", "🔥", _streak_at_least(7)),
    Badge("streak_14", "Two-Week Titan", "Maintained a 14-day streak!", "STREAK", "🔥", _streak_at_least(14)),
    Badge("streak_30", "Monthly Master", "Maintained a 30-day streak!", "STREAK", "💎", _streak_at_least(30)),
    # Levels
    Badge("level_5", "Constellation Finder", "Reached level 5!", "EXPLORER", "🧭", _level_at_least(5)),
    Badge("level_10", "Galaxy Explorer", "Reached level 10!", "EXPLORER", "🔭", _level_at_least(10)),
    # Persistence
    Badge(
        "perfect_ten",
        "Perfect Ten",
        "Answered 10 in a row correctly without hints!",
        "SPEED",
        "💯",
        lambda ctx: ctx.accuracy.current_unhinted >= 10,
    ),
    Badge(
        "persistence",
        "Never Give Up",
        "Got it right after 3 or more wrong answers on the same concept!",
        "EMOTIONAL",
        "💪",
        lambda ctx: ctx.persistence_wins > 0,
    ),
    Badge(
        "comeback_kid",
        "Comeback Kid",
        "Came back after 3+ days away and nailed the first question!",
        "EMOTIONAL",
        "🎯",
        lambda ctx: ctx.comebacks > 0,
    ),
]

BADGES_BY_ID: dict[str, Badge] = {badge.badge_id: badge for badge in BADGES}


def evaluate_badges(context: ProgressContext, earned: set[str]) -> set[str]:
    """Badges whose predicate holds now and that were not earned before."""
    return {badge.badge_id for badge in BADGES if badge.badge_id not in earned and badge.predicate(context)}
