"""
Streak tracking.

Two independent streaks:
- day streak: consecutive calendar days with at least one interaction.
  Same day leaves it unchanged, the next day adds one, a longer gap starts
  over at one. Reading it against today drops it to zero once a full
  calendar day has passed with no activity.
- accuracy streak: consecutive correct answers, used for the XP multiplier
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass
class DayStreak:
    current: int = 0
    longest: int = 0
    last_active: date | None = None

    def record_activity(self, day: date) -> None:
        if self.last_active is None:
            self.current = 1
        elif day <= self.last_active:
            # Same day (or an out-of-order timestamp): unchanged
            return
        elif (day - self.last_active).days == 1:
            self.current += 1
        else:
            self.current = 1
        self.last_active = day
        self.longest = max(self.longest, self.current)

    def as_of(self, today: date) -> int:
        """Streak length as seen on `today`."""
        if self.last_active is None:
            return 0
        if (today - self.last_active).days > 1:
            return 0
        return self.current


@dataclass
class AccuracyStreak:
    current: int = 0
    best: int = 0
    current_unhinted: int = 0

    def record(self, correct: bool, hinted: bool) -> None:
        if correct:
            self.current += 1
            self.current_unhinted = 0 if hinted else self.current_unhinted + 1
        else:
            self.current = 0
            self.current_unhinted = 0
        self.best = max(self.best, self.current)
