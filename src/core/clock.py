"""
Clock abstraction.

Recency weighting, streaks, and review intervals are all time-dependent.
Components take a Clock instead of reading wall-clock time so tests can
travel through days deterministically.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Manually controlled clock for tests and replays."""

    def __init__(self, start: datetime | None = None):
        self._now = ensure_utc(start or datetime(2024, 1, 1, 9, 0, tzinfo=UTC))

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)

    def advance(self, days: float = 0, hours: float = 0, minutes: float = 0) -> datetime:
        self._now = self._now + timedelta(days=days, hours=hours, minutes=minutes)
        return self._now


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_date(value: datetime) -> date:
    """Calendar day of a timestamp in UTC."""
    return ensure_utc(value).date()
