"""
Study Module.

Spaced-repetition scheduling for mastered nodes:
- Interval growth on passed reviews, reset on lapses
- Upcoming review lists, due summaries and per-day forecasts
"""

from src.study.review_scheduler import (
    ForecastDay,
    ReviewConfig,
    ReviewScheduler,
    ReviewSummary,
    UpcomingReview,
)

__all__ = [
    "ReviewConfig",
    "ReviewScheduler",
    "ReviewSummary",
    "UpcomingReview",
    "ForecastDay",
]
