"""
Gamification derived from the mastery ledger.

- xp: XP awards and the level table
- streak: Daily activity and accuracy streaks
- badges: Badge catalog and predicates
- boss: Boss battle eligibility
- service: Folds ledger events into GamificationState and verifies it
"""

from src.gamification.service import GamificationService
from src.gamification.xp import LevelTable, XPCalculator, XPConfig

__all__ = [
    "GamificationService",
    "LevelTable",
    "XPCalculator",
    "XPConfig",
]
