"""
Core Module - Shared domain models and interfaces.

Components:
- errors: EngineError hierarchy with ErrorKind for HTTP/CLI mapping
- clock: Injectable time source (SystemClock, FixedClock)
- mastery: Mastery levels, interaction outcomes, records, level transitions
- models: Student profiles, ledger events, branch state, gamification state
- store: LedgerStore protocol and the in-memory implementation
- engine: MasteryEngine facade (import from src.core.engine)

Design Principle:
Domain modules (src/learning/, src/study/, src/adaptive/, src/gamification/)
import from src/core/ rather than reimplementing shared concepts.
"""

from src.core.clock import Clock, FixedClock, SystemClock
from src.core.errors import EngineError, ErrorKind
from src.core.mastery import (
    InteractionOutcome,
    MasteryCalculator,
    MasteryConfig,
    MasteryLevel,
    MasteryRecord,
    ReviewSchedule,
)
from src.core.store import InMemoryLedgerStore, LedgerStore

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    "FixedClock",
    # Errors
    "EngineError",
    "ErrorKind",
    # Mastery
    "MasteryLevel",
    "MasteryConfig",
    "MasteryCalculator",
    "MasteryRecord",
    "InteractionOutcome",
    "ReviewSchedule",
    # Storage
    "LedgerStore",
    "InMemoryLedgerStore",
]
