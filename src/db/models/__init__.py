# SQLAlchemy models
from .base import Base
from .ledger import (
    BranchChoiceRow,
    BranchStateRow,
    ExclusiveChoiceRow,
    GamificationSnapshotRow,
    LedgerEventRow,
    MasteryRecordRow,
    StudentRow,
)

__all__ = [
    # Base
    "Base",
    # Registry
    "StudentRow",
    # Ledger
    "MasteryRecordRow",
    "LedgerEventRow",
    # Branches
    "BranchStateRow",
    "BranchChoiceRow",
    "ExclusiveChoiceRow",
    # Gamification
    "GamificationSnapshotRow",
]
