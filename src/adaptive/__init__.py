"""
Adaptive Learning: branch unlocks and choices.

Components:
- BranchEngine: Unlocks branches once their gate is PROFICIENT, records
  choices (exclusive branch points allow one), builds the topic tree
"""
from src.adaptive.branch_engine import (
    UNLOCK_LEVEL,
    BranchEngine,
    BranchPointView,
    BranchView,
    ChooseResult,
)

__all__ = [
    "UNLOCK_LEVEL",
    "BranchEngine",
    "BranchPointView",
    "BranchView",
    "ChooseResult",
]
