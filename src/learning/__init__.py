"""
Learning: mastery ledger and nexus scoring.

- mastery_ledger: Append-only interaction ledger with compare-and-append retries
- nexus_score: 0-100 composite of accuracy, confidence and curriculum fit
"""

from src.learning.mastery_ledger import MasteryLedger
from src.learning.nexus_score import NexusComponents, NexusConfig, NexusScore, NexusScoreEngine

__all__ = [
    "MasteryLedger",
    "NexusConfig",
    "NexusComponents",
    "NexusScore",
    "NexusScoreEngine",
]
