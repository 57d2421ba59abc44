"""
Nexus Score Engine.

Composite 0-100 confidence metric for a student's mastery of a node,
recomputed on demand from the mastery ledger and node metadata. Never
persisted as a source of truth.

    score = 0.5 × accuracy + 0.3 × confidence + 0.2 × fit

Components (each 0-100):
- accuracy: recency-weighted credit; weight halves every 3 interactions
- confidence: unhinted, stable, fast-but-not-rushed answers score higher
- fit: penalty for grade-level or domain mismatch with the student's focus;
  at 20% weight this costs at most 20 points of the composite
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from datetime import datetime

from src.core.errors import InvalidInputError
from src.core.mastery import InteractionOutcome, MasteryLevel, MasteryRecord
from src.core.store import LedgerStore, require_student
from src.graph.knowledge_graph import KnowledgeGraph, KnowledgeNode


@dataclass
class NexusConfig:
    weight_accuracy: float = 0.5
    weight_confidence: float = 0.3
    weight_fit: float = 0.2
    accuracy_halflife: float = 3.0
    target_latency_ms: float = 8000.0
    rushed_latency_ms: float = 1500.0
    grade_gap_penalty: float = 25.0
    domain_mismatch_penalty: float = 50.0

    def __post_init__(self):
        total = self.weight_accuracy + self.weight_confidence + self.weight_fit
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise InvalidInputError("Nexus weights must sum to 1.0", total=total)
        if self.accuracy_halflife <= 0:
            raise InvalidInputError("accuracy_halflife must be positive", accuracy_halflife=self.accuracy_halflife)


@dataclass(frozen=True)
class NexusComponents:
    accuracy: float
    confidence: float
    fit: float

    def to_dict(self) -> dict[str, float]:
        return {"accuracy": self.accuracy, "confidence": self.confidence, "fit": self.fit}


@dataclass(frozen=True)
class NexusScore:
    student_id: str
    node_id: str
    score: int
    components: NexusComponents
    truly_mastered: bool
    mastery_level: MasteryLevel
    interaction_count: int
    last_interaction_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "node_id": self.node_id,
            "score": self.score,
            "components": self.components.to_dict(),
            "truly_mastered": self.truly_mastered,
            "mastery_level": self.mastery_level.value,
            "interaction_count": self.interaction_count,
            "last_interaction_at": self.last_interaction_at.isoformat() if self.last_interaction_at else None,
        }


class NexusScoreEngine:
    """Pure read over the ledger and the knowledge graph."""

    def __init__(self, store: LedgerStore, graph: KnowledgeGraph, config: NexusConfig | None = None):
        self.store = store
        self.graph = graph
        self.config = config or NexusConfig()

    # ========================================
    # Components
    # ========================================

    def accuracy_component(self, interactions: tuple[InteractionOutcome, ...]) -> float:
        if not interactions:
            return 0.0
        total_weight = 0.0
        weighted_sum = 0.0
        for i, outcome in enumerate(reversed(interactions)):
            weight = 0.5 ** (i / self.config.accuracy_halflife)  # 1, 0.79, 0.63, 0.5, ...
            weighted_sum += outcome.credit * weight
            total_weight += weight
        return 100.0 * weighted_sum / total_weight

    def _target_latency(self, difficulty: int) -> float:
        # Harder nodes get more time before an answer counts as slow
        return self.config.target_latency_ms * (1.0 + (difficulty - 1) * 0.5)

    def confidence_component(self, interactions: tuple[InteractionOutcome, ...], difficulty: int) -> float:
        if not interactions:
            return 0.0
        hinted_rate = sum(1 for o in interactions if o.hinted) / len(interactions)

        # Zero latency means the client did not measure it
        latencies = [o.latency_ms for o in interactions if o.latency_ms > 0]
        if len(latencies) >= 2:
            mean = statistics.fmean(latencies)
            cv = statistics.pstdev(latencies) / mean if mean > 0 else 0.0
            stability = 1.0 / (1.0 + cv)
        else:
            stability = 1.0

        if latencies:
            target = self._target_latency(difficulty)
            pace_values = []
            for latency in latencies:
                if latency < self.config.rushed_latency_ms:
                    pace_values.append(0.5)
                elif latency <= target:
                    pace_values.append(1.0)
                else:
                    pace_values.append(target / latency)
            pace = statistics.fmean(pace_values)
        else:
            pace = 1.0

        return 100.0 * (0.5 * (1.0 - hinted_rate) + 0.3 * stability + 0.2 * pace)

    def fit_component(self, node: KnowledgeNode, grade_level: int | None, domain: str | None) -> float:
        penalty = 0.0
        if grade_level is not None:
            penalty += self.config.grade_gap_penalty * abs(node.grade_level - grade_level)
        if domain and node.domain.lower() != domain.lower():
            penalty += self.config.domain_mismatch_penalty
        return 100.0 - min(100.0, penalty)

    # ========================================
    # Scores
    # ========================================

    def score_record(
        self,
        record: MasteryRecord,
        node: KnowledgeNode,
        grade_level: int | None,
        domain: str | None,
    ) -> NexusScore:
        """Deterministic score for one record snapshot."""
        components = NexusComponents(
            accuracy=round(self.accuracy_component(record.interactions), 2),
            confidence=round(self.confidence_component(record.interactions, node.difficulty), 2),
            fit=round(self.fit_component(node, grade_level, domain), 2),
        )
        raw = (
            self.config.weight_accuracy * components.accuracy
            + self.config.weight_confidence * components.confidence
            + self.config.weight_fit * components.fit
        )
        return NexusScore(
            student_id=record.student_id,
            node_id=record.node_id,
            score=max(0, min(100, round(raw))),
            components=components,
            truly_mastered=record.truly_mastered,
            mastery_level=record.mastery_level,
            interaction_count=record.interaction_count,
            last_interaction_at=record.last_interaction_at,
        )

    def calculate_nexus_score(
        self,
        student_id: str,
        node_id: str,
        grade_level: int | None = None,
        domain: str | None = None,
    ) -> NexusScore:
        """
        Nexus score for one node.

        Args:
            student_id: Student identifier
            node_id: Knowledge node
            grade_level: Student's current grade (profile value when None)
            domain: Student's domain focus (profile value when None)

        Raises:
            NodeNotFoundError: node is not in the graph
        """
        node = self.graph.get_node(node_id)
        profile = require_student(self.store, student_id)
        if grade_level is None:
            grade_level = profile.grade_level
        if domain is None:
            domain = profile.domain_focus
        record = self.store.get_record(student_id, node_id) or MasteryRecord.empty(student_id, node_id)
        return self.score_record(record, node, grade_level, domain)

    def get_all_nexus_scores(self, student_id: str) -> list[NexusScore]:
        """
        One score per node the student has interacted with.

        Ordered by score descending, ties broken by most recent interaction,
        then node id.
        """
        profile = require_student(self.store, student_id)
        scores = [
            self.score_record(record, self.graph.get_node(record.node_id), profile.grade_level, profile.domain_focus)
            for record in self.store.list_records(student_id)
            if record.interactions
        ]
        scores.sort(key=lambda s: s.node_id)
        scores.sort(
            key=lambda s: (s.score, s.last_interaction_at.timestamp() if s.last_interaction_at else float("-inf")),
            reverse=True,
        )
        return scores
