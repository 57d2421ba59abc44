"""
Mastery Engine facade.

Wires the knowledge graph, ledger, scheduler, scorer, branch engine and
gamification layer around one store and one clock, and exposes the public
operations consumed by the API and CLI:

- record_interaction
- calculate_nexus_score / get_all_nexus_scores
- choose_branch / check_branch_unlock
- get_upcoming_reviews / get_due_review_summary / get_review_forecast
- get_student_gamification_data

Every call returns plain data; errors are EngineError subclasses carrying
an ErrorKind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from config import Settings, get_settings
from src.adaptive.branch_engine import BranchEngine, BranchPointView, ChooseResult
from src.core.clock import Clock, SystemClock
from src.core.mastery import InteractionOutcome, MasteryConfig, MasteryRecord
from src.core.models import GamificationState, StudentProfile
from src.core.store import InMemoryLedgerStore, LedgerStore
from src.gamification.boss import BossConfig
from src.gamification.service import GamificationService
from src.gamification.xp import XPConfig
from src.graph.knowledge_graph import KnowledgeGraph
from src.graph.loader import load_graph
from src.learning.mastery_ledger import MasteryLedger
from src.learning.nexus_score import NexusConfig, NexusScore, NexusScoreEngine
from src.study.review_scheduler import ForecastDay, ReviewConfig, ReviewScheduler, ReviewSummary, UpcomingReview


@dataclass
class InteractionResult:
    record: MasteryRecord
    unlocked_branches: set[str] = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "unlocked_branches": sorted(self.unlocked_branches),
        }


class MasteryEngine:
    """Request-scoped engine; all durable state lives in the store."""

    def __init__(
        self,
        graph: KnowledgeGraph,
        store: LedgerStore | None = None,
        clock: Clock | None = None,
        mastery_config: MasteryConfig | None = None,
        nexus_config: NexusConfig | None = None,
        review_config: ReviewConfig | None = None,
        xp_config: XPConfig | None = None,
        boss_config: BossConfig | None = None,
        max_retries: int = 3,
    ):
        self.graph = graph
        self.store = store if store is not None else InMemoryLedgerStore()
        self.clock = clock or SystemClock()

        self.scheduler = ReviewScheduler(self.store, graph, self.clock, review_config)
        self.ledger = MasteryLedger(
            self.store, graph, self.scheduler, self.clock, mastery_config, max_retries=max_retries
        )
        self.nexus = NexusScoreEngine(self.store, graph, nexus_config)
        self.branches = BranchEngine(self.store, graph, self.clock)
        self.gamification = GamificationService(self.store, graph, self.clock, xp_config, boss_config)

    # ========================================
    # Students (registry collaborator)
    # ========================================

    def register_student(
        self,
        student_id: str,
        display_name: str = "",
        grade_level: int | None = None,
        domain_focus: str | None = None,
    ) -> StudentProfile:
        profile = StudentProfile(
            student_id=student_id,
            display_name=display_name or student_id,
            grade_level=grade_level,
            domain_focus=domain_focus,
        )
        self.store.save_student(profile)
        logger.info(f"Registered student {student_id}")
        return profile

    # ========================================
    # Ledger
    # ========================================

    def record_interaction(self, student_id: str, node_id: str, outcome: InteractionOutcome) -> InteractionResult:
        """Append an interaction, then re-evaluate branch unlocks."""
        record = self.ledger.record_interaction(student_id, node_id, outcome)
        unlocked = self.branches.check_branch_unlock(student_id)
        return InteractionResult(record=record, unlocked_branches=unlocked)

    # ========================================
    # Nexus
    # ========================================

    def calculate_nexus_score(
        self,
        student_id: str,
        node_id: str,
        grade_level: int | None = None,
        domain: str | None = None,
    ) -> NexusScore:
        return self.nexus.calculate_nexus_score(student_id, node_id, grade_level, domain)

    def get_all_nexus_scores(self, student_id: str) -> list[NexusScore]:
        return self.nexus.get_all_nexus_scores(student_id)

    # ========================================
    # Branches
    # ========================================

    def choose_branch(self, student_id: str, branch_id: str) -> ChooseResult:
        return self.branches.choose_branch(student_id, branch_id)

    def check_branch_unlock(self, student_id: str) -> set[str]:
        return self.branches.check_branch_unlock(student_id)

    def get_topic_tree(self, student_id: str, domain: str | None = None) -> list[BranchPointView]:
        return self.branches.get_topic_tree(student_id, domain)

    # ========================================
    # Reviews
    # ========================================

    def get_upcoming_reviews(self, student_id: str, forecast_days: int | None = None) -> list[UpcomingReview]:
        return self.scheduler.get_upcoming_reviews(student_id, forecast_days)

    def get_due_review_summary(self, student_id: str, forecast_days: int | None = None) -> ReviewSummary:
        return self.scheduler.get_due_review_summary(student_id, forecast_days)

    def get_due_nodes(self, student_id: str) -> list[str]:
        return self.scheduler.get_due_nodes(student_id)

    def get_review_forecast(self, student_id: str, forecast_days: int | None = None) -> list[ForecastDay]:
        return self.scheduler.get_review_forecast(student_id, forecast_days)

    # ========================================
    # Gamification
    # ========================================

    def get_student_gamification_data(self, student_id: str) -> GamificationState:
        return self.gamification.get_student_gamification_data(student_id)


def build_engine(
    settings: Settings | None = None,
    graph: KnowledgeGraph | None = None,
    store: LedgerStore | None = None,
    clock: Clock | None = None,
) -> MasteryEngine:
    """
    Construct an engine from settings.

    Args:
        settings: Defaults to get_settings()
        graph: Preloaded graph (otherwise settings.curriculum_path is loaded)
        store: Preconstructed store (otherwise chosen by settings.store_backend)
        clock: Defaults to SystemClock
    """
    settings = settings or get_settings()
    if graph is None:
        graph = load_graph(Path(settings.curriculum_path))
    if store is None:
        if settings.store_backend == "sql":
            from src.db.store import SqlAlchemyLedgerStore

            store = SqlAlchemyLedgerStore()
        else:
            store = InMemoryLedgerStore()

    return MasteryEngine(
        graph=graph,
        store=store,
        clock=clock,
        mastery_config=MasteryConfig(**settings.get_mastery_config()),
        nexus_config=NexusConfig(**settings.get_nexus_config()),
        review_config=ReviewConfig(**settings.get_review_config()),
        xp_config=XPConfig(**settings.get_xp_config()),
        boss_config=BossConfig(**settings.get_boss_config()),
        max_retries=settings.ledger_max_retries,
    )
