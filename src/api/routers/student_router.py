"""
Student API Router.

Endpoints over the mastery engine, all scoped to one student:
- Registration
- Interaction recording (mastery ledger)
- Nexus scores
- Branch unlock / choice / topic tree
- Review forecast and summary
- Gamification profile

Domain validation (credit range, forecast window bounds, unknown ids) is
left to the engine so every failure uses the EngineError JSON shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from loguru import logger
from pydantic import BaseModel, Field

from src.api.dependencies import get_engine_instance
from src.core.engine import MasteryEngine
from src.core.mastery import InteractionOutcome

router = APIRouter()


# ========================================
# Request/Response Models
# ========================================


class StudentCreateRequest(BaseModel):
    """Request model for registering a student."""

    student_id: str = Field(..., min_length=1, description="Student identifier")
    display_name: str = Field("", description="Name shown in reports")
    grade_level: int | None = Field(None, description="Current grade (0 = K)")
    domain_focus: str | None = Field(None, description="Preferred domain")


class InteractionRequest(BaseModel):
    """Request model for recording one interaction."""

    node_id: str = Field(..., description="Knowledge node identifier")
    credit: float = Field(..., description="Credit earned, 0.0-1.0")
    latency_ms: float = Field(0, description="Response time in milliseconds (0 = not measured)")
    hint_count: int = Field(0, description="Hints used")
    timestamp: datetime | None = Field(None, description="Defaults to server time")


class NexusComponentsResponse(BaseModel):
    accuracy: float
    confidence: float
    fit: float


class NexusScoreResponse(BaseModel):
    """Response model for a nexus score."""

    student_id: str
    node_id: str
    score: int
    components: NexusComponentsResponse
    truly_mastered: bool
    mastery_level: str
    interaction_count: int
    last_interaction_at: str | None


class ReviewSummaryResponse(BaseModel):
    """Response model for due review counts."""

    overdue: int
    due_today: int
    due_this_week: int
    scheduled: int


class ChooseBranchResponse(BaseModel):
    student_id: str
    branch_id: str
    node_id: str
    next_node: str | None
    previous_state: str
    completed: bool


# ========================================
# Registration
# ========================================


@router.post("", summary="Register student")
def register_student(
    request: StudentCreateRequest,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    profile = engine.register_student(
        request.student_id,
        display_name=request.display_name,
        grade_level=request.grade_level,
        domain_focus=request.domain_focus,
    )
    return profile.to_dict()


# ========================================
# Mastery Ledger
# ========================================


@router.post("/{student_id}/interactions", summary="Record interaction")
def record_interaction(
    student_id: str,
    request: InteractionRequest,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    """
    Append an interaction to the student's ledger for a node.

    Returns the updated mastery record and any branches this interaction
    unlocked.
    """
    outcome = InteractionOutcome(
        credit=request.credit,
        latency_ms=request.latency_ms,
        hint_count=request.hint_count,
        timestamp=request.timestamp,
    )
    result = engine.record_interaction(student_id, request.node_id, outcome)
    logger.debug(f"Recorded {student_id}/{request.node_id}: {result.record.mastery_level.value}")
    return result.to_dict()


# ========================================
# Nexus Scores
# ========================================


@router.get("/{student_id}/nexus", response_model=list[NexusScoreResponse], summary="All nexus scores")
def get_all_nexus_scores(
    student_id: str,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> list[dict[str, Any]]:
    """Scores for every node with history, best first."""
    return [s.to_dict() for s in engine.get_all_nexus_scores(student_id)]


@router.get("/{student_id}/nexus/{node_id}", response_model=NexusScoreResponse, summary="Nexus score")
def get_nexus_score(
    student_id: str,
    node_id: str,
    grade_level: int | None = Query(None, description="Override the profile grade"),
    domain: str | None = Query(None, description="Override the profile domain focus"),
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    return engine.calculate_nexus_score(student_id, node_id, grade_level, domain).to_dict()


# ========================================
# Branches
# ========================================


@router.post("/{student_id}/branches/check", summary="Re-evaluate branch unlocks")
def check_branch_unlock(
    student_id: str,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    unlocked = engine.check_branch_unlock(student_id)
    return {"student_id": student_id, "newly_unlocked": sorted(unlocked)}


@router.post(
    "/{student_id}/branches/{branch_id}/choose",
    response_model=ChooseBranchResponse,
    summary="Choose branch",
)
def choose_branch(
    student_id: str,
    branch_id: str,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    return engine.choose_branch(student_id, branch_id).to_dict()


@router.get("/{student_id}/branches/tree", summary="Topic tree")
def get_topic_tree(
    student_id: str,
    domain: str | None = Query(None, description="Restrict to one domain"),
    engine: MasteryEngine = Depends(get_engine_instance),
) -> list[dict[str, Any]]:
    return [p.to_dict() for p in engine.get_topic_tree(student_id, domain)]


# ========================================
# Reviews
# ========================================


@router.get("/{student_id}/reviews/upcoming", summary="Upcoming reviews")
def get_upcoming_reviews(
    student_id: str,
    days: int | None = Query(None, description="Forecast window in days (default from settings)"),
    engine: MasteryEngine = Depends(get_engine_instance),
) -> list[dict[str, Any]]:
    """Scheduled reviews due within the window, overdue ones included, earliest first."""
    return [r.to_dict() for r in engine.get_upcoming_reviews(student_id, days)]


@router.get("/{student_id}/reviews/summary", response_model=ReviewSummaryResponse, summary="Review summary")
def get_due_review_summary(
    student_id: str,
    days: int | None = Query(None),
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, int]:
    return engine.get_due_review_summary(student_id, days).to_dict()


@router.get("/{student_id}/reviews/forecast", summary="Review forecast per day")
def get_review_forecast(
    student_id: str,
    days: int | None = Query(None, description="Forecast window in days (default from settings)"),
    engine: MasteryEngine = Depends(get_engine_instance),
) -> list[dict[str, Any]]:
    """One entry per day from today through the window; overdue reviews count toward today."""
    return [d.to_dict() for d in engine.get_review_forecast(student_id, days)]


@router.get("/{student_id}/reviews/due", summary="Nodes due for review now")
def get_due_nodes(
    student_id: str,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    due = engine.get_due_nodes(student_id)
    return {"student_id": student_id, "count": len(due), "node_ids": due}


# ========================================
# Gamification
# ========================================


@router.get("/{student_id}/gamification", summary="Gamification profile")
def get_gamification(
    student_id: str,
    engine: MasteryEngine = Depends(get_engine_instance),
) -> dict[str, Any]:
    state = engine.get_student_gamification_data(student_id)
    data = state.to_dict()
    data["badge_details"] = engine.gamification.get_badge_details(state)
    return data
