"""
Branch/Unlock Engine.

State machine over the knowledge graph's branch edges, per (student, branch):

    LOCKED ──gate PROFICIENT──▶ AVAILABLE ──choose_branch──▶ CHOSEN

- The gate is the branch's unlock condition plus the target's prerequisites.
- Unlocks are sticky: later regression does not re-lock a branch.
- Choosing does not lock siblings. Branching nodes flagged exclusive_choice
  reject a different branch once one is chosen.
- check_branch_unlock persists transitions, so calling it twice without a
  ledger change returns an empty set the second time.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from src.core.clock import Clock, SystemClock
from src.core.errors import AlreadyChosenDifferentBranchError, InvalidBranchError
from src.core.mastery import MasteryLevel, MasteryRecord
from src.core.models import BranchChoice, BranchState
from src.core.store import LedgerStore, require_student
from src.graph.knowledge_graph import BranchEdge, KnowledgeGraph

UNLOCK_LEVEL = MasteryLevel.PROFICIENT


@dataclass
class ChooseResult:
    student_id: str
    branch_id: str
    node_id: str
    next_node: str | None
    previous_state: BranchState

    @property
    def completed(self) -> bool:
        """Every node on the branch is truly mastered."""
        return self.next_node is None

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "branch_id": self.branch_id,
            "node_id": self.node_id,
            "next_node": self.next_node,
            "previous_state": self.previous_state.value,
            "completed": self.completed,
        }


@dataclass
class BranchNodeView:
    node_id: str
    code: str
    title: str
    mastery_level: MasteryLevel
    truly_mastered: bool
    is_next: bool = False


@dataclass
class BranchView:
    """One branch as shown in the topic tree."""

    branch_id: str
    title: str
    description: str
    target_node: str
    state: BranchState
    nodes: list[BranchNodeView] = field(default_factory=list)
    missing_prerequisites: list[str] = field(default_factory=list)
    is_active_choice: bool = False

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    @property
    def nodes_completed(self) -> int:
        return sum(1 for n in self.nodes if n.truly_mastered)

    @property
    def progress(self) -> int:
        """Percent of branch nodes truly mastered (0-100)."""
        return round(100 * self.nodes_completed / self.total_nodes) if self.nodes else 0

    @property
    def completed(self) -> bool:
        return bool(self.nodes) and self.nodes_completed == self.total_nodes

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "title": self.title,
            "description": self.description,
            "target_node": self.target_node,
            "state": self.state.value,
            "is_active_choice": self.is_active_choice,
            "missing_prerequisites": self.missing_prerequisites,
            "progress": self.progress,
            "nodes_completed": self.nodes_completed,
            "total_nodes": self.total_nodes,
            "completed": self.completed,
            "nodes": [
                {
                    "node_id": n.node_id,
                    "code": n.code,
                    "title": n.title,
                    "mastery_level": n.mastery_level.value,
                    "truly_mastered": n.truly_mastered,
                    "is_next": n.is_next,
                }
                for n in self.nodes
            ],
        }


@dataclass
class BranchPointView:
    """A branching node and its outgoing branches."""

    node_id: str
    code: str
    title: str
    domain: str
    exclusive_choice: bool
    active_branch_id: str | None
    branches: list[BranchView] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "code": self.code,
            "title": self.title,
            "domain": self.domain,
            "exclusive_choice": self.exclusive_choice,
            "active_branch_id": self.active_branch_id,
            "branches": [b.to_dict() for b in self.branches],
        }


class BranchEngine:
    """
    Decides which alternative paths a student may take next.

    Reads mastery through the ledger store; writes only branch states and
    branch choices.
    """

    def __init__(self, store: LedgerStore, graph: KnowledgeGraph, clock: Clock | None = None):
        self.store = store
        self.graph = graph
        self.clock = clock or SystemClock()

    def _records(self, student_id: str) -> dict[str, MasteryRecord]:
        return {r.node_id: r for r in self.store.list_records(student_id)}

    def _missing(self, edge: BranchEdge, records: dict[str, MasteryRecord]) -> list[str]:
        """Gate nodes not yet at PROFICIENT."""
        gate = self.graph.branch_gate(edge.branch_id)
        return sorted(
            node_id for node_id in gate
            if node_id not in records or not records[node_id].mastery_level.at_least(UNLOCK_LEVEL)
        )

    def _next_node(self, edge: BranchEdge, records: dict[str, MasteryRecord]) -> str | None:
        for node_id in edge.nodes:
            record = records.get(node_id)
            if record is None or not record.truly_mastered:
                return node_id
        return None

    # ========================================
    # Unlocking
    # ========================================

    def check_branch_unlock(self, student_id: str) -> set[str]:
        """
        Re-evaluate every LOCKED branch for the student.

        Returns:
            Branch ids that became AVAILABLE during this call
        """
        require_student(self.store, student_id)
        records = self._records(student_id)
        states = self.store.get_branch_states(student_id)

        newly_available: set[str] = set()
        for edge in self.graph.all_branches():
            if states.get(edge.branch_id, BranchState.LOCKED) is not BranchState.LOCKED:
                continue
            if self._missing(edge, records):
                continue
            # A concurrent check may have unlocked it since the read above
            if self.store.mark_branch_available(student_id, edge.branch_id):
                newly_available.add(edge.branch_id)

        if newly_available:
            logger.info(f"Unlocked branches for {student_id}: {sorted(newly_available)}")
        return newly_available

    def get_branch_states(self, student_id: str) -> dict[str, BranchState]:
        """State of every branch in the graph (LOCKED when never unlocked)."""
        require_student(self.store, student_id)
        stored = self.store.get_branch_states(student_id)
        return {edge.branch_id: stored.get(edge.branch_id, BranchState.LOCKED) for edge in self.graph.all_branches()}

    # ========================================
    # Choosing
    # ========================================

    def get_active_choice(self, student_id: str, node_id: str) -> BranchChoice | None:
        """Most recent choice at a branching node."""
        active = None
        for choice in self.store.list_branch_choices(student_id):
            if choice.node_id == node_id:
                active = choice
        return active

    def choose_branch(self, student_id: str, branch_id: str) -> ChooseResult:
        """
        Take a branch and get the node to study next.

        Args:
            student_id: Student identifier
            branch_id: Branch to take

        Returns:
            ChooseResult with the first node on the branch that is not truly
            mastered (None when the whole branch is done)

        Raises:
            BranchNotFoundError: no such branch
            InvalidBranchError: branch is still LOCKED for the student
            AlreadyChosenDifferentBranchError: exclusive node, other branch chosen
        """
        require_student(self.store, student_id)
        edge = self.graph.get_branch(branch_id)
        records = self._records(student_id)
        state = self.store.get_branch_states(student_id).get(branch_id, BranchState.LOCKED)
        if not state.selectable:
            raise InvalidBranchError(
                branch_id,
                reason="branch is locked",
                student_id=student_id,
                missing_prerequisites=self._missing(edge, records),
            )

        node = self.graph.get_node(edge.from_node)
        active = self.store.append_branch_choice(
            BranchChoice(student_id=student_id, node_id=node.node_id, branch_id=branch_id, chosen_at=self.clock.now()),
            exclusive=node.exclusive_choice,
        )
        if active.branch_id != branch_id:
            raise AlreadyChosenDifferentBranchError(student_id, node.node_id, active.branch_id, branch_id)

        self.store.set_branch_state(student_id, branch_id, BranchState.CHOSEN)

        next_node = self._next_node(edge, records)
        logger.info(f"{student_id} chose {branch_id} at {node.node_id}; next node {next_node}")
        return ChooseResult(
            student_id=student_id,
            branch_id=branch_id,
            node_id=node.node_id,
            next_node=next_node,
            previous_state=state,
        )

    # ========================================
    # Topic tree
    # ========================================

    def get_topic_tree(self, student_id: str, domain: str | None = None) -> list[BranchPointView]:
        """
        Every branching node with branch states and per-branch progress.

        Args:
            student_id: Student identifier
            domain: Optional domain filter on the branching node
        """
        states = self.get_branch_states(student_id)
        records = self._records(student_id)

        tree = []
        for node in self.graph.branching_nodes():
            if domain and node.domain.lower() != domain.lower():
                continue
            active = self.get_active_choice(student_id, node.node_id)
            point = BranchPointView(
                node_id=node.node_id,
                code=node.code,
                title=node.title,
                domain=node.domain,
                exclusive_choice=node.exclusive_choice,
                active_branch_id=active.branch_id if active else None,
            )
            for edge in node.branches:
                next_node = self._next_node(edge, records)
                view = BranchView(
                    branch_id=edge.branch_id,
                    title=edge.title or edge.branch_id,
                    description=edge.description,
                    target_node=edge.target_node,
                    state=states[edge.branch_id],
                    missing_prerequisites=self._missing(edge, records),
                    is_active_choice=point.active_branch_id == edge.branch_id,
                )
                for node_id in edge.nodes:
                    member = self.graph.get_node(node_id)
                    record = records.get(node_id)
                    view.nodes.append(
                        BranchNodeView(
                            node_id=node_id,
                            code=member.code,
                            title=member.title,
                            mastery_level=record.mastery_level if record else MasteryLevel.NOVICE,
                            truly_mastered=record.truly_mastered if record else False,
                            is_next=node_id == next_node,
                        )
                    )
                point.branches.append(view)
            tree.append(point)
        return tree
