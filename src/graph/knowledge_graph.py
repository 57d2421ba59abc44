"""
Knowledge Graph.

Static directed graph of learning nodes with prerequisite edges and
alternative-path branch edges. Read-mostly reference data owned by the
curriculum; the engine never mutates it.

Validation at construction:
- every prerequisite, branch target, path node and unlock condition exists
- branch ids are unique across the graph
- prerequisite edges are acyclic
"""
from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from loguru import logger

from src.core.errors import BranchNotFoundError, InvalidInputError, NodeNotFoundError


@dataclass(frozen=True)
class BranchEdge:
    """
    Alternative content path leaving a branching node.

    The branch opens once every node in unlock_condition, plus every
    prerequisite of the target, is at least PROFICIENT.
    """

    branch_id: str
    from_node: str
    target_node: str
    unlock_condition: frozenset[str] = frozenset()
    path: tuple[str, ...] = ()
    title: str = ""
    description: str = ""

    @property
    def nodes(self) -> tuple[str, ...]:
        """Target followed by the rest of the path."""
        return (self.target_node, *self.path)


@dataclass(frozen=True)
class KnowledgeNode:
    node_id: str
    code: str
    title: str
    domain: str
    grade_level: int
    difficulty: int = 1
    prerequisites: frozenset[str] = frozenset()
    branches: tuple[BranchEdge, ...] = ()
    exclusive_choice: bool = False

    def __post_init__(self):
        if not 1 <= self.difficulty <= 5:
            raise InvalidInputError(
                f"difficulty must be within 1..5 for node {self.node_id}",
                node_id=self.node_id,
                difficulty=self.difficulty,
            )

    @property
    def is_branching(self) -> bool:
        return bool(self.branches)


class KnowledgeGraph:
    """In-memory, validated knowledge graph."""

    def __init__(self, nodes: Iterable[KnowledgeNode]):
        self._nodes: dict[str, KnowledgeNode] = {}
        for node in nodes:
            if node.node_id in self._nodes:
                raise InvalidInputError(f"Duplicate node id: {node.node_id}", node_id=node.node_id)
            self._nodes[node.node_id] = node

        self._branches: dict[str, BranchEdge] = {}
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self._validate()
        self._order = self._topological_sort()
        logger.debug(f"Knowledge graph loaded: {len(self._nodes)} nodes, {len(self._branches)} branches")

    def _validate(self) -> None:
        for node in self._nodes.values():
            for prereq in node.prerequisites:
                if prereq not in self._nodes:
                    raise InvalidInputError(
                        f"Node {node.node_id} has unknown prerequisite {prereq}",
                        node_id=node.node_id,
                        prerequisite=prereq,
                    )
                self._dependents[prereq].add(node.node_id)

            for edge in node.branches:
                if edge.from_node != node.node_id:
                    raise InvalidInputError(
                        f"Branch {edge.branch_id} is attached to {node.node_id} but starts at {edge.from_node}",
                        branch_id=edge.branch_id,
                    )
                if edge.branch_id in self._branches:
                    raise InvalidInputError(f"Duplicate branch id: {edge.branch_id}", branch_id=edge.branch_id)
                missing = [n for n in (*edge.nodes, *edge.unlock_condition) if n not in self._nodes]
                if missing:
                    raise InvalidInputError(
                        f"Branch {edge.branch_id} references unknown nodes",
                        branch_id=edge.branch_id,
                        missing=sorted(missing),
                    )
                self._branches[edge.branch_id] = edge

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm over prerequisite edges, ties broken by node id."""
        indegree = {node_id: len(node.prerequisites) for node_id, node in self._nodes.items()}
        ready = deque(sorted(n for n, d in indegree.items() if d == 0))
        order: list[str] = []
        while ready:
            current = ready.popleft()
            order.append(current)
            for dependent in sorted(self._dependents.get(current, ())):
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)
        if len(order) != len(self._nodes):
            cyclic = sorted(n for n, d in indegree.items() if d > 0)
            raise InvalidInputError("Prerequisite cycle detected", nodes=cyclic)
        return order

    # ========================================
    # Lookups
    # ========================================

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[KnowledgeNode]:
        return iter(self._nodes[n] for n in self._order)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> KnowledgeNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def nodes_by_grade(self, grade_level: int) -> list[KnowledgeNode]:
        return [n for n in self if n.grade_level == grade_level]

    def nodes_by_domain(self, domain: str) -> list[KnowledgeNode]:
        wanted = domain.lower()
        return [n for n in self if n.domain.lower() == wanted]

    def domains(self) -> list[str]:
        return sorted({n.domain for n in self._nodes.values()})

    def prerequisites_of(self, node_id: str) -> frozenset[str]:
        return self.get_node(node_id).prerequisites

    def dependents_of(self, node_id: str) -> set[str]:
        self.get_node(node_id)
        return set(self._dependents.get(node_id, ()))

    def topological_order(self) -> list[str]:
        return list(self._order)

    # ========================================
    # Branches
    # ========================================

    def branching_nodes(self) -> list[KnowledgeNode]:
        return [n for n in self if n.is_branching]

    def all_branches(self) -> list[BranchEdge]:
        return [edge for node in self.branching_nodes() for edge in node.branches]

    def get_branch(self, branch_id: str) -> BranchEdge:
        try:
            return self._branches[branch_id]
        except KeyError:
            raise BranchNotFoundError(branch_id) from None

    def branch_gate(self, branch_id: str) -> frozenset[str]:
        """Nodes that must be PROFICIENT before the branch opens."""
        edge = self.get_branch(branch_id)
        return edge.unlock_condition | self._nodes[edge.target_node].prerequisites
