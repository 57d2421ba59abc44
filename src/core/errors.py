"""
Engine error hierarchy.

Every failure the engine reports carries a discriminated ErrorKind so the
HTTP and CLI layers can map it without inspecting concrete classes:

- NOT_FOUND: unknown student, node, or branch (caller-correctable)
- INVALID_INPUT: malformed or out-of-range parameters (caller-correctable)
- CONFLICT: concurrent ledger mutation or exclusive re-choice (retryable)
- INVARIANT_VIOLATION: derived state disagrees with the ledger (fatal)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Discriminator for engine failures."""

    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INVARIANT_VIOLATION = "invariant_violation"

    @property
    def http_status(self) -> int:
        """Status code the HTTP layer reports for this kind."""
        return {
            ErrorKind.NOT_FOUND: 404,
            ErrorKind.INVALID_INPUT: 400,
            ErrorKind.CONFLICT: 409,
            ErrorKind.INVARIANT_VIOLATION: 500,
        }[self]

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.CONFLICT


class EngineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.INVARIANT_VIOLATION

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and log records."""
        return {
            "error": self.kind.value,
            "type": type(self).__name__,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


# ========================================
# NotFound
# ========================================


class NotFoundError(EngineError):
    kind = ErrorKind.NOT_FOUND


class NodeNotFoundError(NotFoundError):
    """Requested knowledge node does not exist in the graph."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Knowledge node not found: {node_id}", node_id=node_id)
        self.node_id = node_id


class UnknownNodeError(NodeNotFoundError):
    """An interaction referenced a node absent from the graph."""


class UnknownStudentError(NotFoundError):
    """Student is not known to the registry."""

    def __init__(self, student_id: str) -> None:
        super().__init__(f"Unknown student: {student_id}", student_id=student_id)
        self.student_id = student_id


# ========================================
# InvalidInput
# ========================================


class InvalidInputError(EngineError):
    kind = ErrorKind.INVALID_INPUT


class InvalidBranchError(InvalidInputError):
    """Branch is not currently AVAILABLE for the student."""

    def __init__(self, branch_id: str, reason: str = "branch is not available", **context: Any) -> None:
        super().__init__(f"Invalid branch {branch_id}: {reason}", branch_id=branch_id, **context)
        self.branch_id = branch_id


class BranchNotFoundError(InvalidBranchError):
    """Branch id does not exist in the graph. Reported as not-found."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, branch_id: str) -> None:
        super().__init__(branch_id, reason="no such branch")


# ========================================
# Conflict
# ========================================


class ConflictError(EngineError):
    kind = ErrorKind.CONFLICT


class ConcurrentModificationError(ConflictError):
    """Another writer appended to the same (student, node) record first."""

    def __init__(self, student_id: str, node_id: str, expected_version: int, actual_version: int | None = None) -> None:
        super().__init__(
            f"Mastery record {student_id}/{node_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            student_id=student_id,
            node_id=node_id,
            expected_version=expected_version,
            actual_version=actual_version,
        )


class AlreadyChosenDifferentBranchError(ConflictError):
    """Exclusive branching node already has a different active choice."""

    def __init__(self, student_id: str, node_id: str, chosen_branch_id: str, requested_branch_id: str) -> None:
        super().__init__(
            f"Node {node_id} is exclusive-choice and {student_id} already chose {chosen_branch_id}",
            student_id=student_id,
            node_id=node_id,
            chosen_branch_id=chosen_branch_id,
            requested_branch_id=requested_branch_id,
        )


# ========================================
# InvariantViolation
# ========================================


class InvariantViolationError(EngineError):
    """Derived state is inconsistent with the ledger. Never retried."""

    kind = ErrorKind.INVARIANT_VIOLATION
