"""
Ledger store interface and in-memory implementation.

The engine never touches durable state except through LedgerStore. The
mastery record append is compare-and-append keyed on (student, node): the
writer states the version it read, and the store rejects the write with
ConcurrentModificationError when another writer got there first.

InMemoryLedgerStore keeps one lock per (student, node) pair, so writers to
different pairs never contend. SqlAlchemyLedgerStore (src/db/store.py) gives
the same guarantees with an optimistic version check.

Branch unlocks and exclusive choices are decided inside the store as well
(mark_branch_available, append_branch_choice with exclusive=True), so two
concurrent callers can never both win the same transition.
"""

from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from dataclasses import replace
from typing import Protocol

from src.core.errors import ConcurrentModificationError, UnknownStudentError
from src.core.mastery import MasteryRecord
from src.core.models import (
    BranchChoice,
    BranchState,
    GamificationState,
    LedgerEvent,
    StudentProfile,
)


class LedgerStore(Protocol):
    """Narrow persistence contract used by every engine component."""

    # Students
    def get_student(self, student_id: str) -> StudentProfile | None: ...

    def save_student(self, profile: StudentProfile) -> None: ...

    def list_students(self) -> list[StudentProfile]: ...

    # Mastery records
    def get_record(self, student_id: str, node_id: str) -> MasteryRecord | None: ...

    def list_records(self, student_id: str) -> list[MasteryRecord]: ...

    def append_interaction(
        self,
        record: MasteryRecord,
        expected_version: int,
        event: LedgerEvent,
    ) -> LedgerEvent: ...

    def list_events(self, student_id: str, after_seq: int = 0, up_to_seq: int | None = None) -> list[LedgerEvent]: ...

    # Branches
    def get_branch_states(self, student_id: str) -> dict[str, BranchState]: ...

    def set_branch_state(self, student_id: str, branch_id: str, state: BranchState) -> None: ...

    def mark_branch_available(self, student_id: str, branch_id: str) -> bool:
        """Move a LOCKED branch to AVAILABLE. True only for the caller that made the move."""
        ...

    def append_branch_choice(self, choice: BranchChoice, exclusive: bool = False) -> BranchChoice:
        """
        Append a choice and return the active choice at its node.

        With exclusive=True the check and the append are one atomic step: when
        a different branch already holds the node nothing is appended and the
        holding choice is returned.
        """
        ...

    def list_branch_choices(self, student_id: str) -> list[BranchChoice]: ...

    # Gamification snapshot
    def get_gamification_state(self, student_id: str) -> GamificationState | None: ...

    def save_gamification_state(self, state: GamificationState) -> None: ...


def require_student(store: LedgerStore, student_id: str) -> StudentProfile:
    """Fetch a registered student or raise UnknownStudentError."""
    profile = store.get_student(student_id)
    if profile is None:
        raise UnknownStudentError(student_id)
    return profile


class InMemoryLedgerStore:
    """
    Thread-safe in-memory LedgerStore.

    Used by tests and the "memory" store backend.
    """

    def __init__(self):
        self._students: dict[str, StudentProfile] = {}
        self._records: dict[tuple[str, str], MasteryRecord] = {}
        self._events: dict[str, list[LedgerEvent]] = defaultdict(list)
        self._branch_states: dict[str, dict[str, BranchState]] = defaultdict(dict)
        self._choices: dict[str, list[BranchChoice]] = defaultdict(list)
        self._gamification: dict[str, GamificationState] = {}

        self._seq = itertools.count(1)
        self._pair_locks: dict[tuple[str, ...], threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._event_lock = threading.Lock()
        self._branch_lock = threading.Lock()

    def _lock_for(self, key: tuple[str, ...]) -> threading.Lock:
        with self._registry_lock:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = self._pair_locks[key] = threading.Lock()
            return lock

    # ========================================
    # Students
    # ========================================

    def get_student(self, student_id: str) -> StudentProfile | None:
        return self._students.get(student_id)

    def save_student(self, profile: StudentProfile) -> None:
        self._students[profile.student_id] = profile

    def list_students(self) -> list[StudentProfile]:
        return sorted(self._students.values(), key=lambda p: p.student_id)

    # ========================================
    # Mastery records
    # ========================================

    def get_record(self, student_id: str, node_id: str) -> MasteryRecord | None:
        return self._records.get((student_id, node_id))

    def list_records(self, student_id: str) -> list[MasteryRecord]:
        return sorted(
            (r for (sid, _), r in list(self._records.items()) if sid == student_id),
            key=lambda r: r.node_id,
        )

    def append_interaction(
        self,
        record: MasteryRecord,
        expected_version: int,
        event: LedgerEvent,
    ) -> LedgerEvent:
        key = (record.student_id, record.node_id)
        with self._lock_for(key):
            current = self._records.get(key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise ConcurrentModificationError(record.student_id, record.node_id, expected_version, actual)
            # Record and event become visible together
            with self._event_lock:
                committed = replace(event, seq=next(self._seq))
                self._records[key] = record
                self._events[record.student_id].append(committed)
        return committed

    def list_events(self, student_id: str, after_seq: int = 0, up_to_seq: int | None = None) -> list[LedgerEvent]:
        with self._event_lock:
            events = list(self._events.get(student_id, ()))
        return [e for e in events if e.seq > after_seq and (up_to_seq is None or e.seq <= up_to_seq)]

    # ========================================
    # Branches
    # ========================================

    def get_branch_states(self, student_id: str) -> dict[str, BranchState]:
        with self._branch_lock:
            return dict(self._branch_states.get(student_id, {}))

    def set_branch_state(self, student_id: str, branch_id: str, state: BranchState) -> None:
        with self._branch_lock:
            if state is BranchState.LOCKED:
                self._branch_states[student_id].pop(branch_id, None)
            else:
                self._branch_states[student_id][branch_id] = state

    def mark_branch_available(self, student_id: str, branch_id: str) -> bool:
        with self._branch_lock:
            states = self._branch_states[student_id]
            if branch_id in states:
                return False
            states[branch_id] = BranchState.AVAILABLE
            return True

    def append_branch_choice(self, choice: BranchChoice, exclusive: bool = False) -> BranchChoice:
        with self._lock_for((choice.student_id, choice.node_id, "choice")):
            if exclusive:
                held = [c for c in self._choices.get(choice.student_id, ()) if c.node_id == choice.node_id]
                if held and held[-1].branch_id != choice.branch_id:
                    return held[-1]
            self._choices[choice.student_id].append(choice)
        return choice

    def list_branch_choices(self, student_id: str) -> list[BranchChoice]:
        return list(self._choices.get(student_id, ()))

    # ========================================
    # Gamification snapshot
    # ========================================

    def get_gamification_state(self, student_id: str) -> GamificationState | None:
        state = self._gamification.get(student_id)
        return GamificationState.from_dict(state.to_dict()) if state else None

    def save_gamification_state(self, state: GamificationState) -> None:
        self._gamification[state.student_id] = GamificationState.from_dict(state.to_dict())
