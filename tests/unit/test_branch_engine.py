"""
Tests for branch unlocking, choosing and the topic tree.
"""

from __future__ import annotations

import threading
import time

import pytest

from src.core.engine import MasteryEngine
from src.core.errors import (
    AlreadyChosenDifferentBranchError,
    BranchNotFoundError,
    ErrorKind,
    InvalidBranchError,
    UnknownStudentError,
)
from src.core.mastery import InteractionOutcome
from src.core.models import BranchState
from src.core.store import InMemoryLedgerStore


def proficient(practice, *node_ids):
    result = None
    for node_id in node_ids:
        result = practice(node_id, n=5)
    return result


def truly_master(practice, clock, node_id):
    practice(node_id, n=6)
    clock.advance(days=1)
    practice(node_id)


class TestCheckBranchUnlock:
    def test_gate_needs_every_node(self, engine, practice):
        """br-symbolic is gated by add, mult and (through its target) frac."""
        proficient(practice, "add", "mult")
        states = engine.branches.get_branch_states("s1")
        assert states["br-symbolic"] is BranchState.LOCKED

        result = proficient(practice, "frac")
        assert {"br-symbolic", "br-visual"} <= result.unlocked_branches
        assert engine.branches.get_branch_states("s1")["br-symbolic"] is BranchState.AVAILABLE

    def test_reported_exactly_once(self, engine, practice):
        proficient(practice, "add", "mult", "frac")
        assert engine.check_branch_unlock("s1") == set()
        practice("frac")
        assert engine.check_branch_unlock("s1") == set()

    def test_developing_is_not_enough(self, engine, practice):
        practice("frac", n=4)
        assert engine.check_branch_unlock("s1") == set()

    def test_unlock_is_sticky(self, engine, practice):
        proficient(practice, "frac")
        practice("frac", n=3, credit=0.0)
        assert engine.branches.get_branch_states("s1")["br-visual"] is BranchState.AVAILABLE

    def test_branch_without_condition_uses_target_prerequisites(self, engine, practice):
        result = proficient(practice, "read-main")
        assert result.unlocked_branches == {"read-story", "read-facts"}

    def test_unknown_student(self, engine):
        with pytest.raises(UnknownStudentError):
            engine.check_branch_unlock("nobody")


class TestChooseBranch:
    def test_locked_branch_rejected(self, engine, practice):
        proficient(practice, "add")
        with pytest.raises(InvalidBranchError) as exc:
            engine.choose_branch("s1", "br-symbolic")
        assert exc.value.kind is ErrorKind.INVALID_INPUT
        assert exc.value.context["missing_prerequisites"] == ["frac", "mult"]

    def test_unknown_branch_is_not_found(self, engine, student):
        with pytest.raises(BranchNotFoundError) as exc:
            engine.choose_branch("s1", "nope")
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_choose_available(self, engine, practice):
        proficient(practice, "frac")
        result = engine.choose_branch("s1", "br-visual")
        assert result.previous_state is BranchState.AVAILABLE
        assert result.next_node == "frac-area"
        assert result.node_id == "frac"
        assert engine.branches.get_branch_states("s1")["br-visual"] is BranchState.CHOSEN

    def test_choose_is_idempotent(self, engine, practice):
        proficient(practice, "frac")
        first = engine.choose_branch("s1", "br-visual")
        second = engine.choose_branch("s1", "br-visual")
        assert second.next_node == first.next_node
        assert second.previous_state is BranchState.CHOSEN

    def test_exclusive_node_allows_one_branch(self, engine, practice):
        proficient(practice, "add", "mult", "frac")
        engine.choose_branch("s1", "br-visual")
        with pytest.raises(AlreadyChosenDifferentBranchError) as exc:
            engine.choose_branch("s1", "br-symbolic")
        assert exc.value.kind is ErrorKind.CONFLICT
        assert exc.value.context["chosen_branch_id"] == "br-visual"

    def test_non_exclusive_node_switches_active_choice(self, engine, practice):
        proficient(practice, "read-main")
        engine.choose_branch("s1", "read-story")
        engine.choose_branch("s1", "read-facts")
        assert engine.branches.get_active_choice("s1", "read-main").branch_id == "read-facts"

    def test_next_node_skips_truly_mastered(self, engine, practice, clock):
        proficient(practice, "frac")
        truly_master(practice, clock, "frac-area")
        assert engine.choose_branch("s1", "br-visual").next_node == "frac-line"

        truly_master(practice, clock, "frac-line")
        result = engine.choose_branch("s1", "br-visual")
        assert result.next_node is None
        assert result.completed


class TestTopicTree:
    def test_tree_shape(self, engine, practice, clock):
        proficient(practice, "frac")
        engine.choose_branch("s1", "br-visual")
        truly_master(practice, clock, "frac-area")

        tree = {p.node_id: p for p in engine.get_topic_tree("s1")}
        assert set(tree) == {"frac", "read-main"}

        frac = tree["frac"]
        assert frac.exclusive_choice
        assert frac.active_branch_id == "br-visual"
        visual = next(b for b in frac.branches if b.branch_id == "br-visual")
        assert visual.state is BranchState.CHOSEN
        assert visual.nodes_completed == 1
        assert visual.total_nodes == 2
        assert visual.progress == 50
        assert [n.node_id for n in visual.nodes if n.is_next] == ["frac-line"]

        symbolic = next(b for b in frac.branches if b.branch_id == "br-symbolic")
        assert symbolic.state is BranchState.LOCKED
        assert symbolic.missing_prerequisites == ["add", "mult"]

    def test_domain_filter(self, engine, student):
        tree = engine.get_topic_tree("s1", domain="READING")
        assert [p.node_id for p in tree] == ["read-main"]

    def test_to_dict(self, engine, student):
        data = engine.get_topic_tree("s1", domain="math")[0].to_dict()
        assert data["node_id"] == "frac"
        assert {b["branch_id"] for b in data["branches"]} == {"br-visual", "br-symbolic"}
        assert all(b["state"] == "locked" for b in data["branches"])


class SlowBranchStore(InMemoryLedgerStore):
    """Widens the gap between reading branch states and acting on them."""

    delay = 0.0

    def get_branch_states(self, student_id):
        states = super().get_branch_states(student_id)
        time.sleep(self.delay)
        return states


def run_together(*calls):
    """Start every call at once on its own thread; collect results or errors."""
    outcomes = [None] * len(calls)
    barrier = threading.Barrier(len(calls))

    def worker(index, call):
        barrier.wait()
        try:
            outcomes[index] = call()
        except Exception as e:
            outcomes[index] = e

    threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


@pytest.fixture
def slow_engine(graph, clock):
    engine = MasteryEngine(graph=graph, store=SlowBranchStore(), clock=clock)
    engine.register_student("s1", display_name="Sam", grade_level=3, domain_focus="math")
    return engine


class TestConcurrentBranches:
    def test_concurrent_checks_report_each_unlock_once(self, slow_engine):
        # Ledger only, so no unlock check runs before the race
        for _ in range(5):
            slow_engine.ledger.record_interaction("s1", "read-main", InteractionOutcome(credit=1.0, latency_ms=4000))
        slow_engine.store.delay = 0.05

        first, second = run_together(
            lambda: slow_engine.check_branch_unlock("s1"),
            lambda: slow_engine.check_branch_unlock("s1"),
        )
        assert first | second == {"read-story", "read-facts"}
        assert not first & second

    def test_concurrent_exclusive_choices_one_wins(self, slow_engine):
        for node_id in ("add", "mult", "frac"):
            for _ in range(5):
                slow_engine.record_interaction("s1", node_id, InteractionOutcome(credit=1.0, latency_ms=4000))
        slow_engine.store.delay = 0.05

        outcomes = run_together(
            lambda: slow_engine.choose_branch("s1", "br-visual"),
            lambda: slow_engine.choose_branch("s1", "br-symbolic"),
        )
        won = [o for o in outcomes if not isinstance(o, Exception)]
        lost = [o for o in outcomes if isinstance(o, Exception)]
        assert len(won) == 1
        assert len(lost) == 1
        assert isinstance(lost[0], AlreadyChosenDifferentBranchError)
        assert lost[0].context["chosen_branch_id"] == won[0].branch_id

        assert [c.branch_id for c in slow_engine.store.list_branch_choices("s1")] == [won[0].branch_id]
        states = slow_engine.branches.get_branch_states("s1")
        loser = ({"br-visual", "br-symbolic"} - {won[0].branch_id}).pop()
        assert states[won[0].branch_id] is BranchState.CHOSEN
        assert states[loser] is BranchState.AVAILABLE

    def test_concurrent_same_branch_choices_both_succeed(self, slow_engine):
        for _ in range(5):
            slow_engine.record_interaction("s1", "frac", InteractionOutcome(credit=1.0, latency_ms=4000))
        slow_engine.store.delay = 0.05

        outcomes = run_together(
            lambda: slow_engine.choose_branch("s1", "br-visual"),
            lambda: slow_engine.choose_branch("s1", "br-visual"),
        )
        assert [o.branch_id for o in outcomes] == ["br-visual", "br-visual"]
