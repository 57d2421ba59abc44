"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import copy
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.core.clock import FixedClock  # noqa: E402
from src.core.engine import MasteryEngine  # noqa: E402
from src.core.mastery import InteractionOutcome  # noqa: E402
from src.core.store import InMemoryLedgerStore  # noqa: E402
from src.graph.loader import parse_graph  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (sqlite-backed store)")
    config.addinivalue_line("markers", "api: HTTP API tests (FastAPI TestClient)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "api" in path:
            item.add_marker(pytest.mark.api)
        elif "smoke" in path:
            item.add_marker(pytest.mark.smoke)


# Small curriculum used across the suite.
#
#   add -> mult -> frac (exclusive) --br-visual--> frac-area -> frac-line
#                                   --br-symbolic-> frac-equiv   (also gated by add)
#   read-main --read-story--> read-theme
#             --read-facts--> read-structure
SAMPLE_CURRICULUM = {
    "nodes": [
        {"id": "add", "code": "MATH.3.OA.1", "title": "Addition", "domain": "math", "grade": 3, "difficulty": 1},
        {
            "id": "mult",
            "code": "MATH.3.OA.7",
            "title": "Multiplication",
            "domain": "math",
            "grade": 3,
            "difficulty": 2,
            "prerequisites": ["add"],
        },
        {
            "id": "frac",
            "code": "MATH.3.NF.1",
            "title": "Unit fractions",
            "domain": "math",
            "grade": 3,
            "difficulty": 3,
            "prerequisites": ["mult"],
            "exclusive": True,
            "branches": [
                {
                    "id": "br-visual",
                    "title": "Visual fractions",
                    "target": "frac-area",
                    "path": ["frac-line"],
                },
                {
                    "id": "br-symbolic",
                    "title": "Symbolic fractions",
                    "target": "frac-equiv",
                    "unlock_condition": ["add"],
                },
            ],
        },
        {
            "id": "frac-area",
            "code": "MATH.3.NF.1a",
            "title": "Area models",
            "domain": "math",
            "grade": 3,
            "difficulty": 2,
            "prerequisites": ["frac"],
        },
        {
            "id": "frac-line",
            "code": "MATH.3.NF.2",
            "title": "Number line",
            "domain": "math",
            "grade": 3,
            "difficulty": 3,
            "prerequisites": ["frac-area"],
        },
        {
            "id": "frac-equiv",
            "code": "MATH.4.NF.1",
            "title": "Equivalent fractions",
            "domain": "math",
            "grade": 4,
            "difficulty": 3,
            "prerequisites": ["frac", "mult"],
        },
        {
            "id": "read-main",
            "code": "ELA.3.RI.2",
            "title": "Main idea",
            "domain": "reading",
            "grade": 3,
            "difficulty": 1,
            "branches": [
                {"id": "read-story", "target": "read-theme"},
                {"id": "read-facts", "target": "read-structure"},
            ],
        },
        {
            "id": "read-theme",
            "code": "ELA.4.RL.2",
            "title": "Theme",
            "domain": "reading",
            "grade": 4,
            "difficulty": 2,
            "prerequisites": ["read-main"],
        },
        {
            "id": "read-structure",
            "code": "ELA.4.RI.5",
            "title": "Text structure",
            "domain": "reading",
            "grade": 4,
            "difficulty": 3,
            "prerequisites": ["read-main"],
        },
    ]
}


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    """Clock fixed at Monday 2024-01-01 09:00 UTC."""
    return FixedClock()


@pytest.fixture
def curriculum_data():
    return copy.deepcopy(SAMPLE_CURRICULUM)


@pytest.fixture
def graph(curriculum_data):
    return parse_graph(curriculum_data)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def engine(graph, store, clock):
    return MasteryEngine(graph=graph, store=store, clock=clock)


@pytest.fixture
def student(engine):
    """Registered grade-3 math student."""
    return engine.register_student("s1", display_name="Sam", grade_level=3, domain_focus="math")


@pytest.fixture
def practice(engine, student):
    """
    Record n identical interactions for the registered student.

    Returns the last InteractionResult.
    """

    def _practice(node_id, n=1, credit=1.0, hints=0, latency_ms=4000, student_id=None):
        result = None
        for _ in range(n):
            outcome = InteractionOutcome(credit=credit, latency_ms=latency_ms, hint_count=hints)
            result = engine.record_interaction(student_id or student.student_id, node_id, outcome)
        return result

    return _practice
