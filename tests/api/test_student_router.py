"""
API tests for the student router.

The app's engine dependency is overridden with the in-memory engine from
conftest, so no database is touched and the fixed clock drives scheduling.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import get_engine_instance
from src.api.main import app


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine_instance] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registered(client):
    response = client.post(
        "/api/students",
        json={"student_id": "s1", "display_name": "Sam", "grade_level": 3, "domain_focus": "math"},
    )
    assert response.status_code == 200
    return client


def answer(client, node_id, n=1, credit=1.0, **extra):
    response = None
    for _ in range(n):
        response = client.post(
            "/api/students/s1/interactions",
            json={"node_id": node_id, "credit": credit, "latency_ms": 4000, **extra},
        )
        assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "nexus-mastery-engine"


class TestRegistration:
    def test_register(self, client):
        response = client.post("/api/students", json={"student_id": "s2", "grade_level": 4})
        assert response.status_code == 200
        assert response.json() == {
            "student_id": "s2",
            "display_name": "s2",
            "grade_level": 4,
            "domain_focus": None,
        }

    def test_empty_id_rejected(self, client):
        assert client.post("/api/students", json={"student_id": ""}).status_code == 422


class TestInteractions:
    def test_record(self, registered):
        data = answer(registered, "add", n=4)
        assert data["record"]["mastery_level"] == "developing"
        assert data["record"]["version"] == 4
        assert data["unlocked_branches"] == []

    def test_unlock_reported(self, registered):
        data = answer(registered, "frac", n=5)
        assert data["unlocked_branches"] == ["br-visual"]

    def test_out_of_range_credit(self, registered):
        response = registered.post("/api/students/s1/interactions", json={"node_id": "add", "credit": 1.5})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_input"
        assert body["type"] == "InvalidInputError"
        assert body["context"]["credit"] == 1.5

    def test_unknown_node(self, registered):
        response = registered.post("/api/students/s1/interactions", json={"node_id": "ghost", "credit": 1})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_unknown_student(self, client):
        response = client.post("/api/students/nobody/interactions", json={"node_id": "add", "credit": 1})
        assert response.status_code == 404


class TestNexus:
    def test_single_score(self, registered):
        answer(registered, "frac-equiv", n=3)
        response = registered.get("/api/students/s1/nexus/frac-equiv")
        assert response.status_code == 200
        body = response.json()
        assert body["components"]["fit"] == 75.0
        assert 0 <= body["score"] <= 100

        overridden = registered.get("/api/students/s1/nexus/frac-equiv", params={"grade_level": 4})
        assert overridden.json()["components"]["fit"] == 100.0

    def test_all_scores(self, registered):
        answer(registered, "add")
        answer(registered, "mult", credit=0.0)
        body = registered.get("/api/students/s1/nexus").json()
        assert [s["node_id"] for s in body] == ["add", "mult"]


class TestBranches:
    def test_choose_and_conflict(self, registered):
        for node_id in ("add", "mult", "frac"):
            answer(registered, node_id, n=5)

        chosen = registered.post("/api/students/s1/branches/br-visual/choose")
        assert chosen.status_code == 200
        assert chosen.json()["next_node"] == "frac-area"

        conflict = registered.post("/api/students/s1/branches/br-symbolic/choose")
        assert conflict.status_code == 409
        assert conflict.json()["context"]["chosen_branch_id"] == "br-visual"

    def test_locked_branch(self, registered):
        response = registered.post("/api/students/s1/branches/br-visual/choose")
        assert response.status_code == 400
        assert response.json()["context"]["missing_prerequisites"] == ["frac"]

    def test_unknown_branch(self, registered):
        assert registered.post("/api/students/s1/branches/nope/choose").status_code == 404

    def test_check_is_empty_after_interaction_unlocks(self, registered):
        answer(registered, "read-main", n=5)
        body = registered.post("/api/students/s1/branches/check").json()
        assert body == {"student_id": "s1", "newly_unlocked": []}

    def test_tree(self, registered):
        body = registered.get("/api/students/s1/branches/tree", params={"domain": "reading"}).json()
        assert [p["node_id"] for p in body] == ["read-main"]
        assert {b["branch_id"] for b in body[0]["branches"]} == {"read-story", "read-facts"}


class TestReviews:
    def test_upcoming_and_summary(self, registered):
        answer(registered, "add", n=6)
        upcoming = registered.get("/api/students/s1/reviews/upcoming", params={"days": 7}).json()
        assert [r["node_id"] for r in upcoming] == ["add"]

        summary = registered.get("/api/students/s1/reviews/summary").json()
        assert summary == {"overdue": 0, "due_today": 0, "due_this_week": 1, "scheduled": 1}

    def test_negative_days(self, registered):
        response = registered.get("/api/students/s1/reviews/upcoming", params={"days": -1})
        assert response.status_code == 400

    @pytest.mark.parametrize("route", ["upcoming", "summary", "forecast"])
    def test_huge_window_is_invalid_input(self, registered, route):
        response = registered.get(f"/api/students/s1/reviews/{route}", params={"days": 1_000_000_000})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"

    def test_forecast(self, registered):
        answer(registered, "add", n=6)
        forecast = registered.get("/api/students/s1/reviews/forecast", params={"days": 2}).json()
        assert forecast == [
            {"day": "2024-01-01", "count": 0, "node_ids": []},
            {"day": "2024-01-02", "count": 1, "node_ids": ["add"]},
            {"day": "2024-01-03", "count": 0, "node_ids": []},
        ]

    def test_due_nodes(self, registered, clock):
        answer(registered, "add", n=6)
        assert registered.get("/api/students/s1/reviews/due").json()["count"] == 0
        clock.advance(days=1)
        body = registered.get("/api/students/s1/reviews/due").json()
        assert body == {"student_id": "s1", "count": 1, "node_ids": ["add"]}

    def test_due_nodes_unknown_student(self, client):
        assert client.get("/api/students/nobody/reviews/due").status_code == 404


class TestGamification:
    def test_profile(self, registered):
        answer(registered, "add", n=6)
        body = registered.get("/api/students/s1/gamification").json()
        assert body["xp"] == 115
        assert body["level"] == 2
        assert "first_star" in body["badges"]
        assert {b["badge_id"] for b in body["badge_details"]} == set(body["badges"])
        assert body["mastery_map"] == {"add": "mastered"}

    def test_unknown_student(self, client):
        response = client.get("/api/students/nobody/gamification")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
