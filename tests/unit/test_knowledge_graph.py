"""
Tests for the knowledge graph and the curriculum loader.
"""

from __future__ import annotations

import json

import pytest
import yaml

from src.core.errors import BranchNotFoundError, ErrorKind, InvalidInputError, NodeNotFoundError
from src.graph.knowledge_graph import KnowledgeGraph, KnowledgeNode
from src.graph.loader import load_graph, parse_grade_level, parse_graph


def node(node_id, prerequisites=(), **kwargs):
    return KnowledgeNode(
        node_id=node_id,
        code=node_id.upper(),
        title=node_id,
        domain=kwargs.pop("domain", "math"),
        grade_level=kwargs.pop("grade_level", 3),
        prerequisites=frozenset(prerequisites),
        **kwargs,
    )


class TestKnowledgeGraph:
    def test_topological_iteration(self, graph):
        order = graph.topological_order()
        assert order.index("add") < order.index("mult") < order.index("frac") < order.index("frac-line")
        assert [n.node_id for n in graph] == order

    def test_lookup(self, graph):
        assert "frac" in graph
        assert graph.get_node("frac").difficulty == 3
        assert len(graph) == 9

    def test_unknown_node(self, graph):
        with pytest.raises(NodeNotFoundError) as exc:
            graph.get_node("nope")
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_domain_and_grade_filters(self, graph):
        assert {n.node_id for n in graph.nodes_by_domain("Reading")} == {"read-main", "read-theme", "read-structure"}
        assert {n.node_id for n in graph.nodes_by_grade(4)} == {"frac-equiv", "read-theme", "read-structure"}
        assert graph.domains() == ["math", "reading"]

    def test_dependents(self, graph):
        assert graph.dependents_of("frac") == {"frac-area", "frac-equiv"}
        assert graph.prerequisites_of("frac-equiv") == frozenset({"frac", "mult"})

    def test_branch_gate_includes_target_prerequisites(self, graph):
        assert graph.branch_gate("br-visual") == frozenset({"frac"})
        assert graph.branch_gate("br-symbolic") == frozenset({"add", "frac", "mult"})

    def test_branch_nodes_start_with_target(self, graph):
        assert graph.get_branch("br-visual").nodes == ("frac-area", "frac-line")

    def test_unknown_branch(self, graph):
        with pytest.raises(BranchNotFoundError) as exc:
            graph.get_branch("nope")
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_branching_nodes(self, graph):
        assert {n.node_id for n in graph.branching_nodes()} == {"frac", "read-main"}
        assert graph.get_node("frac").exclusive_choice


class TestGraphValidation:
    def test_cycle_rejected(self):
        with pytest.raises(InvalidInputError, match="cycle"):
            KnowledgeGraph([node("a", ["b"]), node("b", ["a"])])

    def test_unknown_prerequisite_rejected(self):
        with pytest.raises(InvalidInputError):
            KnowledgeGraph([node("a", ["ghost"])])

    def test_duplicate_node_rejected(self):
        with pytest.raises(InvalidInputError):
            KnowledgeGraph([node("a"), node("a")])

    def test_difficulty_range(self):
        with pytest.raises(InvalidInputError):
            node("a", difficulty=6)

    def test_branch_to_unknown_node_rejected(self):
        data = {
            "nodes": [
                {"id": "a", "domain": "math", "grade": 3, "branches": [{"id": "x", "target": "ghost"}]},
            ]
        }
        with pytest.raises(InvalidInputError):
            parse_graph(data)

    def test_duplicate_branch_id_rejected(self):
        data = {
            "nodes": [
                {"id": "a", "domain": "math", "grade": 3, "branches": [{"id": "x", "target": "b"}]},
                {"id": "b", "domain": "math", "grade": 3, "branches": [{"id": "x", "target": "a"}]},
            ]
        }
        with pytest.raises(InvalidInputError):
            parse_graph(data)


class TestLoader:
    @pytest.mark.parametrize(
        "label,expected",
        [(3, 3), ("3", 3), ("G3", 3), ("Grade 3", 3), ("K", 0), ("kindergarten", 0), ("12", 12)],
    )
    def test_grade_labels(self, label, expected):
        assert parse_grade_level(label) == expected

    @pytest.mark.parametrize("label", ["13", "Grade X", True, -1])
    def test_bad_grade_labels(self, label):
        with pytest.raises(InvalidInputError):
            parse_grade_level(label)

    def test_missing_domain(self):
        with pytest.raises(InvalidInputError, match="domain"):
            parse_graph({"nodes": [{"id": "a", "grade": 3}]})

    def test_load_yaml(self, tmp_path, curriculum_data):
        path = tmp_path / "curriculum.yaml"
        path.write_text(yaml.safe_dump(curriculum_data), encoding="utf-8")
        graph = load_graph(path)
        assert len(graph) == 9

    def test_load_json(self, tmp_path, curriculum_data):
        path = tmp_path / "curriculum.json"
        path.write_text(json.dumps(curriculum_data), encoding="utf-8")
        assert load_graph(path).has_node("read-theme")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_graph(tmp_path / "missing.yaml")

    def test_shipped_curriculum_loads(self, project_root):
        graph = load_graph(project_root / "data" / "curriculum.yaml")
        assert graph.get_node("frac-intro").exclusive_choice
        assert graph.branch_gate("frac-symbolic") == frozenset({"frac-intro", "mult-facts"})

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "curriculum.yaml"
        path.write_text("nodes: [\n  - id: a\n", encoding="utf-8")
        with pytest.raises(InvalidInputError) as exc:
            load_graph(path)
        assert exc.value.kind is ErrorKind.INVALID_INPUT

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "curriculum.json"
        path.write_text('{"nodes": [', encoding="utf-8")
        with pytest.raises(InvalidInputError):
            load_graph(path)

    def test_top_level_list_rejected(self, tmp_path):
        path = tmp_path / "curriculum.yaml"
        path.write_text("- id: a\n", encoding="utf-8")
        with pytest.raises(InvalidInputError, match="mapping"):
            load_graph(path)

    @pytest.mark.parametrize("difficulty", ["hard", None, [2]])
    def test_non_numeric_difficulty(self, difficulty):
        data = {"nodes": [{"id": "a", "domain": "math", "grade": 3, "difficulty": difficulty}]}
        with pytest.raises(InvalidInputError, match="difficulty") as exc:
            parse_graph(data)
        assert exc.value.context["node_id"] == "a"
