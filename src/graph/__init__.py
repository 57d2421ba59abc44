"""Curriculum knowledge graph and its YAML/JSON loader."""

from src.graph.knowledge_graph import BranchEdge, KnowledgeGraph, KnowledgeNode
from src.graph.loader import load_graph, parse_grade_level, parse_graph

__all__ = [
    "BranchEdge",
    "KnowledgeGraph",
    "KnowledgeNode",
    "load_graph",
    "parse_graph",
    "parse_grade_level",
]
