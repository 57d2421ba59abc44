"""
Curriculum loader.

Reads a knowledge graph from YAML (or JSON) authored by the curriculum team:

```yaml
nodes:
  - id: frac-intro
    code: MATH.3.NF.1
    title: Unit fractions
    domain: math
    grade: 3
    difficulty: 2
    prerequisites: [div-basics]
    exclusive: false
    branches:
      - id: frac-visual
        target: frac-area
        path: [frac-number-line]
        unlock_condition: [frac-intro]
        title: Visual fractions
```
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from src.core.errors import InvalidInputError
from src.graph.knowledge_graph import BranchEdge, KnowledgeGraph, KnowledgeNode

_GRADE_RE = re.compile(r"^(?:grade|gr|g)?\s*[-_]?\s*(\d{1,2})$", re.IGNORECASE)


def parse_grade_level(value: Any) -> int:
    """
    Normalize a grade label to an integer.

    Kindergarten is grade 0. Accepts 3, "3", "G3", "Grade 3" and "K".
    """
    if isinstance(value, bool):
        raise InvalidInputError(f"Invalid grade level: {value!r}", grade=value)
    if isinstance(value, int):
        grade = value
    else:
        text = str(value).strip()
        if text.upper() in ("K", "KG", "KINDERGARTEN"):
            return 0
        match = _GRADE_RE.match(text)
        if not match:
            raise InvalidInputError(f"Invalid grade level: {value!r}", grade=value)
        grade = int(match.group(1))
    if not 0 <= grade <= 12:
        raise InvalidInputError(f"Grade level out of range: {value!r}", grade=value)
    return grade


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _as_int(value: Any, field_name: str, node_id: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(
            f"Node {node_id} has a non-numeric {field_name}: {value!r}", node_id=node_id, **{field_name: value}
        ) from e


def _parse_branch(node_id: str, item: dict[str, Any]) -> BranchEdge:
    try:
        return BranchEdge(
            branch_id=str(item["id"]),
            from_node=node_id,
            target_node=str(item["target"]),
            unlock_condition=frozenset(_as_list(item.get("unlock_condition"))),
            path=tuple(_as_list(item.get("path"))),
            title=item.get("title", ""),
            description=item.get("description", ""),
        )
    except KeyError as e:
        raise InvalidInputError(f"Branch on {node_id} is missing field {e.args[0]}", node_id=node_id) from e


def parse_graph(data: dict[str, Any]) -> KnowledgeGraph:
    """Build a KnowledgeGraph from an already-parsed document."""
    nodes = []
    for item in data.get("nodes", []) or []:
        try:
            node_id = str(item["id"])
            nodes.append(
                KnowledgeNode(
                    node_id=node_id,
                    code=item.get("code", node_id),
                    title=item.get("title", node_id),
                    domain=item["domain"],
                    grade_level=parse_grade_level(item["grade"]),
                    difficulty=_as_int(item.get("difficulty", 1), "difficulty", node_id),
                    prerequisites=frozenset(_as_list(item.get("prerequisites"))),
                    branches=tuple(_parse_branch(node_id, b) for b in item.get("branches", []) or []),
                    exclusive_choice=bool(item.get("exclusive", False)),
                )
            )
        except KeyError as e:
            raise InvalidInputError(f"Node entry is missing field {e.args[0]}", entry=item) from e
    return KnowledgeGraph(nodes)


def load_graph(path: str | Path) -> KnowledgeGraph:
    """
    Load a knowledge graph from a YAML or JSON file.

    Args:
        path: Curriculum file

    Returns:
        Validated KnowledgeGraph
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Curriculum file not found: {file_path}")

    try:
        with open(file_path, encoding="utf-8") as f:
            if file_path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidInputError(f"Curriculum file {file_path.name} is not valid: {e}", path=str(file_path)) from e

    if data is not None and not isinstance(data, dict):
        raise InvalidInputError(f"Curriculum file {file_path.name} must be a mapping", path=str(file_path))

    graph = parse_graph(data or {})
    logger.info(f"Loaded curriculum {file_path.name}: {len(graph)} nodes")
    return graph
