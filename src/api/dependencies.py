"""
FastAPI dependencies.

The engine is built once per process from settings; tests replace it via
app.dependency_overrides[get_engine_instance].
"""

from __future__ import annotations

from functools import lru_cache

from src.core.engine import MasteryEngine, build_engine


@lru_cache
def get_engine_instance() -> MasteryEngine:
    return build_engine()
