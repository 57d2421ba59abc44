"""
Boss challenge eligibility.

Flags are recomputed on every read from the ledger-derived context and the
clock; nothing about eligibility is stored as truth.

- weekly_boss: opens on the configured weekday (Sunday) once enough nodes
  are MASTERED
- galaxy_boss: opens at a level milestone
- domain_boss:<domain>: opens when one domain has enough MASTERED nodes
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from src.gamification.badges import ProgressContext


@dataclass
class BossConfig:
    min_mastered: int = 5
    weekday: int = 6  # Sunday
    galaxy_level: int = 10
    domain_mastered: int = 5


def evaluate_boss_eligibility(
    context: ProgressContext,
    today: date,
    domains: list[str],
    config: BossConfig | None = None,
) -> dict[str, bool]:
    """
    Compute every boss eligibility flag.

    Args:
        context: Ledger-derived progress
        today: Current calendar day (from the injected clock)
        domains: All domains in the knowledge graph
        config: Thresholds

    Returns:
        Flag name -> eligible
    """
    config = config or BossConfig()
    by_domain = context.mastered_by_domain()
    flags = {
        "weekly_boss": today.weekday() == config.weekday and len(context.mastered_nodes) >= config.min_mastered,
        "galaxy_boss": context.level >= config.galaxy_level,
    }
    for domain in domains:
        flags[f"domain_boss:{domain}"] = by_domain.get(domain, 0) >= config.domain_mastered
    return flags
