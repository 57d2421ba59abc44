"""
Configuration settings for the nexus mastery engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    store_backend: Literal["memory", "sql"] = Field(
        default="sql",
        description="Ledger store backend (memory is lost on exit)",
    )
    database_url: str = Field(
        default="sqlite:///nexus_mastery.db",
        description="SQLAlchemy connection string (sqlite or postgresql)",
    )
    curriculum_path: str = Field(
        default="data/curriculum.yaml",
        description="YAML knowledge graph loaded at startup",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )
    log_rotation: str = Field(
        default="10 MB",
        description="Loguru rotation policy for the file sink",
    )
    log_retention: str = Field(
        default="14 days",
        description="Loguru retention policy for the file sink",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8100,
        description="API server port",
    )

    # ========================================
    # Mastery Ledger
    # ========================================
    mastery_window_size: int = Field(
        default=5,
        description="Number of most recent interactions evaluated (K)",
    )
    mastery_advance_ratio: float = Field(
        default=0.8,
        description="Correct share of the window required to advance one stage",
    )
    mastery_max_hinted: int = Field(
        default=1,
        description="Maximum hinted answers in the window that still allow advancing",
    )
    mastery_regress_ratio: float = Field(
        default=0.6,
        description="Incorrect share of the window that triggers a one-stage regression",
    )
    mastery_truly_mastered_days: int = Field(
        default=2,
        description="Distinct calendar days at MASTERED before trulyMastered is set",
    )
    ledger_max_retries: int = Field(
        default=3,
        description="Compare-and-append retries before surfacing a conflict",
    )

    # ========================================
    # Nexus Score
    # ========================================
    nexus_weight_accuracy: float = Field(default=0.5, description="Accuracy component weight")
    nexus_weight_confidence: float = Field(default=0.3, description="Confidence component weight")
    nexus_weight_fit: float = Field(default=0.2, description="Grade/domain fit component weight")
    nexus_accuracy_halflife: float = Field(
        default=3.0,
        description="Interactions after which a result's weight halves",
    )
    nexus_target_latency_ms: float = Field(
        default=8000.0,
        description="Target response time for difficulty 1 (scaled up by difficulty)",
    )
    nexus_rushed_latency_ms: float = Field(
        default=1500.0,
        description="Answers faster than this are treated as rushed",
    )
    nexus_grade_gap_penalty: float = Field(
        default=25.0,
        description="Fit points lost per grade level between node and student",
    )
    nexus_domain_mismatch_penalty: float = Field(
        default=50.0,
        description="Fit points lost when the node is outside the student's domain focus",
    )

    # ========================================
    # Spaced Repetition
    # ========================================
    review_base_interval_days: float = Field(
        default=1.0,
        description="Interval after first mastery and after a failed review",
    )
    review_growth_factor: float = Field(
        default=2.0,
        description="Interval multiplier after each passed review",
    )
    review_max_interval_days: float = Field(
        default=60.0,
        description="Upper bound for the review interval",
    )
    review_forecast_days: int = Field(
        default=7,
        ge=0,
        le=3650,
        description="Default horizon for upcoming reviews and due-this-week",
    )

    # ========================================
    # Gamification
    # ========================================
    xp_correct_answer: int = Field(default=10, description="Base XP per correct interaction")
    xp_difficulty_step: float = Field(
        default=0.25,
        description="XP scale added per difficulty step above 1",
    )
    xp_streak_step: float = Field(
        default=0.1,
        description="Multiplier added per consecutive correct answer",
    )
    xp_streak_cap: float = Field(default=3.0, description="Maximum accuracy-streak multiplier")
    xp_node_mastered: int = Field(default=40, description="Bonus the first time a node reaches MASTERED")
    xp_review_passed: int = Field(default=15, description="Bonus for a passed spaced review")
    xp_level_thresholds: list[int] = Field(
        default=[0, 100, 250, 400, 500, 700, 900, 1100, 1300, 1500,
                 1900, 2300, 2700, 3100, 3500, 4200, 5000, 5800, 6600, 7500],
        description="Cumulative XP required for each level, starting at level 1",
    )
    boss_min_mastered: int = Field(
        default=5,
        description="MASTERED nodes needed for the weekly boss challenge",
    )
    boss_weekday: int = Field(
        default=6,
        description="Weekday the weekly boss opens (Monday=0, Sunday=6)",
    )
    boss_galaxy_level: int = Field(default=10, description="Level that opens the galaxy boss")
    boss_domain_mastered: int = Field(
        default=5,
        description="MASTERED nodes in one domain that open its domain boss",
    )

    # ========================================
    # Helper Methods
    # ========================================

    def get_mastery_config(self) -> dict[str, Any]:
        """Get fixed-window mastery thresholds."""
        return {
            "window_size": self.mastery_window_size,
            "advance_ratio": self.mastery_advance_ratio,
            "max_hinted": self.mastery_max_hinted,
            "regress_ratio": self.mastery_regress_ratio,
            "truly_mastered_days": self.mastery_truly_mastered_days,
        }

    def get_nexus_config(self) -> dict[str, float]:
        """Get Nexus score weights and tuning constants."""
        return {
            "weight_accuracy": self.nexus_weight_accuracy,
            "weight_confidence": self.nexus_weight_confidence,
            "weight_fit": self.nexus_weight_fit,
            "accuracy_halflife": self.nexus_accuracy_halflife,
            "target_latency_ms": self.nexus_target_latency_ms,
            "rushed_latency_ms": self.nexus_rushed_latency_ms,
            "grade_gap_penalty": self.nexus_grade_gap_penalty,
            "domain_mismatch_penalty": self.nexus_domain_mismatch_penalty,
        }

    def get_review_config(self) -> dict[str, float]:
        """Get spaced-repetition interval settings."""
        return {
            "base_interval_days": self.review_base_interval_days,
            "growth_factor": self.review_growth_factor,
            "max_interval_days": self.review_max_interval_days,
            "forecast_days": self.review_forecast_days,
        }

    def get_xp_config(self) -> dict[str, Any]:
        """Get XP award and level table settings."""
        return {
            "correct_answer": self.xp_correct_answer,
            "difficulty_step": self.xp_difficulty_step,
            "streak_step": self.xp_streak_step,
            "streak_cap": self.xp_streak_cap,
            "node_mastered": self.xp_node_mastered,
            "review_passed": self.xp_review_passed,
            "level_thresholds": list(self.xp_level_thresholds),
        }

    def get_boss_config(self) -> dict[str, int]:
        """Get boss challenge eligibility thresholds."""
        return {
            "min_mastered": self.boss_min_mastered,
            "weekday": self.boss_weekday,
            "galaxy_level": self.boss_galaxy_level,
            "domain_mastered": self.boss_domain_mastered,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
