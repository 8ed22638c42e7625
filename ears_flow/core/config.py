# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
EARS-Flow Configuration — Environment-driven settings.

All configuration is loaded from environment variables (or .env file).
Token limits mirror the progressive-disclosure tiers: a small fixed cost per
discovered skill, a soft ceiling per tier and one hard ceiling overall.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class EarsSettings(BaseSettings):
    """Session-wide configuration loaded from environment."""

    # --- Installation layout ---
    AI_DIR: str = Field(
        default=".ai",
        description="Installation directory, relative to the project root",
    )
    PROJECT_STATE_FILE: str = Field(
        default=".project-state.json",
        description="Project record file name, stored inside AI_DIR",
    )
    MAIN_SKILL: str = Field(
        default="ears-workflow",
        description="Name of the entry-point skill described by AI_DIR/SKILL.md",
    )

    # --- Token budget ---
    DISCOVERY_TOKENS_PER_SKILL: int = Field(
        default=50,
        ge=0,
        description="Fixed Tier1 cost charged for every known skill",
    )
    TOTAL_CONTEXT_LIMIT: int = Field(
        default=8000,
        gt=0,
        description="Hard ceiling across all three tiers",
    )
    INSTRUCTION_SOFT_LIMIT: int = Field(
        default=4000,
        gt=0,
        description="Soft sub-limit for Tier2 (active skill bodies)",
    )
    EXECUTION_SOFT_LIMIT: int = Field(
        default=4000,
        gt=0,
        description="Soft sub-limit for Tier3 (supporting files)",
    )
    CHARS_PER_TOKEN: int = Field(
        default=4,
        gt=0,
        description="Characters per token used by the rough token estimator",
    )

    # --- Routing ---
    ROUTER_ACTIVATION_THRESHOLD: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a sub-skill match to leave dormancy",
    )

    # --- Phase context ---
    PRELOAD_UTILIZATION_CEILING: int = Field(
        default=70,
        description="Supporting files are preloaded only below this utilization %",
    )
    OPTIMIZE_UTILIZATION_THRESHOLD: int = Field(
        default=75,
        description="Above this utilization % optimize() unloads off-phase files",
    )
    MAX_SUPPORTING_PRELOAD: int = Field(
        default=3,
        ge=0,
        description="Max supporting files preloaded on phase entry",
    )
    MAX_TRANSITION_HISTORY: int = Field(
        default=10,
        gt=0,
        description="Phase transitions kept with their token metrics",
    )

    # --- Platform ---
    HOST: str = Field(default="127.0.0.1", description="Bind host")
    PORT: int = Field(default=8200, description="Bind port")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(
        default="json",
        description="Log output: json | text",
    )
    EARS_ENV: str = Field(
        default="dev",
        description="Environment: dev | prod",
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


# Global singleton
settings = EarsSettings()
