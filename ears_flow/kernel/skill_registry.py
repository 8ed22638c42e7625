# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Skill Registry — Static catalog of skill metadata.

A Skill is immutable once registered. The registry answers the lookups the
rest of the session needs: by name, by phase, the entry-point skill and the
set of utility skills that bypass phase sequencing.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from ears_flow.core.errors import UnknownSkillError

logger = logging.getLogger("ears.skill_registry")

SKILL_NAME_RE = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")
SEMVER_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")

MatchKind = Literal["exact", "hyphenated", "contains"]


class Trigger(BaseModel):
    """One routing phrase and how it is matched against input."""

    phrase: str = Field(..., min_length=1)
    match_kind: MatchKind = "hyphenated"

    model_config = {"frozen": True}

    @field_validator("phrase")
    @classmethod
    def normalize_phrase(cls, v: str) -> str:
        v = " ".join(v.lower().split())
        if not v:
            raise ValueError("Trigger phrase must not be blank")
        return v


class Skill(BaseModel):
    """Registered skill metadata. Frozen after construction."""

    name: str
    description: str = ""
    version: str = "1.0.0"
    triggers: Tuple[Trigger, ...] = ()
    estimated_tokens: int = Field(default=0, ge=0)
    phase: Optional[str] = None
    bypasses_sequencing: bool = False
    is_entry_point: bool = False
    dependencies: Tuple[str, ...] = ()
    body: str = ""
    source_path: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("name")
    @classmethod
    def name_must_be_kebab_case(cls, v: str) -> str:
        if not SKILL_NAME_RE.match(v):
            raise ValueError(
                f"Skill name must be kebab-case (lowercase letters, digits, hyphens), got '{v}'"
            )
        if not 2 <= len(v) <= 50:
            raise ValueError(f"Skill name must be 2-50 characters, got {len(v)}")
        return v

    @field_validator("version")
    @classmethod
    def version_must_be_semver(cls, v: str) -> str:
        if not SEMVER_RE.match(v):
            raise ValueError(f"Version must follow MAJOR.MINOR.PATCH, got '{v}'")
        return v

    @property
    def major_version(self) -> int:
        return int(self.version.split(".", 1)[0])

    def __repr__(self) -> str:
        return f"Skill(name={self.name!r}, v={self.version}, tokens={self.estimated_tokens})"


class SkillRegistry:
    """Catalog of known skills, in registration order."""

    def __init__(self) -> None:
        self._skills: Dict[str, Skill] = {}

    # ── Registration ────────────────────────────────────────────

    def register(self, skill: Skill) -> None:
        """Register a skill. Names are unique; a registered skill never changes."""
        existing = self._skills.get(skill.name)
        if existing is not None:
            if existing == skill:
                return
            raise ValueError(f"Skill '{skill.name}' is already registered")
        self._skills[skill.name] = skill
        logger.info("Registered skill: %s (%d tokens)", skill.name, skill.estimated_tokens)

    # ── Lookup ──────────────────────────────────────────────────

    def get(self, name: str) -> Optional[Skill]:
        return self._skills.get(name)

    def require(self, name: str) -> Skill:
        """Get a skill or raise UnknownSkillError listing what is available."""
        skill = self._skills.get(name)
        if skill is None:
            raise UnknownSkillError(name, self.names())
        return skill

    def entry_point(self) -> Optional[Skill]:
        for skill in self._skills.values():
            if skill.is_entry_point:
                return skill
        return None

    def for_phase(self, phase: str) -> Optional[Skill]:
        """The skill that drives a phase: declared phase first, then same name."""
        for skill in self._skills.values():
            if skill.phase == phase and not skill.is_entry_point:
                return skill
        return self._skills.get(phase)

    def utility_names(self) -> set[str]:
        return {s.name for s in self._skills.values() if s.bypasses_sequencing}

    # ── Listing ─────────────────────────────────────────────────

    def names(self) -> List[str]:
        return list(self._skills.keys())

    def list_all(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": s.name,
                "description": s.description,
                "version": s.version,
                "phase": s.phase,
                "utility": s.bypasses_sequencing,
                "estimated_tokens": s.estimated_tokens,
            }
            for s in self._skills.values()
        ]

    def __iter__(self) -> Iterator[Skill]:
        return iter(list(self._skills.values()))

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, name: str) -> bool:
        return name in self._skills
