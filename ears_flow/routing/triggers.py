# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Trigger Table — Phrase matching policy for skill routing.

Each trigger carries a match kind:

  exact       whole phrase, bounded by non-word, non-hyphen characters
              ("spec" does not match "specification" nor "spec-forge")
  hyphenated  as exact, but spaces and hyphens in the phrase are
              interchangeable ("spec forge" matches "spec-forge")
  contains    raw substring, may land mid-word (partial match)

Skills that declare no triggers in their descriptor fall back to the
built-in table below.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional, Pattern, Tuple

from ears_flow.kernel.skill_registry import Trigger

MAIN_WORKFLOW_SKILL = "ears-workflow"

MAIN_WORKFLOW_TRIGGERS: Tuple[str, ...] = (
    "ears-workflow",
    "use ears workflow",
    "structured development",
    "formal specification",
    "compound engineering",
    "start ears",
    "use structured development",
)

DEFAULT_SKILL_TRIGGERS: Dict[str, Tuple[str, ...]] = {
    "spec-forge": (
        "spec-forge", "specification", "requirements", "ears", "user story",
        "create spec", "structured requirements", "design",
        "correctness properties", "property-based testing",
    ),
    "planning": (
        "planning", "plan", "implementation plan", "research", "analyze",
        "investigate", "architecture", "design decisions", "technical approach",
        "scaffold", "plan implementation", "create plan",
    ),
    "work": (
        "implement", "fix", "refactor", "build", "code", "tdd", "test-driven",
        "write tests", "feature branch", "development", "red-green-refactor",
        "failing test", "make it pass",
    ),
    "review": (
        "review", "audit", "check", "assess", "code review", "pull request",
        "pr review", "security audit", "performance review", "quality check",
        "multi-perspective", "comprehensive review", "deep review",
    ),
    "git-worktree": (
        "git-worktree", "worktree", "create worktree", "manage worktree",
        "worktree cleanup", "branch management", "isolated development",
    ),
    "project-reset": (
        "project-reset", "reset project", "clean project", "template restoration",
        "memory reset", "project cleanup",
    ),
}

_BOUNDARY_LEFT = r"(?<![\w-])"
_BOUNDARY_RIGHT = r"(?![\w-])"


def default_triggers_for(skill_name: str) -> Tuple[Trigger, ...]:
    """Built-in triggers for a skill name (empty when none are known)."""
    if skill_name == MAIN_WORKFLOW_SKILL:
        phrases = MAIN_WORKFLOW_TRIGGERS
    else:
        phrases = DEFAULT_SKILL_TRIGGERS.get(skill_name, ())
    return tuple(Trigger(phrase=p) for p in phrases)


def normalize_input(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    return " ".join(text.lower().split())


@lru_cache(maxsize=1024)
def _compile(phrase: str, match_kind: str) -> Optional[Pattern[str]]:
    if match_kind == "exact":
        body = re.escape(phrase)
    elif match_kind == "hyphenated":
        body = r"[-\s]+".join(re.escape(part) for part in re.split(r"[-\s]+", phrase))
    else:
        return None
    return re.compile(_BOUNDARY_LEFT + body + _BOUNDARY_RIGHT)


@dataclass(frozen=True)
class TriggerHit:
    """Where and how a trigger matched normalized input."""

    start: int
    boundary: bool


def find_trigger(text: str, trigger: Trigger) -> Optional[TriggerHit]:
    """Match one trigger against normalized input. None when it does not match."""
    pattern = _compile(trigger.phrase, trigger.match_kind)
    if pattern is not None:
        m = pattern.search(text)
        return TriggerHit(start=m.start(), boundary=True) if m else None

    idx = text.find(trigger.phrase)
    if idx < 0:
        return None
    bounded = _compile(trigger.phrase, "hyphenated").search(text)
    if bounded:
        return TriggerHit(start=bounded.start(), boundary=True)
    return TriggerHit(start=idx, boundary=False)


def calculate_confidence(text: str, phrase: str, hit: TriggerHit) -> float:
    """
    Normalized score in (0, 1].

    Word-count coverage, +0.3 for containment, +0.2 for a boundary match,
    +0.1 when the phrase opens the input.
    """
    words = max(len(text.split()), 1)
    trigger_words = len(phrase.split())
    confidence = min(trigger_words / words, 1.0) + 0.3
    if hit.boundary:
        confidence += 0.2
    if hit.start == 0:
        confidence += 0.1
    return round(min(confidence, 1.0), 4)


@dataclass(frozen=True)
class TriggerMatch:
    """Best trigger hit for one skill."""

    skill: str
    phrase: str
    match_kind: str
    boundary: bool
    confidence: float
    name_match: bool
    order: int

    def rank(self) -> Tuple:
        """Higher sorts first: boundary, longer phrase, own-name phrase, confidence, earlier skill."""
        return (self.boundary, len(self.phrase), self.name_match, self.confidence, -self.order)
