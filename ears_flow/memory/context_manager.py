# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
ContextManager — Three-tier progressive-disclosure budget.

  Tier1  discovery     fixed cost per known skill, never evicted
  Tier2  instruction   body of every active skill
  Tier3  execution     supporting files loaded on demand

The sum across tiers never exceeds TOTAL_CONTEXT_LIMIT. Admissions that would
overflow first plan a Tier3 eviction on an immutable snapshot; the plan is
committed together with the admission or not at all.

Usage:
    ctx = ContextManager(project_root, settings)
    ctx.register_discovery_metadata(skill)
    ctx.activate_skill("spec-forge")
    ctx.load_supporting_file(".ai/templates/requirements-template.md", phase="spec-forge")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import BudgetInvariantError, ContextOverflowError, UnknownSkillError
from ears_flow.core.metrics import session_metrics
from ears_flow.kernel.skill_loader import estimate_tokens, read_text
from ears_flow.kernel.skill_registry import Skill
from ears_flow.memory.eviction import (
    ContextEntry,
    EntryRef,
    Tier,
    TIERS,
    TierSnapshot,
    eviction_candidates,
    plan_eviction,
    plan_tier_trim,
)

logger = logging.getLogger("ears.context")


# ── Results ─────────────────────────────────────────────────────


@dataclass
class ActivationResult:
    skill: str
    tokens_loaded: int = 0
    already_active: bool = False
    evicted: List[str] = field(default_factory=list)
    tokens_freed: int = 0


@dataclass
class DeactivationResult:
    skill: str
    tokens_freed: int = 0
    already_inactive: bool = False
    unloaded_files: List[str] = field(default_factory=list)


@dataclass
class FileLoadResult:
    path: str
    tokens_loaded: int = 0
    already_loaded: bool = False
    evicted: List[str] = field(default_factory=list)
    tokens_freed: int = 0


@dataclass
class UnloadResult:
    unloaded: List[str] = field(default_factory=list)
    not_loaded: List[str] = field(default_factory=list)
    tokens_freed: int = 0


@dataclass
class FreeSpaceResult:
    tokens_requested: int
    tokens_freed: int = 0
    evicted: List[str] = field(default_factory=list)
    deactivated_skills: List[str] = field(default_factory=list)

    @property
    def sufficient(self) -> bool:
        return self.tokens_freed >= self.tokens_requested


class TierStatus(BaseModel):
    tokens: int
    entries: int
    soft_limit: Optional[int] = None
    over_soft_limit: bool = False


class ContextStatus(BaseModel):
    """Read-only view of the budget."""

    total_tokens: int
    limit: int
    available_tokens: int
    utilization_percent: float
    current_phase: Optional[str] = None
    tiers: Dict[str, TierStatus]
    active_skills: List[str]
    inactive_skills: List[str]
    loaded_files: List[str]


class Recommendation(BaseModel):
    type: str
    message: str
    action: str


class OptimizationRecommendations(BaseModel):
    utilization_percent: float
    recommendations: List[Recommendation]
    can_optimize: bool


def normalize_path(path: str | Path) -> str:
    """Dedup key for a supporting file: posix separators, no leading './'."""
    return str(PurePosixPath(Path(path).as_posix()))


class ContextManager:
    """
    Owns the tier snapshot for one session.

    `current_phase` is maintained by the phase context manager and drives the
    affinity part of the eviction ranking.
    """

    def __init__(
        self,
        project_root: str | Path = ".",
        settings: Optional[EarsSettings] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(project_root)
        self._settings = settings or default_settings
        self._clock = clock
        self._snapshot = TierSnapshot()
        self._skills: Dict[str, Skill] = {}
        self._seq = 0
        self.current_phase: Optional[str] = None

    # ── Properties ──────────────────────────────────────────────

    @property
    def limit(self) -> int:
        return self._settings.TOTAL_CONTEXT_LIMIT

    @property
    def snapshot(self) -> TierSnapshot:
        return self._snapshot

    @property
    def total_tokens(self) -> int:
        return self._snapshot.total_tokens

    @property
    def utilization_percent(self) -> float:
        return round(self.total_tokens / self.limit * 100, 1)

    @property
    def active_skills(self) -> List[str]:
        return list(self._snapshot.instruction.keys())

    @property
    def inactive_skills(self) -> List[str]:
        active = self._snapshot.instruction
        return [name for name in self._snapshot.discovery if name not in active]

    @property
    def loaded_files(self) -> List[str]:
        return list(self._snapshot.execution.keys())

    def is_active(self, name: str) -> bool:
        return name in self._snapshot.instruction

    def is_loaded(self, path: str | Path) -> bool:
        return normalize_path(path) in self._snapshot.execution

    def estimate_tokens(self, text: Optional[str]) -> int:
        return estimate_tokens(text, self._settings.CHARS_PER_TOKEN)

    # ── Internals ───────────────────────────────────────────────

    def _entry(self, key: str, tier: str, content: str, tokens: int,
               source_skill: Optional[str] = None, phase: Optional[str] = None) -> ContextEntry:
        self._seq += 1
        return ContextEntry(
            key=key, tier=tier, content=content, tokens=tokens,
            source_skill=source_skill, phase=phase,
            loaded_at=self._clock(), seq=self._seq,
        )

    def _commit(self, snapshot: TierSnapshot, evicted: Sequence[ContextEntry] = ()) -> None:
        self._snapshot = snapshot
        self._assert_budget()
        if evicted:
            session_metrics.record_eviction(len(evicted), sum(e.tokens for e in evicted))
            logger.info(
                "Evicted %d entr%s: %s",
                len(evicted), "y" if len(evicted) == 1 else "ies",
                ", ".join(e.key for e in evicted),
            )
        session_metrics.set_gauge("context_utilization_percent", self.utilization_percent)

    def _assert_budget(self) -> None:
        total = self._snapshot.total_tokens
        if total > self.limit:
            raise BudgetInvariantError(
                f"Tracked tokens {total} exceed hard limit {self.limit}"
            )
        stray = set(self._snapshot.instruction) - set(self._snapshot.discovery)
        if stray:
            raise BudgetInvariantError(f"Active skills without discovery entry: {sorted(stray)}")

    def _admit(
        self,
        entry: ContextEntry,
        tiers: Sequence[str] = (Tier.EXECUTION,),
        protect: FrozenSet[EntryRef] = frozenset(),
    ) -> List[ContextEntry]:
        """Commit `entry`, evicting from `tiers` if needed. Raises ContextOverflowError."""
        base = self._snapshot.without([entry.ref])
        plan = plan_eviction(
            base, entry.tokens, self.limit,
            current_phase=self.current_phase, tiers=tiers, protect=protect,
        )
        if not plan.fits:
            session_metrics.inc("context_overflows_total")
            logger.warning(
                "Context overflow admitting %s (%d tokens, %d/%d in use)",
                entry.key, entry.tokens, base.total_tokens, self.limit,
            )
            raise ContextOverflowError(entry.key, entry.tokens, base.total_tokens, self.limit)
        self._commit(plan.snapshot.with_entry(entry), plan.evicted)
        return list(plan.evicted)

    def restore(self, snapshot: TierSnapshot) -> None:
        """Roll the budget back to an earlier snapshot of this manager."""
        self._commit(snapshot)
        logger.info("Context restored (%d tokens)", self.total_tokens)

    def _drop(self, refs: Iterable[EntryRef]) -> List[ContextEntry]:
        refs = list(refs)
        dropped = [e for e in (self._snapshot.get(t, k) for t, k in refs) if e is not None]
        if dropped:
            self._commit(self._snapshot.without(refs))
        return dropped

    # ── Tier1: discovery ────────────────────────────────────────

    def register_discovery_metadata(self, skill: Skill) -> bool:
        """Charge the fixed discovery cost for a skill. False if already registered."""
        if skill.name in self._snapshot.discovery:
            return False
        entry = self._entry(
            skill.name, Tier.DISCOVERY,
            f"{skill.name}: {skill.description}",
            self._settings.DISCOVERY_TOKENS_PER_SKILL,
            source_skill=skill.name,
        )
        self._admit(entry)
        self._skills[skill.name] = skill
        logger.debug("Discovered skill %s", skill.name)
        return True

    # ── Tier2: instruction ──────────────────────────────────────

    def activate_skill(self, name: str) -> ActivationResult:
        """Load a skill's instruction body. All-or-nothing."""
        skill = self._skills.get(name)
        if skill is None:
            raise UnknownSkillError(name, list(self._snapshot.discovery))

        if self.is_active(name):
            return ActivationResult(skill=name, already_active=True)

        entry = self._entry(
            name, Tier.INSTRUCTION, skill.body, skill.estimated_tokens,
            source_skill=name, phase=skill.phase,
        )
        evicted = self._admit(entry)
        session_metrics.inc("skill_activations_total")
        logger.info(
            "Activated skill %s (+%d tokens, %.1f%% used)",
            name, entry.tokens, self.utilization_percent,
        )
        return ActivationResult(
            skill=name,
            tokens_loaded=entry.tokens,
            evicted=[e.key for e in evicted],
            tokens_freed=sum(e.tokens for e in evicted),
        )

    def deactivate_skill(self, name: str) -> DeactivationResult:
        """Unload a skill body and every supporting file it sourced. Idempotent."""
        if not self.is_active(name):
            return DeactivationResult(skill=name, already_inactive=True)

        refs = [(Tier.INSTRUCTION, name)]
        files = [e.key for e in self._snapshot.execution.values() if e.source_skill == name]
        refs.extend((Tier.EXECUTION, key) for key in files)
        dropped = self._drop(refs)
        freed = sum(e.tokens for e in dropped)
        session_metrics.inc("skill_deactivations_total")
        logger.info("Deactivated skill %s (-%d tokens)", name, freed)
        return DeactivationResult(skill=name, tokens_freed=freed, unloaded_files=files)

    # ── Tier3: execution ────────────────────────────────────────

    def load_supporting_file(
        self,
        path: str | Path,
        skill: Optional[str] = None,
        phase: Optional[str] = None,
        content: Optional[str] = None,
    ) -> FileLoadResult:
        """
        Load a supporting file into Tier3.

        Reloading an already-loaded path only refreshes its recency. Raises
        MissingFilesError / PermissionDeniedError for unreadable files and
        ContextOverflowError when eviction cannot make room.
        """
        key = normalize_path(path)
        existing = self._snapshot.execution.get(key)
        if existing is not None:
            self._seq += 1
            self._commit(self._snapshot.with_entry(existing.refreshed(self._clock(), self._seq)))
            return FileLoadResult(path=key, already_loaded=True)

        if content is None:
            content = read_text(self._root / key)

        entry = self._entry(
            key, Tier.EXECUTION, content, self.estimate_tokens(content),
            source_skill=skill, phase=phase,
        )
        evicted = self._admit(entry)

        trim = plan_tier_trim(
            self._snapshot, Tier.EXECUTION, self._settings.EXECUTION_SOFT_LIMIT,
            current_phase=self.current_phase, protect=frozenset({entry.ref}),
        )
        if trim.evicted:
            self._commit(trim.snapshot, trim.evicted)
            evicted.extend(trim.evicted)

        logger.debug("Loaded supporting file %s (+%d tokens)", key, entry.tokens)
        return FileLoadResult(
            path=key,
            tokens_loaded=entry.tokens,
            evicted=[e.key for e in evicted],
            tokens_freed=sum(e.tokens for e in evicted),
        )

    def unload_supporting_file(self, path: str | Path) -> int:
        """Unload one file. Returns tokens freed (0 when it was not loaded)."""
        dropped = self._drop([(Tier.EXECUTION, normalize_path(path))])
        return sum(e.tokens for e in dropped)

    def unload_supporting_files(self, paths: Iterable[str | Path]) -> UnloadResult:
        result = UnloadResult()
        for path in paths:
            key = normalize_path(path)
            if key not in self._snapshot.execution:
                result.not_loaded.append(key)
                continue
            result.tokens_freed += self.unload_supporting_file(key)
            result.unloaded.append(key)
        return result

    def unload_all_for_skill(self, tag: str) -> UnloadResult:
        """Unload every Tier3 entry sourced by, or tagged to, `tag` (skill or phase)."""
        keys = [
            e.key for e in self._snapshot.execution.values()
            if e.source_skill == tag or e.phase == tag
        ]
        return self.unload_supporting_files(keys)

    def unload_outside_phase(self, phase: Optional[str]) -> UnloadResult:
        """Unload Tier3 entries not tagged to `phase`."""
        keys = [e.key for e in self._snapshot.execution.values() if e.phase != phase]
        return self.unload_supporting_files(keys)

    def enforce_soft_limit(self, tier: str = Tier.EXECUTION) -> UnloadResult:
        """Best-effort trim of one tier back under its soft limit (off-phase entries only)."""
        soft = self._soft_limit(tier)
        if soft is None:
            return UnloadResult()
        plan = plan_tier_trim(self._snapshot, tier, soft, current_phase=self.current_phase)
        if tier == Tier.INSTRUCTION:
            result = UnloadResult()
            for entry in plan.evicted:
                deactivated = self.deactivate_skill(entry.key)
                result.unloaded.append(entry.key)
                result.tokens_freed += deactivated.tokens_freed
            return result
        if plan.evicted:
            self._commit(plan.snapshot, plan.evicted)
        return UnloadResult(
            unloaded=[e.key for e in plan.evicted],
            tokens_freed=plan.tokens_freed,
        )

    # ── Explicit eviction ───────────────────────────────────────

    def free_context_space(
        self,
        tokens: int,
        tiers: Sequence[str] = (Tier.EXECUTION, Tier.INSTRUCTION),
    ) -> FreeSpaceResult:
        """
        Evict until `tokens` are freed, following the eviction ranking.

        Best-effort: when the candidates cannot cover the request everything
        evictable in `tiers` goes and `sufficient` is False. Evicting a Tier2
        entry deactivates that skill, taking its supporting files with it.
        """
        result = FreeSpaceResult(tokens_requested=tokens)
        if tokens <= 0:
            return result

        plan = plan_eviction(
            self._snapshot, tokens, self.total_tokens,
            current_phase=self.current_phase, tiers=tiers,
        )
        victims = plan.evicted if plan.fits else tuple(
            eviction_candidates(self._snapshot, self.current_phase, tiers)
        )

        for entry in victims:
            if entry.tier == Tier.INSTRUCTION:
                deactivated = self.deactivate_skill(entry.key)
                if deactivated.already_inactive:
                    continue
                result.deactivated_skills.append(entry.key)
                result.tokens_freed += deactivated.tokens_freed
                result.evicted.append(entry.key)
                result.evicted.extend(deactivated.unloaded_files)
            elif entry.key in self._snapshot.execution:
                result.tokens_freed += self.unload_supporting_file(entry.key)
                result.evicted.append(entry.key)

        if result.evicted:
            session_metrics.record_eviction(len(result.evicted), result.tokens_freed)
        logger.info(
            "Freed %d/%d tokens (%d entries)",
            result.tokens_freed, tokens, len(result.evicted),
        )
        return result

    # ── Introspection ───────────────────────────────────────────

    def _soft_limit(self, tier: str) -> Optional[int]:
        if tier == Tier.INSTRUCTION:
            return self._settings.INSTRUCTION_SOFT_LIMIT
        if tier == Tier.EXECUTION:
            return self._settings.EXECUTION_SOFT_LIMIT
        return None

    def get_context_status(self) -> ContextStatus:
        tiers: Dict[str, TierStatus] = {}
        for tier in TIERS:
            tokens = self._snapshot.tier_tokens(tier)
            soft = self._soft_limit(tier)
            tiers[tier] = TierStatus(
                tokens=tokens,
                entries=len(self._snapshot.tier(tier)),
                soft_limit=soft,
                over_soft_limit=soft is not None and tokens > soft,
            )
        return ContextStatus(
            total_tokens=self.total_tokens,
            limit=self.limit,
            available_tokens=self.limit - self.total_tokens,
            utilization_percent=self.utilization_percent,
            current_phase=self.current_phase,
            tiers=tiers,
            active_skills=self.active_skills,
            inactive_skills=self.inactive_skills,
            loaded_files=self.loaded_files,
        )

    def get_optimization_recommendations(self) -> OptimizationRecommendations:
        utilization = self.utilization_percent
        recs: List[Recommendation] = []
        if utilization > 80:
            recs.append(Recommendation(
                type="warning",
                message="Context usage is high (>80%). Consider deactivating unused skills.",
                action="deactivate-unused-skills",
            ))
        if len(self._snapshot.instruction) > 3:
            recs.append(Recommendation(
                type="suggestion",
                message="Multiple skills active. Use specific sub-skills for focused work.",
                action="use-specific-subskills",
            ))
        if len(self._snapshot.execution) > 5:
            recs.append(Recommendation(
                type="suggestion",
                message="Many supporting files loaded. Consider unloading unused files.",
                action="unload-unused-files",
            ))
        return OptimizationRecommendations(
            utilization_percent=utilization,
            recommendations=recs,
            can_optimize=bool(recs),
        )

    def reset(self) -> None:
        """Forget everything, discovery included."""
        self._snapshot = TierSnapshot()
        self._skills.clear()
        self.current_phase = None
        session_metrics.set_gauge("context_utilization_percent", 0.0)
        logger.info("Context reset")

