# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Eviction Policy — Pure functions over an immutable tier snapshot.

Candidates are ranked by:
  1. tier       execution (Tier3) before instruction (Tier2); discovery never
  2. affinity   entries tagged to another phase before current-phase entries
  3. recency    oldest loaded_at first (seq breaks exact ties)

plan_eviction() evicts greedily until a pending admission fits. When the
candidates run out it returns the ORIGINAL snapshot with fits=False, so the
caller either commits a complete plan or changes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple


class Tier:
    DISCOVERY = "discovery"
    INSTRUCTION = "instruction"
    EXECUTION = "execution"


TIERS: Tuple[str, ...] = (Tier.DISCOVERY, Tier.INSTRUCTION, Tier.EXECUTION)

# Lower evicts first. Discovery is absent: never a candidate.
EVICTION_ORDER: Dict[str, int] = {Tier.EXECUTION: 0, Tier.INSTRUCTION: 1}

EntryRef = Tuple[str, str]  # (tier, key)


@dataclass(frozen=True)
class ContextEntry:
    """One resident piece of context."""

    key: str
    tier: str
    content: str
    tokens: int
    source_skill: Optional[str] = None
    phase: Optional[str] = None
    loaded_at: float = 0.0
    seq: int = 0

    @property
    def ref(self) -> EntryRef:
        return (self.tier, self.key)

    def refreshed(self, loaded_at: float, seq: int) -> ContextEntry:
        return replace(self, loaded_at=loaded_at, seq=seq)


def _frozen(d: Optional[Mapping[str, ContextEntry]] = None) -> Mapping[str, ContextEntry]:
    return MappingProxyType(dict(d or {}))


@dataclass(frozen=True)
class TierSnapshot:
    """Immutable view of all three tiers."""

    discovery: Mapping[str, ContextEntry] = field(default_factory=_frozen)
    instruction: Mapping[str, ContextEntry] = field(default_factory=_frozen)
    execution: Mapping[str, ContextEntry] = field(default_factory=_frozen)

    def tier(self, name: str) -> Mapping[str, ContextEntry]:
        if name not in TIERS:
            raise ValueError(f"Unknown tier: '{name}'")
        return getattr(self, name)

    def tier_tokens(self, name: str) -> int:
        return sum(e.tokens for e in self.tier(name).values())

    @property
    def total_tokens(self) -> int:
        return sum(self.tier_tokens(t) for t in TIERS)

    def entries(self) -> Iterator[ContextEntry]:
        for t in TIERS:
            yield from self.tier(t).values()

    def get(self, tier: str, key: str) -> Optional[ContextEntry]:
        return self.tier(tier).get(key)

    def with_entry(self, entry: ContextEntry) -> TierSnapshot:
        updated = dict(self.tier(entry.tier))
        updated[entry.key] = entry
        return replace(self, **{entry.tier: _frozen(updated)})

    def without(self, refs: Iterable[EntryRef]) -> TierSnapshot:
        grouped: Dict[str, set] = {}
        for tier, key in refs:
            grouped.setdefault(tier, set()).add(key)
        changes = {
            tier: _frozen({k: v for k, v in self.tier(tier).items() if k not in keys})
            for tier, keys in grouped.items()
        }
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class EvictionPlan:
    """Outcome of planning: the snapshot to commit and what it drops."""

    snapshot: TierSnapshot
    evicted: Tuple[ContextEntry, ...] = ()
    tokens_freed: int = 0
    fits: bool = True

    @property
    def evicted_refs(self) -> List[EntryRef]:
        return [e.ref for e in self.evicted]


def eviction_candidates(
    snapshot: TierSnapshot,
    current_phase: Optional[str] = None,
    tiers: Sequence[str] = (Tier.EXECUTION,),
    protect: FrozenSet[EntryRef] = frozenset(),
) -> List[ContextEntry]:
    """Evictable entries of the given tiers, in eviction order."""
    allowed = [t for t in tiers if t in EVICTION_ORDER]
    candidates = [
        e for t in allowed for e in snapshot.tier(t).values()
        if e.ref not in protect
    ]
    candidates.sort(key=lambda e: (
        EVICTION_ORDER[e.tier],
        0 if e.phase != current_phase else 1,
        e.loaded_at,
        e.seq,
    ))
    return candidates


def plan_eviction(
    snapshot: TierSnapshot,
    needed: int,
    limit: int,
    current_phase: Optional[str] = None,
    tiers: Sequence[str] = (Tier.EXECUTION,),
    protect: FrozenSet[EntryRef] = frozenset(),
) -> EvictionPlan:
    """Free room for `needed` more tokens under `limit`, all-or-nothing."""
    if snapshot.total_tokens + needed <= limit:
        return EvictionPlan(snapshot=snapshot)

    overshoot = snapshot.total_tokens + needed - limit
    evicted: List[ContextEntry] = []
    freed = 0
    for entry in eviction_candidates(snapshot, current_phase, tiers, protect):
        if freed >= overshoot:
            break
        evicted.append(entry)
        freed += entry.tokens

    if freed < overshoot:
        return EvictionPlan(snapshot=snapshot, fits=False)

    return EvictionPlan(
        snapshot=snapshot.without(e.ref for e in evicted),
        evicted=tuple(evicted),
        tokens_freed=freed,
    )


def plan_tier_trim(
    snapshot: TierSnapshot,
    tier: str,
    soft_limit: int,
    current_phase: Optional[str] = None,
    protect: FrozenSet[EntryRef] = frozenset(),
) -> EvictionPlan:
    """
    Bring one tier back under its soft limit using off-phase entries only.

    Best-effort: whatever off-phase entries exist are dropped in order, and
    `fits` reports whether the tier ended under the limit.
    """
    excess = snapshot.tier_tokens(tier) - soft_limit
    if excess <= 0:
        return EvictionPlan(snapshot=snapshot)

    evicted: List[ContextEntry] = []
    freed = 0
    for entry in eviction_candidates(snapshot, current_phase, (tier,), protect):
        if freed >= excess:
            break
        if entry.phase == current_phase:
            break
        evicted.append(entry)
        freed += entry.tokens

    return EvictionPlan(
        snapshot=snapshot.without(e.ref for e in evicted),
        evicted=tuple(evicted),
        tokens_freed=freed,
        fits=freed >= excess,
    )
