# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for the three-tier ContextManager."""

import itertools

import pytest

from ears_flow.core.config import EarsSettings
from ears_flow.core.errors import (
    BudgetInvariantError,
    ContextOverflowError,
    MissingFilesError,
    UnknownSkillError,
)
from ears_flow.core.metrics import session_metrics
from ears_flow.memory.context_manager import ContextManager, normalize_path
from ears_flow.memory.eviction import ContextEntry, Tier, TierSnapshot


def tokens(n: int) -> str:
    """Content estimated at exactly n tokens."""
    return "x" * (n * 4)


@pytest.fixture
def clock():
    ticks = itertools.count(1)
    return lambda: float(next(ticks))


def manager(tmp_path, clock, **overrides) -> ContextManager:
    return ContextManager(tmp_path, EarsSettings(_env_file=None, **overrides), clock=clock)


class TestDiscovery:
    def test_fixed_cost_per_skill(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        assert ctx.register_discovery_metadata(make_skill("work", tokens=900))
        assert ctx.register_discovery_metadata(make_skill("review", tokens=900))
        assert ctx.total_tokens == 100
        assert ctx.inactive_skills == ["work", "review"]

    def test_register_twice(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work"))
        assert not ctx.register_discovery_metadata(make_skill("work"))
        assert ctx.total_tokens == 50


class TestActivation:
    def test_activate_and_deactivate(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work", tokens=700))
        result = ctx.activate_skill("work")
        assert result.tokens_loaded == 700
        assert ctx.active_skills == ["work"]
        assert ctx.total_tokens == 750

        assert ctx.activate_skill("work").already_active
        assert ctx.total_tokens == 750

        off = ctx.deactivate_skill("work")
        assert off.tokens_freed == 700
        assert ctx.total_tokens == 50
        assert ctx.deactivate_skill("work").already_inactive
        assert ctx.total_tokens == 50

    def test_unknown_skill(self, tmp_path, clock):
        with pytest.raises(UnknownSkillError):
            manager(tmp_path, clock).activate_skill("nope")

    def test_fifth_activation_overflows(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        for i in range(5):
            ctx.register_discovery_metadata(make_skill(f"skill-{i}", tokens=1900))
        for i in range(4):
            ctx.activate_skill(f"skill-{i}")
        assert ctx.total_tokens == 7850

        with pytest.raises(ContextOverflowError) as exc:
            ctx.activate_skill("skill-4")
        assert exc.value.context["requested"] == 1900
        assert not ctx.is_active("skill-4")
        assert ctx.total_tokens == 7850
        assert session_metrics.get_counter("context_overflows_total") == 1

    def test_activation_evicts_execution_tier(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock, TOTAL_CONTEXT_LIMIT=1000)
        ctx.register_discovery_metadata(make_skill("work", tokens=600))
        ctx.load_supporting_file("notes.md", content=tokens(400))
        result = ctx.activate_skill("work")
        assert result.evicted == ["notes.md"]
        assert result.tokens_freed == 400
        assert ctx.loaded_files == []
        assert ctx.total_tokens == 650

    def test_deactivate_unloads_sourced_files(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work", tokens=100))
        ctx.activate_skill("work")
        ctx.load_supporting_file("a.md", skill="work", content=tokens(10))
        ctx.load_supporting_file("b.md", content=tokens(10))
        off = ctx.deactivate_skill("work")
        assert off.unloaded_files == ["a.md"]
        assert off.tokens_freed == 110
        assert ctx.loaded_files == ["b.md"]


class TestSupportingFiles:
    def test_load_from_disk(self, tmp_path, clock):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "plan.md").write_text(tokens(25), encoding="utf-8")
        ctx = manager(tmp_path, clock)
        result = ctx.load_supporting_file("./docs/plan.md", phase="planning")
        assert result.path == "docs/plan.md"
        assert result.tokens_loaded == 25
        assert ctx.is_loaded("docs/plan.md")

    def test_reload_refreshes_recency(self, tmp_path, clock):
        ctx = manager(tmp_path, clock)
        ctx.load_supporting_file("a.md", content=tokens(10))
        before = ctx.snapshot.execution["a.md"].loaded_at
        again = ctx.load_supporting_file("a.md", content=tokens(99))
        assert again.already_loaded
        assert ctx.total_tokens == 10
        assert ctx.snapshot.execution["a.md"].loaded_at > before

    def test_missing_file(self, tmp_path, clock):
        with pytest.raises(MissingFilesError):
            manager(tmp_path, clock).load_supporting_file("absent.md")

    def test_overflow_when_nothing_evictable(self, tmp_path, clock):
        ctx = manager(tmp_path, clock, TOTAL_CONTEXT_LIMIT=100)
        with pytest.raises(ContextOverflowError):
            ctx.load_supporting_file("big.md", content=tokens(101))
        assert ctx.total_tokens == 0

    def test_soft_limit_trims_off_phase(self, tmp_path, clock):
        ctx = manager(tmp_path, clock, EXECUTION_SOFT_LIMIT=500)
        ctx.current_phase = "work"
        ctx.load_supporting_file("old.md", phase="planning", content=tokens(300))
        result = ctx.load_supporting_file("new.md", phase="work", content=tokens(300))
        assert result.evicted == ["old.md"]
        assert ctx.loaded_files == ["new.md"]

    def test_unload(self, tmp_path, clock):
        ctx = manager(tmp_path, clock)
        ctx.load_supporting_file("a.md", content=tokens(10))
        assert ctx.unload_supporting_file("a.md") == 10
        assert ctx.unload_supporting_file("a.md") == 0

    def test_unload_many(self, tmp_path, clock):
        ctx = manager(tmp_path, clock)
        ctx.load_supporting_file("a.md", content=tokens(10))
        result = ctx.unload_supporting_files(["a.md", "b.md"])
        assert result.unloaded == ["a.md"]
        assert result.not_loaded == ["b.md"]
        assert result.tokens_freed == 10

    def test_unload_by_tag(self, tmp_path, clock):
        ctx = manager(tmp_path, clock)
        ctx.load_supporting_file("a.md", skill="work", content=tokens(10))
        ctx.load_supporting_file("b.md", phase="work", content=tokens(10))
        ctx.load_supporting_file("c.md", phase="review", content=tokens(10))
        assert ctx.unload_all_for_skill("work").unloaded == ["a.md", "b.md"]
        assert ctx.loaded_files == ["c.md"]

    def test_unload_outside_phase(self, tmp_path, clock):
        ctx = manager(tmp_path, clock)
        ctx.load_supporting_file("a.md", phase="work", content=tokens(10))
        ctx.load_supporting_file("b.md", phase="review", content=tokens(10))
        ctx.load_supporting_file("c.md", content=tokens(10))
        result = ctx.unload_outside_phase("work")
        assert sorted(result.unloaded) == ["b.md", "c.md"]

    def test_normalize_path(self):
        assert normalize_path("./.ai/x.md") == ".ai/x.md"


class TestFreeContextSpace:
    def test_frees_in_eviction_order(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.current_phase = "work"
        ctx.register_discovery_metadata(make_skill("planning", tokens=200, phase="planning"))
        ctx.activate_skill("planning")
        ctx.load_supporting_file("w.md", phase="work", content=tokens(100))
        result = ctx.free_context_space(150)
        assert result.sufficient
        assert result.deactivated_skills == ["planning"]
        assert result.evicted == ["w.md", "planning"]
        assert result.tokens_freed == 300
        assert ctx.total_tokens == 50

    def test_best_effort(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work", tokens=200))
        ctx.activate_skill("work")
        result = ctx.free_context_space(5000)
        assert not result.sufficient
        assert result.tokens_freed == 200
        # discovery is never evicted
        assert ctx.total_tokens == 50

    def test_zero_request(self, tmp_path, clock):
        assert manager(tmp_path, clock).free_context_space(0).sufficient


class TestIntrospection:
    def test_status(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work", tokens=350))
        ctx.activate_skill("work")
        status = ctx.get_context_status()
        assert status.total_tokens == 400
        assert status.available_tokens == 7600
        assert status.utilization_percent == 5.0
        assert status.tiers[Tier.INSTRUCTION].tokens == 350
        assert status.tiers[Tier.DISCOVERY].soft_limit is None
        assert status.active_skills == ["work"]

    def test_recommendations(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        for name in ("a1", "b1", "c1", "d1"):
            ctx.register_discovery_metadata(make_skill(name, tokens=10))
            ctx.activate_skill(name)
        recs = ctx.get_optimization_recommendations()
        assert recs.can_optimize
        assert [r.action for r in recs.recommendations] == ["use-specific-subskills"]

    def test_budget_invariant_raises(self, tmp_path, clock):
        ctx = manager(tmp_path, clock, TOTAL_CONTEXT_LIMIT=10)
        big = ContextEntry(key="x", tier=Tier.EXECUTION, content="", tokens=11)
        with pytest.raises(BudgetInvariantError):
            ctx._commit(TierSnapshot().with_entry(big))

    def test_reset(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work"))
        ctx.reset()
        assert ctx.total_tokens == 0
        assert ctx.inactive_skills == []


class TestEnforceSoftLimit:
    def test_instruction_tier_deactivates_off_phase(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock, INSTRUCTION_SOFT_LIMIT=100)
        ctx.current_phase = "work"
        ctx.register_discovery_metadata(make_skill("planning", tokens=80, phase="planning"))
        ctx.register_discovery_metadata(make_skill("work", tokens=80, phase="work"))
        ctx.activate_skill("planning")
        ctx.activate_skill("work")
        result = ctx.enforce_soft_limit(Tier.INSTRUCTION)
        assert result.unloaded == ["planning"]
        assert result.tokens_freed == 80
        assert ctx.active_skills == ["work"]

    def test_discovery_has_no_soft_limit(self, tmp_path, clock, make_skill):
        ctx = manager(tmp_path, clock)
        ctx.register_discovery_metadata(make_skill("work"))
        assert ctx.enforce_soft_limit(Tier.DISCOVERY).unloaded == []
