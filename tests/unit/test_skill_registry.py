# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for Skill and SkillRegistry."""

import pytest
from pydantic import ValidationError

from ears_flow.core.errors import UnknownSkillError
from ears_flow.kernel.skill_registry import Skill, SkillRegistry, Trigger


class TestTrigger:
    def test_phrase_normalized(self):
        t = Trigger(phrase="  Spec   FORGE ")
        assert t.phrase == "spec forge"
        assert t.match_kind == "hyphenated"

    def test_blank_phrase_rejected(self):
        with pytest.raises(ValidationError):
            Trigger(phrase="   ")

    def test_unknown_match_kind_rejected(self):
        with pytest.raises(ValidationError):
            Trigger(phrase="spec", match_kind="fuzzy")


class TestSkill:
    def test_kebab_case_name(self):
        with pytest.raises(ValidationError):
            Skill(name="Spec_Forge")

    def test_semver(self):
        with pytest.raises(ValidationError):
            Skill(name="work", version="1.0")

    def test_major_version(self):
        assert Skill(name="work", version="2.3.1").major_version == 2

    def test_frozen(self):
        skill = Skill(name="work")
        with pytest.raises(ValidationError):
            skill.version = "2.0.0"


class TestSkillRegistry:
    def test_register_and_get(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("spec-forge", phase="spec-forge"))
        assert reg.get("spec-forge").phase == "spec-forge"
        assert "spec-forge" in reg
        assert len(reg) == 1

    def test_get_unknown_returns_none(self):
        assert SkillRegistry().get("nope") is None

    def test_require_unknown_raises(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("work"))
        with pytest.raises(UnknownSkillError) as exc:
            reg.require("nope")
        assert exc.value.context["available_skills"] == ["work"]

    def test_reregister_identical_is_noop(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("work"))
        reg.register(make_skill("work"))
        assert reg.names() == ["work"]

    def test_reregister_different_rejected(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("work", tokens=10))
        with pytest.raises(ValueError):
            reg.register(make_skill("work", tokens=20))

    def test_entry_point_and_for_phase(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("ears-workflow", is_entry_point=True, phase="spec-forge"))
        reg.register(make_skill("spec-forge", phase="spec-forge"))
        reg.register(make_skill("review"))
        assert reg.entry_point().name == "ears-workflow"
        assert reg.for_phase("spec-forge").name == "spec-forge"
        # falls back to the skill named after the phase
        assert reg.for_phase("review").name == "review"
        assert reg.for_phase("planning") is None

    def test_utility_names(self, make_skill):
        reg = SkillRegistry()
        reg.register(make_skill("git-worktree", bypasses_sequencing=True))
        reg.register(make_skill("work", phase="work"))
        assert reg.utility_names() == {"git-worktree"}

    def test_list_all_keeps_order(self, make_skill):
        reg = SkillRegistry()
        for name in ("review", "planning", "work"):
            reg.register(make_skill(name))
        assert [s["name"] for s in reg.list_all()] == ["review", "planning", "work"]
        assert [s.name for s in reg] == ["review", "planning", "work"]
