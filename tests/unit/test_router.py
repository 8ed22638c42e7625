# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for ActivationRouter."""

import pytest

from ears_flow.core.config import EarsSettings
from ears_flow.core.errors import BudgetInvariantError, ErrorType
from ears_flow.core.metrics import session_metrics
from ears_flow.core.session import SessionState
from ears_flow.kernel.skill_registry import Trigger
from ears_flow.memory.fsm import NO_PHASE, WorkflowState
from ears_flow.routing.router import ActivationRouter, DecisionType


@pytest.fixture
def router(ears_settings):
    return ActivationRouter(ears_settings)


class TestAnalyzeInput:
    def test_main_workflow_starts_at_first_phase(self, router, session):
        decision = router.analyze_input("use ears workflow", session)
        assert decision.type == DecisionType.MAIN_WORKFLOW
        assert decision.skill == "ears-workflow"
        assert decision.phase == "spec-forge"
        assert decision.valid
        assert "SPEC-FORGE" in decision.message

    def test_sequence_violation_lists_missing_phases(self, router, session):
        session.workflow = WorkflowState(current_phase="spec-forge", completed_phases=("spec-forge",))
        decision = router.analyze_input("implement the feature", session)
        assert decision.type == DecisionType.SUB_SKILL
        assert decision.skill == "work"
        assert decision.valid is False
        check = decision.context["phase_validation"]
        assert check["missing_phases"] == ["planning"]
        assert check["suggested_next"] == "planning"
        assert decision.troubleshooting
        assert "Enter the suggested phase" in decision.recovery

    def test_no_partial_match_on_ears(self, router, session):
        decision = router.analyze_input("ear infection", session)
        assert decision.type == DecisionType.NONE
        assert decision.skill is None
        assert "spec-forge" in decision.context["triggers"]

    def test_blank_input_is_dormant(self, router, session):
        assert router.analyze_input("   ", session).type == DecisionType.NONE
        assert router.analyze_input(None, session).type == DecisionType.NONE

    def test_hyphenated_skill_name(self, router, session):
        decision = router.analyze_input("run spec-forge", session)
        assert decision.skill == "spec-forge"
        assert decision.context["trigger"] == "spec-forge"

    def test_longest_phrase_wins(self, router, session):
        # "code" (work) and "code review" (review) both match on word boundaries
        decision = router.analyze_input("code review please", session)
        assert decision.skill == "review"
        assert decision.context["trigger"] == "code review"

    def test_utility_skill_bypasses_sequence(self, router, session):
        decision = router.analyze_input("create worktree", session)
        assert decision.skill == "git-worktree"
        assert decision.valid
        assert decision.context["phase_validation"]["type"] == "utility"

    def test_phaseless_descriptor_still_sequenced(self, router, ears_project, ears_settings):
        (ears_project / ".ai" / "skills" / "review" / "SKILL.md").write_text(
            "---\nname: review\ndescription: Review the work.\nversion: 1.0.0\n---\n# review\n",
            encoding="utf-8",
        )
        session = SessionState.create(ears_project, ears_settings, isolate=False)
        assert session.registry.require("review").phase is None

        result = router.route("code review please", session)
        assert result.decision.skill == "review"
        assert result.decision.phase == "review"
        assert result.decision.valid is False
        assert result.decision.context["phase_validation"]["type"] == "sequence-violation"
        assert not result.applied
        assert session.context.active_skills == []

    def test_phaseless_non_phase_skill_is_not_utility(self, router, tmp_path, make_skill):
        session = SessionState.create(
            tmp_path, isolate=False,
            skills=[make_skill("lint", triggers=(Trigger(phrase="lint"),))],
        )
        decision = router.analyze_input("lint", session)
        assert decision.skill == "lint"
        assert decision.valid is False
        assert decision.context["phase_validation"]["type"] == "unknown-phase"

    def test_below_threshold_is_dormant(self, session):
        strict = ActivationRouter(EarsSettings(_env_file=None, ROUTER_ACTIVATION_THRESHOLD=0.95))
        assert strict.analyze_input("please implement this now for me", session).type == DecisionType.NONE

    def test_analysis_does_not_mutate(self, router, session):
        tokens = session.context.total_tokens
        router.analyze_input("use ears workflow", session)
        assert session.context.total_tokens == tokens
        assert session.workflow.current_phase == NO_PHASE

    def test_records_decision_metrics(self, router, session):
        router.analyze_input("ear infection", session)
        assert session_metrics.get_counter("router_decisions_none") == 1

    def test_analysis_error(self, router, session, monkeypatch):
        def boom(text, s):
            raise RuntimeError("index broken")

        monkeypatch.setattr(router, "_analyze", boom)
        decision = router.analyze_input("anything", session)
        assert decision.type == DecisionType.ERROR
        assert decision.error == ErrorType.ANALYSIS_ERROR
        assert "index broken" in decision.message
        assert decision.troubleshooting
        assert decision.recovery

    def test_budget_invariant_propagates(self, router, session, monkeypatch):
        def broken(text, s):
            raise BudgetInvariantError("over")

        monkeypatch.setattr(router, "_analyze", broken)
        with pytest.raises(BudgetInvariantError):
            router.analyze_input("anything", session)

    def test_trigger_table(self, router, session):
        table = router.get_all_triggers(session)
        assert "use ears workflow" in table["ears-workflow"]
        assert set(table) == set(session.registry.names())


class TestDispatch:
    def test_main_workflow_enters_first_phase(self, router, session):
        result = router.route("use ears workflow", session)
        assert result.applied
        assert result.phase_report.success
        assert session.workflow.current_phase == "spec-forge"
        assert session.context.is_active("ears-workflow")
        assert session.context.is_active("spec-forge")
        assert "activated skill: ears-workflow" in result.actions

    def test_invalid_decision_changes_nothing(self, router, session):
        session.workflow = WorkflowState(current_phase="spec-forge", completed_phases=("spec-forge",))
        tokens = session.context.total_tokens
        result = router.route("implement the feature", session)
        assert not result.applied
        assert result.actions == ["no action"]
        assert session.context.total_tokens == tokens

    def test_dormant_changes_nothing(self, router, session):
        result = router.route("ear infection", session)
        assert not result.applied
        assert session.context.active_skills == []

    def test_utility_activates_without_phase_change(self, router, session):
        result = router.route("create worktree", session)
        assert result.applied
        assert result.actions == ["activated skill: git-worktree"]
        assert session.workflow.current_phase == NO_PHASE

    def test_sub_skill_enters_its_phase(self, router, session):
        result = router.route("run spec-forge", session)
        assert result.applied
        assert session.workflow.current_phase == "spec-forge"
        assert session_metrics.get_counter("router_dispatches_applied") == 1

    def test_overflow_is_reported_not_raised(self, tmp_path, make_skill):
        settings = EarsSettings(_env_file=None, TOTAL_CONTEXT_LIMIT=500)
        session = SessionState.create(
            tmp_path, settings, isolate=False,
            skills=[make_skill("git-worktree", tokens=900, bypasses_sequencing=True,
                               triggers=(Trigger(phrase="worktree"),))],
        )
        result = ActivationRouter(settings).route("worktree", session)
        assert not result.applied
        assert result.error.error_type == ErrorType.CONTEXT_OVERFLOW
