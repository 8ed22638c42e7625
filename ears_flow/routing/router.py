# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Activation Router — Decides which skill, if any, handles an utterance.

analyze_input() is pure: it reads the session (registry, workflow) and
returns a RoutingDecision without touching the context budget.
dispatch() acts on a decision; route() does both.

Decision types:
  main-workflow  a main-workflow trigger matched; always starts at the first phase
  sub-skill      best per-skill trigger match above the activation threshold
  none           dormant, nothing matched
  error          analysis raised; carries troubleshooting and recovery steps
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import (
    BudgetInvariantError,
    ErrorReport,
    ErrorType,
    OrchestratorError,
    SequenceViolationError,
    build_error_report,
)
from ears_flow.core.metrics import session_metrics
from ears_flow.kernel.skill_registry import Skill, Trigger
from ears_flow.memory.fsm import PhaseValidation, ValidationType
from ears_flow.memory.phase_context import PhaseTransitionReport
from ears_flow.routing.triggers import (
    MAIN_WORKFLOW_TRIGGERS,
    TriggerMatch,
    calculate_confidence,
    find_trigger,
    normalize_input,
)

if TYPE_CHECKING:
    from ears_flow.core.session import SessionState

logger = logging.getLogger("ears.router")


class DecisionType:
    MAIN_WORKFLOW = "main-workflow"
    SUB_SKILL = "sub-skill"
    NONE = "none"
    ERROR = "error"


class RoutingDecision(BaseModel):
    type: str
    skill: Optional[str] = None
    confidence: float = 0.0
    phase: Optional[str] = None
    valid: Optional[bool] = None
    message: Optional[str] = None
    error: Optional[str] = None
    troubleshooting: List[str] = Field(default_factory=list)
    recovery: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class DispatchResult(BaseModel):
    decision: RoutingDecision
    applied: bool = False
    actions: List[str] = Field(default_factory=list)
    phase_report: Optional[PhaseTransitionReport] = None
    error: Optional[ErrorReport] = None


class ActivationRouter:
    """
    Trigger-matching dispatcher.

    Usage:
        router = ActivationRouter()
        decision = router.analyze_input("use ears workflow", session)
        result = router.dispatch(decision, session)
    """

    def __init__(self, settings: Optional[EarsSettings] = None) -> None:
        self._settings = settings or default_settings

    # ── Trigger table ───────────────────────────────────────────

    def _entry_skill(self, session: SessionState) -> Optional[Skill]:
        return session.registry.entry_point() or session.registry.get(self._settings.MAIN_SKILL)

    def _main_triggers(self, session: SessionState) -> List[Trigger]:
        entry = self._entry_skill(session)
        if entry is not None and entry.triggers:
            return list(entry.triggers)
        return [Trigger(phrase=p) for p in MAIN_WORKFLOW_TRIGGERS]

    def get_all_triggers(self, session: SessionState) -> Dict[str, List[str]]:
        entry = self._entry_skill(session)
        table = {
            entry.name if entry else self._settings.MAIN_SKILL:
                [t.phrase for t in self._main_triggers(session)],
        }
        for skill in session.registry:
            if not skill.is_entry_point:
                table[skill.name] = [t.phrase for t in skill.triggers]
        return table

    # ── Matching ────────────────────────────────────────────────

    def _best(self, text: str, skill: str, triggers: List[Trigger], order: int) -> Optional[TriggerMatch]:
        best: Optional[TriggerMatch] = None
        own_names = {skill, skill.replace("-", " ")}
        for trigger in triggers:
            hit = find_trigger(text, trigger)
            if hit is None:
                continue
            match = TriggerMatch(
                skill=skill,
                phrase=trigger.phrase,
                match_kind=trigger.match_kind,
                boundary=hit.boundary,
                confidence=calculate_confidence(text, trigger.phrase, hit),
                name_match=trigger.phrase in own_names,
                order=order,
            )
            if best is None or match.rank() > best.rank():
                best = match
        return best

    def _detect_sub_skill(self, text: str, session: SessionState) -> Optional[TriggerMatch]:
        best: Optional[TriggerMatch] = None
        for order, skill in enumerate(session.registry):
            if skill.is_entry_point:
                continue
            match = self._best(text, skill.name, list(skill.triggers), order)
            if match is not None and (best is None or match.rank() > best.rank()):
                best = match
        return best

    # ── Analysis ────────────────────────────────────────────────

    def _dormant(self, session: SessionState) -> RoutingDecision:
        return RoutingDecision(
            type=DecisionType.NONE,
            context={"analyzed": True, "triggers": self.get_all_triggers(session)},
        )

    @staticmethod
    def _phase_of(skill: Skill) -> Optional[str]:
        """The phase a skill drives; None only for skills that bypass sequencing."""
        if skill.bypasses_sequencing:
            return None
        return skill.phase or skill.name

    def _phase_check(self, skill: Skill, session: SessionState) -> PhaseValidation:
        phase = self._phase_of(skill)
        if phase is None:
            return PhaseValidation(valid=True, phase=skill.name, type=ValidationType.UTILITY)
        return session.phases.validate_transition(session.workflow, phase)

    def _analyze(self, text: str, session: SessionState) -> RoutingDecision:
        normalized = normalize_input(text)
        if not normalized:
            return self._dormant(session)

        entry = self._entry_skill(session)
        entry_name = entry.name if entry else self._settings.MAIN_SKILL
        main = self._best(normalized, entry_name, self._main_triggers(session), -1)
        if main is not None:
            first = session.phases.first_phase
            return RoutingDecision(
                type=DecisionType.MAIN_WORKFLOW,
                skill=entry_name,
                confidence=main.confidence,
                phase=first,
                valid=True,
                message=(
                    "EARS-Workflow activated. Starting with the "
                    f"{session.phases.display_name(first)} phase.\n\n"
                    "Phase sequence: "
                    + " -> ".join(session.phases.display_name(p) for p in session.phases.sequence)
                ),
                context={"analyzed": True, "trigger": main.phrase, "suggested_phase": first},
            )

        match = self._detect_sub_skill(normalized, session)
        if match is not None and match.confidence >= self._settings.ROUTER_ACTIVATION_THRESHOLD:
            skill = session.registry.require(match.skill)
            check = self._phase_check(skill, session)
            troubleshooting: List[str] = []
            recovery: List[str] = []
            if check.valid:
                message = f"{skill.name.upper()} sub-skill activated\n\n{skill.description}"
            else:
                message = check.message
                if check.type == ValidationType.SEQUENCE_VIOLATION:
                    report = SequenceViolationError(check.phase, check.missing_phases).to_report()
                    troubleshooting, recovery = report.troubleshooting, report.recovery
            return RoutingDecision(
                type=DecisionType.SUB_SKILL,
                skill=skill.name,
                confidence=match.confidence,
                phase=check.phase,
                valid=check.valid,
                message=message,
                troubleshooting=troubleshooting,
                recovery=recovery,
                context={
                    "analyzed": True,
                    "trigger": match.phrase,
                    "match_kind": match.match_kind,
                    "boundary": match.boundary,
                    "phase_validation": check.model_dump(),
                },
            )

        return self._dormant(session)

    def analyze_input(self, text: str, session: SessionState) -> RoutingDecision:
        """Classify an utterance. Never mutates the session."""
        try:
            decision = self._analyze(text or "", session)
        except BudgetInvariantError:
            raise
        except Exception as e:
            logger.exception("Input analysis failed")
            report = build_error_report(
                ErrorType.ANALYSIS_ERROR,
                {"error_message": str(e), "input": text},
            )
            decision = RoutingDecision(
                type=DecisionType.ERROR,
                message=report.message,
                error=ErrorType.ANALYSIS_ERROR,
                troubleshooting=report.troubleshooting,
                recovery=report.recovery,
                context={"analyzed": False},
            )
        session_metrics.record_decision(decision.type)
        logger.info(
            "Routing decision: %s skill=%s confidence=%.2f",
            decision.type, decision.skill, decision.confidence,
        )
        return decision

    # ── Dispatch ────────────────────────────────────────────────

    def dispatch(self, decision: RoutingDecision, session: SessionState) -> DispatchResult:
        """Apply a decision to the session. Invalid and dormant decisions change nothing."""
        result = DispatchResult(decision=decision)

        if decision.type == DecisionType.MAIN_WORKFLOW:
            try:
                activation = session.context.activate_skill(decision.skill)
            except OrchestratorError as e:
                result.error = e.to_report()
                result.actions.append(f"activation failed: {decision.skill}")
                return result
            if not activation.already_active:
                result.actions.append(f"activated skill: {decision.skill}")
            report = session.phase_context.enter_phase(
                session, session.phases.first_phase, preload_supporting=True,
            )
            result.phase_report = report
            result.error = report.error
            result.applied = report.success
            result.actions.extend(report.actions_taken)

        elif decision.type == DecisionType.SUB_SKILL and decision.valid:
            skill = session.registry.require(decision.skill)
            phase = self._phase_of(skill)
            if phase is not None and session.phases.is_canonical(phase):
                report = session.phase_context.enter_phase(session, phase)
                result.phase_report = report
                result.error = report.error
                result.applied = report.success
                result.actions.extend(report.actions_taken)
            else:
                try:
                    activation = session.context.activate_skill(skill.name)
                except OrchestratorError as e:
                    result.error = e.to_report()
                    result.actions.append(f"activation failed: {skill.name}")
                    return result
                result.applied = True
                if not activation.already_active:
                    result.actions.append(f"activated skill: {skill.name}")

        else:
            result.actions.append("no action")

        if result.applied:
            session_metrics.inc("router_dispatches_applied")
        return result

    def route(self, text: str, session: SessionState) -> DispatchResult:
        return self.dispatch(self.analyze_input(text, session), session)
