# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Phase Context Manager — Loads and unloads context around phase changes.

Each canonical phase owns a list of phase files (tagged with the phase's
skill and the phase) and a list of optional supporting files (tagged with
the phase only). Entering a phase swaps the outgoing phase's skill for the
incoming one, loads its files and records the token movement.

Paths below are relative to the installation directory (AI_DIR).
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import ErrorReport, OrchestratorError, SequenceViolationError
from ears_flow.core.metrics import session_metrics
from ears_flow.memory.eviction import Tier
from ears_flow.memory.fsm import NO_PHASE, PhaseValidation, ValidationType

if TYPE_CHECKING:
    from ears_flow.core.session import SessionState

logger = logging.getLogger("ears.phase_context")

PHASE_FILES: Dict[str, List[str]] = {
    "spec-forge": [
        "workflows/ears-workflow.md",
        "templates/requirements-template.md",
        "templates/ears-validation.md",
        "templates/incose-validation.md",
        "prompts/testability-analysis.md",
        "prompts/correctness-properties.md",
    ],
    "planning": [
        "workflows/planning.md",
        "roles/architect.md",
        "docs/plans/README.md",
        "memory/decisions.md",
    ],
    "work": [
        "workflows/execution.md",
        "protocols/git-worktree.md",
        "roles/builder.md",
        "protocols/testing.md",
        "skills/git-worktree/README.md",
    ],
    "review": [
        "workflows/review.md",
        "roles/auditor.md",
        "docs/reviews/README.md",
    ],
}

SUPPORTING_FILES: Dict[str, List[str]] = {
    "spec-forge": [
        "docs/requirements/README.md",
        "prompts/round-trip-detection.md",
        "templates/lessons.template.md",
    ],
    "planning": [
        "docs/design/README.md",
        "templates/decisions.template.md",
        "protocols/migrations.md",
    ],
    "work": [
        "skills/git-worktree/examples.md",
        "skills/git-worktree/git-worktree.sh",
        "docs/tasks/README.md",
    ],
    "review": [
        "docs/reviews/README.md",
        "protocols/testing.md",
    ],
}


class PhaseTransitionReport(BaseModel):
    success: bool
    previous_phase: str
    new_phase: str
    actions_taken: List[str] = Field(default_factory=list)
    tokens_freed: int = 0
    tokens_loaded: int = 0
    net_token_change: int = 0
    files_loaded: List[str] = Field(default_factory=list)
    skipped_files: List[str] = Field(default_factory=list)
    validation: Optional[PhaseValidation] = None
    error: Optional[ErrorReport] = None


class PhaseHistoryEntry(BaseModel):
    kind: str
    from_phase: str
    to_phase: str
    tokens_freed: int
    tokens_loaded: int
    utilization_percent: float
    at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def _rejection_error(check: PhaseValidation) -> Optional[ErrorReport]:
    if check.type != ValidationType.SEQUENCE_VIOLATION:
        return None
    return SequenceViolationError(check.phase, check.missing_phases).to_report()


class PhaseContextManager:
    """Drives ContextManager and WorkflowState of one session through phase changes."""

    def __init__(
        self,
        settings: Optional[EarsSettings] = None,
        phase_files: Optional[Dict[str, List[str]]] = None,
        supporting_files: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        self._settings = settings or default_settings
        self._phase_files = phase_files if phase_files is not None else PHASE_FILES
        self._supporting = supporting_files if supporting_files is not None else SUPPORTING_FILES
        self._history: Deque[PhaseHistoryEntry] = deque(maxlen=self._settings.MAX_TRANSITION_HISTORY)

    @property
    def history(self) -> List[PhaseHistoryEntry]:
        return list(self._history)

    def phase_files(self, phase: str) -> List[str]:
        return [self._path(rel) for rel in self._phase_files.get(phase, [])]

    def supporting_files(self, phase: str) -> List[str]:
        return [self._path(rel) for rel in self._supporting.get(phase, [])]

    def _path(self, rel: str) -> str:
        return f"{self._settings.AI_DIR.rstrip('/')}/{rel}"

    def _record(self, session: SessionState, report: PhaseTransitionReport, kind: str) -> None:
        self._history.append(PhaseHistoryEntry(
            kind=kind,
            from_phase=report.previous_phase,
            to_phase=report.new_phase,
            tokens_freed=report.tokens_freed,
            tokens_loaded=report.tokens_loaded,
            utilization_percent=session.context.utilization_percent,
        ))

    def _load_files(
        self,
        session: SessionState,
        paths: Sequence[str],
        report: PhaseTransitionReport,
        skill: Optional[str],
        phase: str,
    ) -> None:
        for path in paths:
            try:
                result = session.context.load_supporting_file(path, skill=skill, phase=phase)
            except OrchestratorError as e:
                logger.warning("Skipping %s: %s", path, e.message)
                report.skipped_files.append(path)
                continue
            if not result.already_loaded:
                report.files_loaded.append(result.path)
                report.tokens_loaded += result.tokens_loaded
            report.tokens_freed += result.tokens_freed

    # ── Operations ──────────────────────────────────────────────

    def enter_phase(
        self,
        session: SessionState,
        phase: str,
        preload_supporting: bool = False,
        aggressive_unload: bool = False,
    ) -> PhaseTransitionReport:
        """Validate, swap phase context and move the workflow into `phase`."""
        previous = session.workflow.current_phase
        check = session.phases.validate_transition(session.workflow, phase)
        report = PhaseTransitionReport(
            success=False, previous_phase=previous, new_phase=phase, validation=check,
        )
        if not check.valid:
            report.error = _rejection_error(check)
            report.actions_taken.append(f"rejected: {check.type}")
            logger.info("Phase %s rejected: %s", phase, check.type)
            return report

        ctx = session.context
        before = ctx.snapshot
        if previous not in (NO_PHASE, phase):
            exited = self._exit(session, previous, aggressive_unload)
            report.actions_taken.extend(exited.actions_taken)
            report.tokens_freed += exited.tokens_freed

        skill = session.registry.for_phase(phase)
        ctx.current_phase = phase
        if skill is not None:
            try:
                activation = ctx.activate_skill(skill.name)
            except OrchestratorError as e:
                ctx.current_phase = None if previous == NO_PHASE else previous
                ctx.restore(before)
                report.error = e.to_report()
                report.tokens_freed = 0
                report.actions_taken.append(f"activation failed: {skill.name}")
                if previous != NO_PHASE:
                    report.actions_taken.append(f"restored context of {previous}")
                logger.warning("Entering %s failed: %s", phase, e.message)
                return report
            if not activation.already_active:
                report.actions_taken.append(f"activated skill: {skill.name}")
                report.tokens_loaded += activation.tokens_loaded
            report.tokens_freed += activation.tokens_freed

        self._load_files(session, self.phase_files(phase), report,
                         skill.name if skill else None, phase)

        if preload_supporting:
            if ctx.utilization_percent < self._settings.PRELOAD_UTILIZATION_CEILING:
                supporting = self.supporting_files(phase)[: self._settings.MAX_SUPPORTING_PRELOAD]
                self._load_files(session, supporting, report, None, phase)
                report.actions_taken.append(f"preloaded supporting files for {phase}")
            else:
                report.actions_taken.append("skipped supporting preload: utilization too high")

        session.workflow, _ = session.phases.transition(session.workflow, phase)
        report.success = True
        report.net_token_change = report.tokens_loaded - report.tokens_freed
        report.actions_taken.append(f"entered phase: {phase}")
        self._record(session, report, "enter")
        session_metrics.inc("phase_transitions_total")
        logger.info(
            "Entered %s (+%d / -%d tokens, %d file(s), %d skipped)",
            phase, report.tokens_loaded, report.tokens_freed,
            len(report.files_loaded), len(report.skipped_files),
        )
        return report

    def _exit(self, session: SessionState, phase: str, aggressive_unload: bool) -> PhaseTransitionReport:
        ctx = session.context
        report = PhaseTransitionReport(success=True, previous_phase=phase, new_phase=phase)

        skill = session.registry.for_phase(phase)
        if skill is not None:
            deactivated = ctx.deactivate_skill(skill.name)
            if not deactivated.already_inactive:
                report.actions_taken.append(f"deactivated skill: {skill.name}")
                report.tokens_freed += deactivated.tokens_freed

        if aggressive_unload:
            keys = [e.key for e in ctx.snapshot.execution.values() if e.phase == phase]
            unloaded = ctx.unload_supporting_files(keys)
            if unloaded.unloaded:
                report.actions_taken.append(f"unloaded {len(unloaded.unloaded)} file(s) tagged {phase}")
        else:
            unloaded = ctx.enforce_soft_limit(Tier.EXECUTION)
            if unloaded.unloaded:
                report.actions_taken.append(f"trimmed {len(unloaded.unloaded)} file(s) to soft limit")
        report.tokens_freed += unloaded.tokens_freed
        return report

    def exit_phase(
        self,
        session: SessionState,
        phase: str,
        aggressive_unload: bool = False,
    ) -> PhaseTransitionReport:
        """Release a phase's context. The workflow position is not changed."""
        report = self._exit(session, phase, aggressive_unload)
        report.net_token_change = -report.tokens_freed
        self._record(session, report, "exit")
        return report

    def complete_phase(
        self,
        session: SessionState,
        phase: str,
        aggressive_unload: bool = False,
    ) -> PhaseTransitionReport:
        """Mark `phase` completed and release its context. current_phase stays."""
        current = session.workflow.current_phase
        workflow, check = session.phases.complete(session.workflow, phase)
        if not check.valid:
            return PhaseTransitionReport(
                success=False, previous_phase=current, new_phase=current,
                validation=check, error=_rejection_error(check),
                actions_taken=[f"rejected: {check.type}"],
            )

        session.workflow = workflow
        report = self._exit(session, phase, aggressive_unload)
        report.previous_phase = current
        report.new_phase = current
        report.validation = check
        report.actions_taken.insert(0, f"completed phase: {phase}")
        report.net_token_change = -report.tokens_freed
        self._record(session, report, "complete")
        session_metrics.inc("phase_completions_total")
        return report

    def optimize(self, session: SessionState) -> PhaseTransitionReport:
        """Above the optimize threshold, unload files not tagged to the current phase."""
        ctx = session.context
        current = session.workflow.current_phase
        report = PhaseTransitionReport(success=True, previous_phase=current, new_phase=current)
        if ctx.utilization_percent <= self._settings.OPTIMIZE_UTILIZATION_THRESHOLD:
            report.actions_taken.append("no optimization needed")
            return report

        unloaded = ctx.unload_outside_phase(None if current == NO_PHASE else current)
        report.tokens_freed = unloaded.tokens_freed
        report.net_token_change = -unloaded.tokens_freed
        report.actions_taken.append(f"unloaded {len(unloaded.unloaded)} off-phase file(s)")
        self._record(session, report, "optimize")
        return report

    def reset(self) -> None:
        self._history.clear()
