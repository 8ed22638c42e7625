# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Phase Transition System — Config-driven workflow sequencing.

Reads the canonical phase sequence from a dict or YAML file:

    initial_state: none
    sequence: [spec-forge, planning, work, review]
    display_names: {spec-forge: SPEC-FORGE, ...}
    descriptions:  {spec-forge: "...", ...}

Entering a canonical phase requires every earlier phase to be completed.
Utility pseudo-phases (skills that bypass sequencing) are always allowed.
The engine is stateless: every operation takes a WorkflowState and returns
a new one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("ears.fsm")

NO_PHASE = "none"

DEFAULT_WORKFLOW: Dict[str, Any] = {
    "initial_state": NO_PHASE,
    "sequence": ["spec-forge", "planning", "work", "review"],
    "display_names": {
        "spec-forge": "SPEC-FORGE",
        "planning": "PLANNING",
        "work": "WORK",
        "review": "REVIEW",
    },
    "descriptions": {
        "spec-forge": "Create EARS-compliant requirements, design with correctness properties, and task planning",
        "planning": "Implementation planning, research, and architectural decisions",
        "work": "TDD implementation in isolated git worktree environments",
        "review": "Multi-perspective code audit and quality assurance",
    },
}


class ValidationType:
    UTILITY = "utility"
    SEQUENCE_START = "sequence-start"
    SEQUENCE_CONTINUATION = "sequence-continuation"
    SEQUENCE_VIOLATION = "sequence-violation"
    PHASE_COMPLETION = "phase-completion"
    UNKNOWN_PHASE = "unknown-phase"


class PhaseTransition(BaseModel):
    from_phase: str
    to_phase: str
    kind: str = "enter"
    at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    model_config = {"frozen": True}


class WorkflowState(BaseModel):
    """Where the session is in the workflow. Replaced, never mutated."""

    current_phase: str = NO_PHASE
    completed_phases: Tuple[str, ...] = ()
    transition_log: Tuple[PhaseTransition, ...] = ()

    model_config = {"frozen": True}

    @property
    def started(self) -> bool:
        return self.current_phase != NO_PHASE or bool(self.completed_phases)


class PhaseValidation(BaseModel):
    valid: bool
    phase: str
    type: str
    missing_phases: List[str] = Field(default_factory=list)
    suggested_next: Optional[str] = None
    message: Optional[str] = None


class WorkflowStatus(BaseModel):
    current_phase: str
    completed_phases: List[str]
    progress: str
    progress_percent: int
    is_complete: bool
    next_phase: Optional[str] = None
    progress_indicator: Optional[str] = None


class PhaseTransitionSystem:
    """
    Rules engine over WorkflowState.

    Usage:
        phases = PhaseTransitionSystem(utility_phases=registry.utility_names())
        wf = phases.initial_state()
        wf, check = phases.transition(wf, "spec-forge")
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        utility_phases: Iterable[str] = (),
    ) -> None:
        config = config or DEFAULT_WORKFLOW
        self._sequence: List[str] = list(config.get("sequence", []))
        if not self._sequence:
            raise ValueError("Workflow config needs a non-empty 'sequence'")
        if len(set(self._sequence)) != len(self._sequence):
            raise ValueError(f"Duplicate phases in sequence: {self._sequence}")
        self._initial: str = config.get("initial_state", NO_PHASE)
        self._display: Dict[str, str] = {
            p: config.get("display_names", {}).get(p, p.upper()) for p in self._sequence
        }
        self._descriptions: Dict[str, str] = dict(config.get("descriptions", {}))
        self._utility = set(utility_phases) - set(self._sequence)

    @classmethod
    def from_yaml(cls, path: str | Path, utility_phases: Iterable[str] = ()) -> PhaseTransitionSystem:
        """Load workflow config from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
        return cls(config, utility_phases)

    # ── Introspection ───────────────────────────────────────────

    @property
    def sequence(self) -> List[str]:
        return list(self._sequence)

    @property
    def first_phase(self) -> str:
        return self._sequence[0]

    @property
    def utility_phases(self) -> List[str]:
        return sorted(self._utility)

    def add_utility_phases(self, names: Iterable[str]) -> None:
        self._utility.update(set(names) - set(self._sequence))

    def is_canonical(self, phase: str) -> bool:
        return phase in self._sequence

    def is_utility(self, phase: str) -> bool:
        return phase in self._utility

    def display_name(self, phase: str) -> str:
        return self._display.get(phase, phase.upper())

    def initial_state(self) -> WorkflowState:
        return WorkflowState(current_phase=self._initial)

    def reset(self) -> WorkflowState:
        logger.info("Workflow reset")
        return self.initial_state()

    # ── Validation ──────────────────────────────────────────────

    def _missing_before(self, workflow: WorkflowState, phase: str) -> List[str]:
        idx = self._sequence.index(phase)
        done = set(workflow.completed_phases)
        return [p for p in self._sequence[:idx] if p not in done]

    def validate_transition(self, workflow: WorkflowState, phase: str) -> PhaseValidation:
        if self.is_utility(phase):
            return PhaseValidation(valid=True, phase=phase, type=ValidationType.UTILITY)

        if not self.is_canonical(phase):
            return PhaseValidation(
                valid=False, phase=phase, type=ValidationType.UNKNOWN_PHASE,
                message=(
                    f"Unknown phase '{phase}'. "
                    f"Known phases: {', '.join(self._sequence + self.utility_phases)}"
                ),
            )

        if phase == self.first_phase:
            return PhaseValidation(
                valid=True, phase=phase, type=ValidationType.SEQUENCE_START,
                message=self._activation_message(phase),
            )

        missing = self._missing_before(workflow, phase)
        if missing:
            return PhaseValidation(
                valid=False, phase=phase, type=ValidationType.SEQUENCE_VIOLATION,
                missing_phases=missing,
                suggested_next=missing[0],
                message=self._guidance_message(phase, missing),
            )

        return PhaseValidation(
            valid=True, phase=phase, type=ValidationType.SEQUENCE_CONTINUATION,
            message=self._activation_message(phase),
        )

    def can_enter(self, workflow: WorkflowState, phase: str) -> bool:
        return self.validate_transition(workflow, phase).valid

    # ── Transitions ─────────────────────────────────────────────

    def transition(self, workflow: WorkflowState, phase: str) -> Tuple[WorkflowState, PhaseValidation]:
        """Enter a phase. On rejection the workflow is returned unchanged."""
        check = self.validate_transition(workflow, phase)
        if not check.valid:
            logger.info("Transition to %s rejected (%s)", phase, check.type)
            return workflow, check

        record = PhaseTransition(from_phase=workflow.current_phase, to_phase=phase)
        new = workflow.model_copy(update={
            "current_phase": phase,
            "transition_log": workflow.transition_log + (record,),
        })
        logger.info("Phase transition: %s -> %s", workflow.current_phase, phase)
        return new, check

    def complete(self, workflow: WorkflowState, phase: str) -> Tuple[WorkflowState, PhaseValidation]:
        """
        Mark a phase completed. Idempotent; never moves current_phase.

        Completing a phase whose predecessors are incomplete is rejected, so
        completed_phases is always a prefix of the sequence.
        """
        if self.is_utility(phase):
            return workflow, PhaseValidation(valid=True, phase=phase, type=ValidationType.UTILITY)

        if not self.is_canonical(phase):
            return workflow, self.validate_transition(workflow, phase)

        missing = self._missing_before(workflow, phase)
        if missing:
            return workflow, PhaseValidation(
                valid=False, phase=phase, type=ValidationType.SEQUENCE_VIOLATION,
                missing_phases=missing,
                suggested_next=missing[0],
                message=self._guidance_message(phase, missing),
            )

        check = PhaseValidation(
            valid=True, phase=phase, type=ValidationType.PHASE_COMPLETION,
            suggested_next=self._next_after(phase),
            message=self._completion_message(phase),
        )
        if phase in workflow.completed_phases:
            return workflow, check

        done = set(workflow.completed_phases) | {phase}
        record = PhaseTransition(from_phase=workflow.current_phase, to_phase=phase, kind="complete")
        new = workflow.model_copy(update={
            "completed_phases": tuple(p for p in self._sequence if p in done),
            "transition_log": workflow.transition_log + (record,),
        })
        logger.info("Phase completed: %s (%d/%d)", phase, len(new.completed_phases), len(self._sequence))
        return new, check

    # ── Status ──────────────────────────────────────────────────

    def _next_after(self, phase: str) -> Optional[str]:
        idx = self._sequence.index(phase)
        return self._sequence[idx + 1] if idx + 1 < len(self._sequence) else None

    def next_phase(self, workflow: WorkflowState) -> Optional[str]:
        """First canonical phase not yet completed."""
        for phase in self._sequence:
            if phase not in workflow.completed_phases:
                return phase
        return None

    def progress_indicator(self, phase: str) -> str:
        idx = self._sequence.index(phase)
        marks = []
        for i, p in enumerate(self._sequence):
            mark = "[x]" if i < idx else "[>]" if i == idx else "[ ]"
            marks.append(f"{mark} {self.display_name(p)}")
        return " -> ".join(marks)

    def status(self, workflow: WorkflowState) -> WorkflowStatus:
        done = len(workflow.completed_phases)
        total = len(self._sequence)
        return WorkflowStatus(
            current_phase=workflow.current_phase,
            completed_phases=list(workflow.completed_phases),
            progress=f"{done}/{total}",
            progress_percent=round(done / total * 100),
            is_complete=done == total,
            next_phase=self.next_phase(workflow),
            progress_indicator=(
                self.progress_indicator(workflow.current_phase)
                if self.is_canonical(workflow.current_phase) else None
            ),
        )

    # ── Messages ────────────────────────────────────────────────

    def _activation_message(self, phase: str) -> str:
        lines = [f"{self.display_name(phase)} phase activated"]
        if phase in self._descriptions:
            lines.append(self._descriptions[phase])
        lines.append(f"Workflow progress: {self.progress_indicator(phase)}")
        return "\n\n".join(lines)

    def _guidance_message(self, phase: str, missing: List[str]) -> str:
        nxt = missing[0]
        lines = [
            "Phase Sequence Guidance",
            "",
            f"You requested {self.display_name(phase)}, but phases must be completed in sequence.",
            f"Required sequence: {' -> '.join(self.display_name(p) for p in self._sequence)}",
            f"Missing prerequisites: {' -> '.join(self.display_name(p) for p in missing)}",
            f"Recommended next step: start with {self.display_name(nxt)}",
        ]
        if nxt in self._descriptions:
            lines.append(self._descriptions[nxt])
        return "\n".join(lines)

    def _completion_message(self, phase: str) -> str:
        nxt = self._next_after(phase)
        if nxt is None:
            return f"{self.display_name(phase)} phase complete. Workflow finished."
        return (
            f"{self.display_name(phase)} phase complete.\n"
            f"Next: {self.display_name(nxt)} ({self._descriptions.get(nxt, nxt)})\n"
            f"Use \"{nxt}\" to continue the workflow."
        )
