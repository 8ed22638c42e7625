# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Session State — Everything one conversational session owns.

A session is created against a project root: its skills are discovered from
<root>/<AI_DIR>, every skill is charged its discovery cost, and the project
identity is loaded (or created) so memory logs stay project-scoped.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.errors import OrchestratorError
from ears_flow.core.logging import SessionLogger, session_logger
from ears_flow.kernel.isolation import ProjectIsolationManager
from ears_flow.kernel.skill_loader import discover_skills
from ears_flow.kernel.skill_registry import Skill, SkillRegistry
from ears_flow.memory.context_manager import ContextManager
from ears_flow.memory.fsm import PhaseTransitionSystem, WorkflowState
from ears_flow.memory.phase_context import PhaseContextManager


@dataclass
class SessionState:
    session_id: str
    root: Path
    settings: EarsSettings
    registry: SkillRegistry
    context: ContextManager
    phases: PhaseTransitionSystem
    phase_context: PhaseContextManager
    workflow: WorkflowState
    project: Optional[ProjectIsolationManager] = None
    discovery_errors: List[OrchestratorError] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        project_root: str | Path,
        settings: Optional[EarsSettings] = None,
        *,
        skills: Optional[Iterable[Skill]] = None,
        isolate: bool = True,
        workflow_config: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> SessionState:
        """
        Build a session for a project.

        Pass `skills` to skip discovery (the installation is then not read);
        `isolate=False` skips the project identity and memory stamping.
        """
        cfg = settings or default_settings
        root = Path(project_root).resolve()

        errors: List[OrchestratorError] = []
        if skills is None:
            discovery = discover_skills(root, cfg)
            skills, errors = discovery.skills, discovery.errors

        registry = SkillRegistry()
        for skill in skills:
            registry.register(skill)

        context = ContextManager(root, cfg)
        for skill in registry:
            context.register_discovery_metadata(skill)

        project = None
        if isolate:
            project = ProjectIsolationManager(root, cfg)
            project.initialize()

        phases = PhaseTransitionSystem(workflow_config, registry.utility_names())
        session = cls(
            session_id=session_id or str(uuid.uuid4()),
            root=root,
            settings=cfg,
            registry=registry,
            context=context,
            phases=phases,
            phase_context=PhaseContextManager(cfg),
            workflow=phases.initial_state(),
            project=project,
            discovery_errors=errors,
        )
        session.log.info(
            "Session created for %s (%d skills, %d discovery error(s))",
            root, len(registry), len(errors),
        )
        return session

    @property
    def log(self) -> SessionLogger:
        return session_logger("ears.session", self.session_id, self.project_id)

    @property
    def project_id(self) -> Optional[str]:
        return self.project.project_id if self.project and self.project.record else None

    def reset(self) -> None:
        """Back to a fresh session over the same skills."""
        self.log.info("Session reset")
        self.context.reset()
        for skill in self.registry:
            self.context.register_discovery_metadata(skill)
        self.workflow = self.phases.reset()
        self.phase_context.reset()

    def summary(self) -> Dict[str, Any]:
        status = self.phases.status(self.workflow)
        return {
            "session_id": self.session_id,
            "project_root": str(self.root),
            "project_id": self.project_id,
            "skills": self.registry.names(),
            "discovery_errors": [e.to_report().model_dump() for e in self.discovery_errors],
            "current_phase": status.current_phase,
            "completed_phases": status.completed_phases,
            "active_skills": self.context.active_skills,
            "tokens": self.context.total_tokens,
            "utilization_percent": self.context.utilization_percent,
            "created_at": self.created_at,
        }
