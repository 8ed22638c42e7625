# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Orchestrator Context — Singleton that holds the live sessions and the router.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from ears_flow.core.config import EarsSettings, settings as default_settings
from ears_flow.core.session import SessionState
from ears_flow.routing.router import ActivationRouter

logger = logging.getLogger("ears.context")


class OrchestratorContext:
    """
    Holds all runtime references for the orchestrator.
    Created once at startup, used by all API handlers.
    """

    def __init__(self, settings: Optional[EarsSettings] = None) -> None:
        self.settings = settings or default_settings
        self.router = ActivationRouter(self.settings)
        self._sessions: Dict[str, SessionState] = {}

    # ── Sessions ────────────────────────────────────────────────

    def create_session(self, project_root: str | Path, *, isolate: bool = True) -> SessionState:
        session = SessionState.create(project_root, self.settings, isolate=isolate)
        self._sessions[session.session_id] = session
        return session

    def add_session(self, session: SessionState) -> SessionState:
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def close_session(self, session_id: str) -> bool:
        closed = self._sessions.pop(session_id, None) is not None
        if closed:
            logger.info("Session %s closed", session_id)
        return closed

    def list_sessions(self) -> List[dict]:
        return [
            {
                "session_id": s.session_id,
                "project_root": str(s.root),
                "current_phase": s.workflow.current_phase,
            }
            for s in self._sessions.values()
        ]

    def isolation_peers(self, session: SessionState) -> List:
        """Isolation managers of every other live session, for cross-project checks."""
        return [
            s.project for s in self._sessions.values()
            if s is not session and s.project is not None
        ]


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[OrchestratorContext] = None


def init_orchestrator_context(settings: Optional[EarsSettings] = None) -> OrchestratorContext:
    global _ctx
    _ctx = OrchestratorContext(settings)
    return _ctx


def get_orchestrator_context() -> OrchestratorContext:
    if _ctx is None:
        raise RuntimeError("OrchestratorContext not initialized. Call init_orchestrator_context() first.")
    return _ctx
