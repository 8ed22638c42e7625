# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from ears_flow.api.errors import SessionNotFoundError
from ears_flow.core.context import get_orchestrator_context
from ears_flow.core.session import SessionState


def get_session(session_id: str) -> SessionState:
    """Resolve the {session_id} path parameter to a live session."""
    session = get_orchestrator_context().get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session
