# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Sessions API — Open a session on a project, route utterances, drive phases.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ears_flow.api.deps import get_session
from ears_flow.api.errors import (
    APIError,
    InvalidProjectError,
    PhaseRejectedError,
)
from ears_flow.core.context import get_orchestrator_context
from ears_flow.core.session import SessionState
from ears_flow.kernel.installation import validate_installation
from ears_flow.memory.phase_context import PhaseTransitionReport

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ── Request Models ──────────────────────────────────────────


class CreateSessionRequest(BaseModel):
    project_root: str
    isolate: bool = True


class AnalyzeRequest(BaseModel):
    text: str
    apply: bool = False


class PhaseRequest(BaseModel):
    preload_supporting: bool = False
    aggressive_unload: bool = False


def _phase_response(report: PhaseTransitionReport) -> dict:
    if report.success:
        return report.model_dump()
    if report.validation is not None and not report.validation.valid:
        raise PhaseRejectedError(report.validation.message or "Phase transition rejected", report.model_dump())
    message = report.error.message if report.error else "Phase transition failed"
    raise PhaseRejectedError(message, report.model_dump(), status_code=409)


# ── Endpoints ───────────────────────────────────────────────


@router.post("")
async def create_session(req: CreateSessionRequest):
    """Discover the project's skills and open a session on it."""
    if not Path(req.project_root).is_dir():
        raise InvalidProjectError(req.project_root)
    session = get_orchestrator_context().create_session(req.project_root, isolate=req.isolate)
    return session.summary()


@router.get("")
async def list_sessions():
    return get_orchestrator_context().list_sessions()


@router.get("/{session_id}")
async def get_session_summary(session: SessionState = Depends(get_session)):
    return session.summary()


@router.delete("/{session_id}")
async def close_session(session: SessionState = Depends(get_session)):
    get_orchestrator_context().close_session(session.session_id)
    return {"session_id": session.session_id, "closed": True}


@router.post("/{session_id}/reset")
async def reset_session(session: SessionState = Depends(get_session)):
    session.reset()
    return session.summary()


@router.post("/{session_id}/analyze")
async def analyze_input(req: AnalyzeRequest, session: SessionState = Depends(get_session)):
    """
    Classify an utterance; with apply=true also act on the decision.

    Dormant and invalid decisions are returned as-is with applied=false.
    """
    activation_router = get_orchestrator_context().router
    if req.apply:
        return activation_router.route(req.text, session).model_dump()
    decision = activation_router.analyze_input(req.text, session)
    return {"decision": decision.model_dump(), "applied": False}


@router.get("/{session_id}/triggers")
async def get_triggers(session: SessionState = Depends(get_session)):
    return get_orchestrator_context().router.get_all_triggers(session)


@router.get("/{session_id}/context")
async def get_context_status(session: SessionState = Depends(get_session)):
    ctx = session.context
    return {
        "status": ctx.get_context_status().model_dump(),
        "recommendations": ctx.get_optimization_recommendations().model_dump(),
    }


@router.post("/{session_id}/context/optimize")
async def optimize_context(session: SessionState = Depends(get_session)):
    return session.phase_context.optimize(session).model_dump()


@router.get("/{session_id}/workflow")
async def get_workflow(session: SessionState = Depends(get_session)):
    status = session.phases.status(session.workflow)
    return {
        "status": status.model_dump(),
        "history": [h.model_dump() for h in session.phase_context.history],
    }


@router.post("/{session_id}/phases/{phase}/enter")
async def enter_phase(
    phase: str,
    req: Optional[PhaseRequest] = None,
    session: SessionState = Depends(get_session),
):
    req = req or PhaseRequest()
    report = session.phase_context.enter_phase(
        session, phase,
        preload_supporting=req.preload_supporting,
        aggressive_unload=req.aggressive_unload,
    )
    return _phase_response(report)


@router.post("/{session_id}/phases/{phase}/complete")
async def complete_phase(
    phase: str,
    req: Optional[PhaseRequest] = None,
    session: SessionState = Depends(get_session),
):
    req = req or PhaseRequest()
    report = session.phase_context.complete_phase(
        session, phase, aggressive_unload=req.aggressive_unload,
    )
    return _phase_response(report)


@router.post("/{session_id}/skills/{name}/activate")
async def activate_skill(name: str, session: SessionState = Depends(get_session)):
    return asdict(session.context.activate_skill(name))


@router.post("/{session_id}/skills/{name}/deactivate")
async def deactivate_skill(name: str, session: SessionState = Depends(get_session)):
    return asdict(session.context.deactivate_skill(name))


@router.get("/{session_id}/isolation")
async def get_isolation(session: SessionState = Depends(get_session)):
    """Isolation checks for this session's project against every other open session."""
    if session.project is None:
        raise APIError(
            code="ISOLATION_DISABLED",
            message=f"Session '{session.session_id}' was opened without project isolation",
            status_code=409,
        )
    peers = get_orchestrator_context().isolation_peers(session)
    return session.project.validate(peers).model_dump()


# ── Installation ────────────────────────────────────────────

installation_router = APIRouter(tags=["installation"])


@installation_router.get("/installation")
async def check_installation(path: str):
    """Validate the installation under `path` without opening a session."""
    if not Path(path).is_dir():
        raise InvalidProjectError(path)
    return validate_installation(path, get_orchestrator_context().settings).model_dump()
