# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Observability API — Health check and metrics.
"""

from __future__ import annotations

from fastapi import APIRouter

from ears_flow.core.context import get_orchestrator_context
from ears_flow.core.metrics import session_metrics

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check():
    """Health check with live session count."""
    return {
        "status": "ok",
        "version": "0.1.0",
        "sessions": len(get_orchestrator_context().list_sessions()),
        "metrics": session_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current orchestrator metrics."""
    return session_metrics.snapshot()
