# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from ears_flow.core.errors import ErrorType, OrchestratorError

_STATUS_BY_TYPE: Dict[str, int] = {
    ErrorType.UNKNOWN_SKILL: 404,
    ErrorType.MISSING_FILES: 404,
    ErrorType.PERMISSION_DENIED: 403,
    ErrorType.CONTEXT_OVERFLOW: 409,
    ErrorType.SEQUENCE_VIOLATION: 422,
}


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id
        super().__init__(message)


class SessionNotFoundError(APIError):
    def __init__(self, session_id: str, trace_id: str = None):
        super().__init__(
            code="SESSION_NOT_FOUND",
            message=f"Session '{session_id}' not found",
            status_code=404,
            trace_id=trace_id,
        )


class InvalidProjectError(APIError):
    def __init__(self, path: str, trace_id: str = None):
        super().__init__(
            code="INVALID_PROJECT",
            message=f"Project root '{path}' is not a directory",
            status_code=400,
            details={"path": path},
            trace_id=trace_id,
        )


class PhaseRejectedError(APIError):
    def __init__(self, detail: str, report: Dict[str, Any], status_code: int = 422, trace_id: str = None):
        super().__init__(
            code="PHASE_REJECTED",
            message=detail,
            status_code=status_code,
            details=report,
            trace_id=trace_id,
        )


class OrchestratorAPIError(APIError):
    """Wraps an OrchestratorError with its structured report as details."""

    def __init__(self, error: OrchestratorError, trace_id: str = None):
        super().__init__(
            code=error.error_type.upper().replace("-", "_"),
            message=error.message,
            status_code=_STATUS_BY_TYPE.get(error.error_type, 422),
            details=error.to_report().model_dump(),
            trace_id=trace_id,
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError; the trace id falls back to the one TraceMiddleware minted."""
    trace_id = exc.trace_id or getattr(request.state, "trace_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": trace_id,
            "details": exc.details,
        },
    )


async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    """OrchestratorErrors escaping a handler render like any other APIError."""
    return await api_error_handler(request, OrchestratorAPIError(exc))
