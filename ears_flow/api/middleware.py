# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
API Middleware — Trace ID propagation and request timing.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("ears.api")

TRACE_HEADER = "X-Trace-Id"
_SESSION_PATH = re.compile(r"^/api/sessions/([^/]+)")


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Trace-Id or mints one, echoes it on the response
    and logs one line per request with the session it addressed.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(TRACE_HEADER) or uuid.uuid4().hex
        request.state.trace_id = trace_id

        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[TRACE_HEADER] = trace_id

        extra = {"trace_id": trace_id}
        m = _SESSION_PATH.match(request.url.path)
        if m:
            extra["session_id"] = m.group(1)
        logger.info(
            "%s %s -> %d in %.1fms",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra=extra,
        )
        return response
