# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
EARS-Flow Application Entry Point.

FastAPI app with lifespan, middleware and the session/installation routers.

Entry point: ears-flow (or uvicorn ears_flow.main:app --port 8200)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ears_flow.core.config import settings
from ears_flow.core.context import init_orchestrator_context
from ears_flow.core.errors import OrchestratorError
from ears_flow.core.logging import setup_logging
from ears_flow.api.errors import APIError, api_error_handler, orchestrator_error_handler
from ears_flow.api.middleware import TraceMiddleware
from ears_flow.api.observability import router as observability_router
from ears_flow.api.sessions import installation_router, router as sessions_router

logger = logging.getLogger("ears.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Set up logging and the orchestrator context."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    init_orchestrator_context(settings)
    logger.info("[EARS-Flow] Orchestrator ready (env=%s)", settings.EARS_ENV)
    yield
    logger.info("[EARS-Flow] Shutdown complete")


app = FastAPI(
    title="EARS-Flow",
    description="Skill orchestrator for the EARS development workflow",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(OrchestratorError, orchestrator_error_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(sessions_router, prefix="/api")
app.include_router(installation_router, prefix="/api")
app.include_router(observability_router)


def serve() -> None:
    """Run the API with uvicorn on the configured HOST/PORT."""
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    serve()
