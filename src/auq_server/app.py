"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that prepares the session directory and runs one
    retention sweep
  - CORS middleware
  - Global exception handlers (SDK exceptions -> 4xx/5xx)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``auq-server`` console-script entry point.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auq_sessions.config import SessionSettings
from auq_sessions.config import load_settings as load_session_settings
from auq_sessions.consumer import SessionWatcher
from auq_sessions.orchestrator import SessionOrchestrator
from auq_sessions.store import SessionStore

from auq_server.config import ServerSettings, load_settings
from auq_server.errors import register_exception_handlers
from auq_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lifespan — runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup.

    Startup:
      1. Build ``SessionStore``, ``SessionOrchestrator`` and the consumer view
      2. Create the session directory if needed
      3. Remove sessions past the retention period
      4. Stash the components on ``app.state`` for dependency injection
    """
    session_settings: SessionSettings = app.state.session_settings

    store = SessionStore(session_settings)
    orchestrator = SessionOrchestrator(store, session_settings)
    await orchestrator.ensure_initialized()
    logger.info("Session directory ready: %s", store.base_dir)

    removed = await orchestrator.cleanup_expired_sessions()
    if removed:
        logger.info("Startup cleanup removed %d expired session(s)", removed)

    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.session_watcher = SessionWatcher(session_settings, store=store)

    yield

    logger.info("Server shutting down")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(
    settings: ServerSettings | None = None,
    session_settings: SessionSettings | None = None,
) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()
    if session_settings is None:
        session_settings = load_session_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="AUQ Session Server",
        description="Ask a human structured questions from an agent over HTTP",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler and dependencies can read them
    app.state.settings = settings
    app.state.session_settings = session_settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    register_exception_handlers(app)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness probe — verifies the session directory is writable."""
        base_dir = session_settings.base_dir
        if base_dir.is_dir() and os.access(base_dir, os.W_OK):
            return {"status": "ok"}
        logger.error("Health check failed: %s is not a writable directory", base_dir)
        return {"status": "error", "detail": "Session directory is not writable"}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn auq_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``auq-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "auq_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
