"""Route registration — mounts all routers under ``/api/v1``."""

from fastapi import FastAPI

from auq_server.routes.admin import router as admin_router
from auq_server.routes.ask import router as ask_router
from auq_server.routes.sessions import router as sessions_router

API_PREFIX = "/api/v1"


def register_routes(app: FastAPI) -> None:
    """Include all sub-routers under the versioned API prefix."""
    app.include_router(ask_router, prefix=API_PREFIX)
    app.include_router(sessions_router, prefix=API_PREFIX)
    app.include_router(admin_router, prefix=API_PREFIX)
