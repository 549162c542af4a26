"""FastAPI dependency injection — SDK components and admin auth.

The store, orchestrator and consumer view are built once in the lifespan
handler and stashed on ``app.state``; these helpers hand them to routes.
"""

import hmac

from fastapi import Header, HTTPException, Request

from auq_sessions.consumer import SessionWatcher
from auq_sessions.orchestrator import SessionOrchestrator
from auq_sessions.store import SessionStore


# ------------------------------------------------------------------
# SDK components — stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_orchestrator(request: Request) -> SessionOrchestrator:
    """Return the orchestrator singleton from ``app.state``."""
    return request.app.state.orchestrator


def get_store(request: Request) -> SessionStore:
    """Return the SessionStore singleton from ``app.state``."""
    return request.app.state.store


def get_session_watcher(request: Request) -> SessionWatcher:
    return request.app.state.session_watcher


# ------------------------------------------------------------------
# Admin auth
# ------------------------------------------------------------------

async def require_admin_key(
    request: Request,
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> str:
    """Validate the ``X-Admin-Key`` header against ``ADMIN_API_KEY``.

    Raises 403 if no key is configured, 401 if the header is missing,
    403 if it does not match.
    """
    expected: str | None = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=403,
            detail="Admin endpoints are disabled (ADMIN_API_KEY not configured)",
        )
    if not x_admin_key:
        raise HTTPException(status_code=401, detail="X-Admin-Key header is required")
    # Constant-time comparison to prevent timing side-channels.
    if not hmac.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=403, detail="Invalid admin key")
    return x_admin_key
