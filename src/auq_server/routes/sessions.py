"""Session inspection endpoints — list, get, validate, delete.

Read-only apart from ``DELETE``; answering and rejecting belong to the
terminal client.
"""

from typing import List

from fastapi import APIRouter, Depends

from auq_sessions.consumer import SessionWatcher
from auq_sessions.exceptions import SessionNotFoundError
from auq_sessions.models import CamelModel, SessionStatus
from auq_sessions.store import SessionStore

from auq_server.dependencies import get_session_watcher, get_store

router = APIRouter(tags=["sessions"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PendingSessions(CamelModel):
    session_ids: List[str]


class ValidationReport(CamelModel):
    is_valid: bool
    issues: List[str]


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/sessions")
async def list_pending_sessions(
    watcher: SessionWatcher = Depends(get_session_watcher),
) -> PendingSessions:
    """Ids of sessions still waiting for the user, oldest first."""
    return PendingSessions(session_ids=await watcher.list_pending_sessions())


@router.get("/sessions/{session_id}")
async def get_session_status(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> SessionStatus:
    """Current status document.  404 for unknown or malformed ids."""
    store.session_path(session_id)  # raises for malformed ids
    status = await store.get_session_status(session_id)
    if status is None:
        raise SessionNotFoundError(f"Session not found: {session_id}")
    return status


@router.get("/sessions/{session_id}/validation")
async def validate_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> ValidationReport:
    result = await store.validate_session(session_id)
    return ValidationReport(is_valid=result.is_valid, issues=result.issues)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> None:
    """Remove a session directory.  Returns 204, or 404 if it does not exist."""
    store.session_path(session_id)  # raises for malformed ids
    if not await store.session_exists(session_id):
        raise SessionNotFoundError(f"Session not found: {session_id}")
    await store.delete_session(session_id)
