"""Admin endpoints — retention sweep.

Protected by the ``ADMIN_API_KEY`` environment variable.  Every request
must include an ``X-Admin-Key`` header whose value matches the configured
key.  Returns 401 if missing, 403 if wrong.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auq_sessions.orchestrator import SessionOrchestrator

from auq_server.dependencies import get_orchestrator, require_admin_key

router = APIRouter(prefix="/admin", tags=["admin"])


class CleanupResult(BaseModel):
    """Response body for cleanup operations."""
    removed: int


@router.post("/cleanup")
async def cleanup_sessions(
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    _admin: str = Depends(require_admin_key),
) -> CleanupResult:
    """Delete sessions idle for longer than the retention period."""
    removed = await orchestrator.cleanup_expired_sessions()
    return CleanupResult(removed=removed)
