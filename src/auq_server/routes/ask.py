"""Ask endpoint — the HTTP form of the ask-user-questions tool.

``POST /ask`` creates a session and holds the request open until the user
answers or rejects in the terminal client.  A rejection is a normal 200
response carrying the rejection text.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from auq_sessions.models import CamelModel, Question, SessionResult
from auq_sessions.orchestrator import SessionOrchestrator

from auq_server.dependencies import get_orchestrator

router = APIRouter(tags=["ask"])


class AskRequest(CamelModel):
    """Body for POST /ask."""
    questions: List[Question]
    call_id: Optional[str] = None


@router.post("/ask")
async def ask(
    body: AskRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
) -> SessionResult:
    """Ask the user the given questions and return the formatted answers.

    Returns 422 for payloads that break the question rules and 504 when
    the session times out.
    """
    return await orchestrator.ask(body.questions, call_id=body.call_id)
