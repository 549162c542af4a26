"""Session document models — the JSON files shared between producer and consumer.

A session directory holds up to three documents:

  - SessionRequest  (request.json)  written once by the producer
  - SessionStatus   (status.json)   rewritten on every lifecycle transition
  - SessionAnswers  (answers.json)  written once by the consumer

The remaining models are return values of SDK calls and never hit disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field

from auq_sessions.models.enums import SessionState
from auq_sessions.models.question import CamelModel, Question


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRequest(CamelModel):
    """The question set for one session.

    ``status`` mirrors the state at creation time only; the live state is
    in :class:`SessionStatus`.
    """

    session_id: str
    questions: List[Question]
    status: SessionState = SessionState.PENDING
    timestamp: datetime
    call_id: Optional[str] = None


class SessionStatus(CamelModel):
    """Mutable lifecycle record, polled by the producer."""

    session_id: str
    status: SessionState
    created_at: datetime
    last_modified: datetime
    total_questions: int
    current_question_index: Optional[int] = None
    call_id: Optional[str] = None

    @property
    def last_activity(self) -> datetime:
        """Most recent of creation and last modification."""
        return max(self.created_at, self.last_modified)


class UserAnswer(CamelModel):
    """One answer entry.

    Carries a single ``selected_option``, a ``selected_options`` list
    (multi-select) or free-form ``custom_text``.  Custom text may sit next to
    selected options in multi-select mode, and custom text starting with a
    special-request sentinel asks the producer for something instead of
    answering.
    """

    question_index: int
    selected_option: Optional[str] = None
    selected_options: Optional[List[str]] = None
    custom_text: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class SessionAnswers(CamelModel):
    """The consumer's submission for a session."""

    session_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    call_id: Optional[str] = None
    answers: List[UserAnswer]


class SessionResult(CamelModel):
    """What ``start_session`` hands back to the producer."""

    session_id: str
    formatted_response: str


@dataclass
class SessionValidation:
    """Outcome of a consistency check on one session directory."""

    is_valid: bool
    issues: list[str] = field(default_factory=list)


@dataclass
class SessionEvent:
    """Notification that a new session directory appeared."""

    session_id: str
    session_path: Path
    timestamp: datetime = field(default_factory=utc_now)
    type: Literal["session-created"] = "session-created"
    request: SessionRequest | None = None
