"""Producer-side orchestration of one question session.

``start_session`` is the whole round trip: create the session, poll until
the consumer answers or rejects (or the deadline passes), validate and
format the answers, and leave the status document in a terminal state.

Outcomes:
  - answered  -> status ``completed``, returns the formatted transcript
  - rejected  -> returns :data:`REJECTION_MESSAGE` (not an error)
  - deadline  -> status ``timed_out``, raises SessionTimeoutError
  - unusable answers or I/O failure while waiting -> status ``abandoned``,
    the error propagates
  - cancelled -> status ``abandoned``, CancelledError propagates

Status writes made while failing are best-effort so the original error
always reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable

from pydantic import ValidationError

from auq_sessions.config import SessionSettings
from auq_sessions.constants import ANSWERS_FILE, REJECTION_MESSAGE
from auq_sessions.exceptions import (
    AnswerValidationError,
    AUQError,
    QuestionValidationError,
    SessionCorruptedError,
    SessionNotFoundError,
    SessionTimeoutError,
)
from auq_sessions.formatter import format_user_response, validate_answers
from auq_sessions.models import (
    Question,
    SessionResult,
    SessionState,
    validate_questions,
)
from auq_sessions.store import SessionStore

logger = logging.getLogger(__name__)

_ANSWERED = "answered"
_REJECTED = "rejected"
_TIMED_OUT = "timed_out"


def parse_questions(questions: Iterable[Question | dict[str, Any]]) -> list[Question]:
    """Coerce raw question payloads into models.

    Shape errors are reported as :class:`QuestionValidationError` so callers
    see one error type for every bad payload.
    """
    parsed: list[Question] = []
    for number, raw in enumerate(questions, start=1):
        if isinstance(raw, Question):
            parsed.append(raw)
            continue
        try:
            parsed.append(Question.model_validate(raw))
        except ValidationError as exc:
            issues = [
                f"Question {number}: {'.'.join(str(p) for p in err['loc'])} {err['msg']}"
                for err in exc.errors()
            ]
            raise QuestionValidationError(issues) from exc
    return parsed


class SessionOrchestrator:
    """Runs sessions against a :class:`SessionStore`."""

    def __init__(self, store: SessionStore, settings: SessionSettings | None = None) -> None:
        self.store = store
        self.settings = settings or store.settings
        self._initialized = False

    async def ensure_initialized(self) -> None:
        if not self._initialized:
            await self.store.initialize()
            self._initialized = True

    async def cleanup_expired_sessions(self) -> int:
        await self.ensure_initialized()
        return await self.store.cleanup_expired_sessions()

    async def ask(
        self, questions: Iterable[Question | dict[str, Any]], call_id: str | None = None,
    ) -> SessionResult:
        """Validate a question payload and run a session for it."""
        await self.ensure_initialized()
        parsed = parse_questions(questions)
        issues = validate_questions(
            parsed,
            max_questions=self.settings.max_questions,
            max_options=self.settings.max_options,
        )
        if issues:
            raise QuestionValidationError(issues)
        return await self.start_session(parsed, call_id=call_id)

    # ------------------------------------------------------------------
    # Session round trip
    # ------------------------------------------------------------------

    async def start_session(
        self, questions: Iterable[Question | dict[str, Any]], call_id: str | None = None,
    ) -> SessionResult:
        session_id = await self.store.create_session(questions)
        if call_id:
            try:
                await self.store.attach_call_id(session_id, call_id)
            except (AUQError, OSError) as exc:
                logger.warning("Could not attach callId to session %s: %s", session_id, exc)

        try:
            outcome = await self._wait_for_outcome(session_id, call_id)
        except asyncio.CancelledError:
            logger.info("Session %s cancelled while waiting", session_id)
            await self._mark(session_id, SessionState.ABANDONED)
            raise
        except (AUQError, OSError) as exc:
            logger.warning("Session %s failed while waiting: %s", session_id, exc)
            await self._mark(session_id, SessionState.ABANDONED)
            raise

        if outcome == _REJECTED:
            logger.info("Session %s rejected", session_id)
            return SessionResult(session_id=session_id, formatted_response=REJECTION_MESSAGE)

        if outcome == _TIMED_OUT:
            logger.info("Session %s timed out", session_id)
            await self._mark(session_id, SessionState.TIMED_OUT)
            raise SessionTimeoutError(session_id)

        return await self._complete(session_id)

    async def _wait_for_outcome(self, session_id: str, call_id: str | None) -> str:
        budget = self.settings.watcher_timeout
        started = time.monotonic()

        while True:
            if await self._answers_ready(session_id, call_id):
                return _ANSWERED

            try:
                status = await self.store.get_session_status(session_id)
            except SessionCorruptedError as exc:
                logger.warning("Unreadable status for session %s: %s", session_id, exc)
                status = None
            if status is not None and status.status == SessionState.REJECTED:
                return _REJECTED

            if budget > 0 and time.monotonic() - started > budget:
                return _TIMED_OUT

            await asyncio.sleep(self.settings.poll_interval)

    async def _answers_ready(self, session_id: str, call_id: str | None) -> bool:
        answers_path = self.store.base_dir / session_id / ANSWERS_FILE
        if not await asyncio.to_thread(answers_path.exists):
            return False
        if not call_id:
            return True

        try:
            answers = await self.store.get_session_answers(session_id)
        except SessionCorruptedError:
            # Reported when the answers are loaded for completion.
            return True
        if answers is None:
            return False
        if answers.call_id and answers.call_id != call_id:
            logger.debug(
                "Ignoring answers for session %s with callId %s (expected %s)",
                session_id, answers.call_id, call_id,
            )
            return False
        return True

    async def _complete(self, session_id: str) -> SessionResult:
        try:
            answers = await self.store.get_session_answers(session_id)
            request = await self.store.get_session_request(session_id)
        except (AUQError, OSError):
            await self._mark(session_id, SessionState.ABANDONED)
            raise

        if answers is None:
            await self._mark(session_id, SessionState.ABANDONED)
            raise SessionNotFoundError(f"Session answers not found: {session_id}")
        if request is None:
            await self._mark(session_id, SessionState.ABANDONED)
            raise SessionNotFoundError(f"Session request not found: {session_id}")

        try:
            validate_answers(answers.answers, request.questions)
        except AnswerValidationError as exc:
            await self._mark(session_id, SessionState.ABANDONED)
            raise AnswerValidationError(f"Answer validation failed: {exc}") from exc

        formatted = format_user_response(answers.answers, request.questions)
        await self._mark(session_id, SessionState.COMPLETED)
        logger.info("Session %s completed", session_id)
        return SessionResult(session_id=session_id, formatted_response=formatted)

    async def _mark(self, session_id: str, state: SessionState) -> None:
        try:
            await self.store.update_session_status(session_id, state)
        except (AUQError, OSError) as exc:
            logger.warning(
                "Could not mark session %s as %s: %s", session_id, state.value, exc,
            )
