"""Session store: the lifecycle state machine over session directories.

Each session lives in ``<base_dir>/<session-id>/`` with up to three JSON
documents (request, status, answers).  All reads and writes go through
:class:`AtomicFileStore`; nothing is cached in memory, so two processes
sharing a base directory always see each other's writes.

Errors:
  - malformed session ids never reach the filesystem
  - a document that exists but does not parse raises SessionCorruptedError
  - illegal lifecycle moves raise SessionStateError
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Type, TypeVar

from pydantic import ValidationError

from auq_sessions.atomic import AtomicFileStore
from auq_sessions.config import SessionSettings
from auq_sessions.constants import ANSWERS_FILE, REQUEST_FILE, SESSION_FILES, STATUS_FILE
from auq_sessions.exceptions import (
    AtomicOperationError,
    AUQError,
    InvalidSessionIdError,
    SessionCorruptedError,
    SessionNotFoundError,
    SessionStateError,
    SessionStoreError,
    SessionValidationError,
)
from auq_sessions.models import (
    CamelModel,
    Question,
    SessionAnswers,
    SessionRequest,
    SessionState,
    SessionStatus,
    SessionValidation,
    can_transition,
    utc_now,
)
from auq_sessions.paths import is_valid_session_id

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", bound=CamelModel)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SessionStore:
    """Create, read, transition and remove sessions under one base directory."""

    def __init__(
        self, settings: SessionSettings, files: AtomicFileStore | None = None,
    ) -> None:
        self.settings = settings
        self.base_dir = Path(settings.base_dir)
        self.files = files or AtomicFileStore.from_settings(settings)

    # ------------------------------------------------------------------
    # Paths and documents
    # ------------------------------------------------------------------

    def session_path(self, session_id: str) -> Path:
        """Directory for ``session_id``; raises on malformed ids."""
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError(session_id)
        return self.base_dir / session_id

    async def _read_document(
        self, session_id: str, filename: str, model: Type[DocT],
    ) -> DocT | None:
        if not is_valid_session_id(session_id):
            return None
        text = await self.files.read(self.base_dir / session_id / filename)
        if text is None:
            return None
        try:
            return model.model_validate_json(text)
        except ValidationError as exc:
            reason = exc.errors()[0]["msg"] if exc.errors() else str(exc)
            raise SessionCorruptedError(
                f"Failed to parse JSON from session file {filename} "
                f"for session {session_id}: {reason}"
            ) from exc

    async def _write_document(
        self, session_id: str, filename: str, document: CamelModel,
    ) -> None:
        await self.files.write(self.base_dir / session_id / filename, document.to_json())

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the base directory and check that it is writable."""
        try:
            await asyncio.to_thread(
                self.base_dir.mkdir, mode=self.settings.dir_mode, parents=True, exist_ok=True,
            )
        except OSError as exc:
            raise SessionStoreError(
                f"Failed to create session directory: {self.base_dir}"
            ) from exc

        if not self.base_dir.is_dir():
            raise SessionStoreError(f"Session path is not a directory: {self.base_dir}")
        if not os.access(self.base_dir, os.W_OK):
            raise SessionStoreError(f"Session directory is not writable: {self.base_dir}")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_session(self, questions: Iterable[Question | dict[str, Any]]) -> str:
        """Write request and status for a new pending session; return its id."""
        parsed = [
            q if isinstance(q, Question) else Question.model_validate(q) for q in questions
        ]
        if not parsed:
            raise ValueError("At least one question is required")

        session_id = str(uuid.uuid4())
        session_dir = self.base_dir / session_id
        try:
            await asyncio.to_thread(
                session_dir.mkdir, mode=self.settings.dir_mode, parents=True,
            )
        except OSError as exc:
            raise SessionStoreError(
                f"Failed to create session directory: {session_dir}"
            ) from exc

        now = utc_now()
        request = SessionRequest(
            session_id=session_id,
            questions=parsed,
            status=SessionState.PENDING,
            timestamp=now,
        )
        status = SessionStatus(
            session_id=session_id,
            status=SessionState.PENDING,
            created_at=now,
            last_modified=now,
            total_questions=len(parsed),
        )
        await asyncio.gather(
            self._write_document(session_id, REQUEST_FILE, request),
            self._write_document(session_id, STATUS_FILE, status),
        )
        logger.info("Created session %s with %d question(s)", session_id, len(parsed))
        return session_id

    async def attach_call_id(self, session_id: str, call_id: str) -> None:
        """Record the producer's correlation id on status and request.

        The request is written last; consumers copy the id from it.
        """
        current = await self.get_session_status(session_id)
        if current is None:
            raise SessionNotFoundError(f"Session status not found: {session_id}")
        await self.update_session_status(session_id, current.status, call_id=call_id)

        request = await self.get_session_request(session_id)
        if request is None:
            raise SessionNotFoundError(f"Session request not found: {session_id}")
        await self._write_document(
            session_id, REQUEST_FILE, request.model_copy(update={"call_id": call_id}),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_session_request(self, session_id: str) -> SessionRequest | None:
        return await self._read_document(session_id, REQUEST_FILE, SessionRequest)

    async def get_session_status(self, session_id: str) -> SessionStatus | None:
        return await self._read_document(session_id, STATUS_FILE, SessionStatus)

    async def get_session_answers(self, session_id: str) -> SessionAnswers | None:
        return await self._read_document(session_id, ANSWERS_FILE, SessionAnswers)

    async def session_exists(self, session_id: str) -> bool:
        if not is_valid_session_id(session_id):
            return False
        return await asyncio.to_thread((self.base_dir / session_id).is_dir)

    async def list_session_ids(self) -> list[str]:
        """Sorted ids of every session directory; empty if the root is missing."""

        def _scan() -> list[str]:
            try:
                entries = list(self.base_dir.iterdir())
            except FileNotFoundError:
                return []
            return sorted(
                e.name for e in entries if e.is_dir() and is_valid_session_id(e.name)
            )

        return await asyncio.to_thread(_scan)

    async def get_session_count(self) -> int:
        return len(await self.list_session_ids())

    async def is_session_limit_reached(self) -> bool:
        return await self.get_session_count() >= self.settings.max_sessions

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def update_session_status(
        self, session_id: str, state: SessionState | str, **fields: Any,
    ) -> SessionStatus:
        """Move a session to ``state``, merging ``fields`` into the status.

        ``fields`` use attribute names (``current_question_index=2``).  The
        status document must already exist; this never creates a session.
        """
        if not is_valid_session_id(session_id):
            raise SessionNotFoundError(f"Session not found: {session_id}")

        unknown = set(fields) - set(SessionStatus.model_fields)
        if unknown:
            raise ValueError(f"Unknown status field(s): {', '.join(sorted(unknown))}")

        current = await self.get_session_status(session_id)
        if current is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")

        target = SessionState(state)
        if not can_transition(current.status, target):
            raise SessionStateError(
                f"Cannot move session {session_id} from "
                f"{current.status.value} to {target.value}"
            )

        updated = current.model_copy(
            update={**fields, "status": target, "last_modified": utc_now()},
        )
        await self._write_document(session_id, STATUS_FILE, updated)
        logger.debug("Session %s: %s -> %s", session_id, current.status.value, target.value)
        return updated

    async def save_session_answers(self, session_id: str, answers: SessionAnswers) -> None:
        """Write the consumer's answers and mark the session completed.

        Answers for a session that has already finished are refused; the
        first submission is final.
        """
        if not await self.session_exists(session_id):
            raise SessionNotFoundError(f"Session not found: {session_id}")
        if answers.session_id != session_id:
            raise SessionValidationError(
                f"Answers session ID {answers.session_id} does not match session {session_id}"
            )

        current = await self.get_session_status(session_id)
        if current is None:
            raise SessionNotFoundError(f"Session status not found: {session_id}")
        if current.status.is_terminal:
            raise SessionStateError(
                f"Session {session_id} is already {current.status.value}"
            )

        await self._write_document(session_id, ANSWERS_FILE, answers)
        await self.update_session_status(session_id, SessionState.COMPLETED)
        logger.info("Saved %d answer(s) for session %s", len(answers.answers), session_id)

    async def reject_session(self, session_id: str) -> None:
        await self.update_session_status(session_id, SessionState.REJECTED)
        logger.info("Session %s rejected by user", session_id)

    async def report_progress(self, session_id: str, current_question_index: int) -> None:
        """Mark the session in-progress at the question the user is viewing."""
        await self.update_session_status(
            session_id,
            SessionState.IN_PROGRESS,
            current_question_index=current_question_index,
        )

    # ------------------------------------------------------------------
    # Delete / retention
    # ------------------------------------------------------------------

    async def delete_session(self, session_id: str) -> None:
        """Remove a session's documents and directory.  Missing pieces are fine."""
        session_dir = self.session_path(session_id)

        for name in SESSION_FILES:
            try:
                await self.files.delete(session_dir / name)
            except AtomicOperationError as exc:
                logger.warning("Could not delete %s for session %s: %s", name, session_id, exc)

        try:
            await asyncio.to_thread(shutil.rmtree, session_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise SessionStoreError(
                f"Failed to remove session directory: {session_dir}"
            ) from exc

    async def _last_activity(self, session_id: str) -> datetime:
        # Stat first: reading the status creates and removes a lock file,
        # which bumps the directory mtime.
        stat = await asyncio.to_thread((self.base_dir / session_id).stat)
        try:
            status = await self.get_session_status(session_id)
        except (SessionCorruptedError, AtomicOperationError) as exc:
            logger.debug("Falling back to mtime for session %s: %s", session_id, exc)
            status = None

        if status is not None:
            return _as_utc(status.last_activity)
        return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

    async def cleanup_expired_sessions(self) -> int:
        """Delete sessions idle for longer than the retention period.

        Returns the number of sessions removed.  A retention period of zero
        or less disables cleanup.
        """
        retention = self.settings.retention_period
        if retention <= 0:
            return 0

        cutoff = utc_now() - timedelta(seconds=retention)
        removed = 0
        for session_id in await self.list_session_ids():
            try:
                if await self._last_activity(session_id) < cutoff:
                    await self.delete_session(session_id)
                    removed += 1
            except (AUQError, OSError) as exc:
                logger.warning("Failed to clean up session %s: %s", session_id, exc)

        if removed:
            logger.info("Removed %d expired session(s) from %s", removed, self.base_dir)
        return removed

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_session(self, session_id: str) -> SessionValidation:
        """Check that a session's documents exist and agree with each other."""
        if not is_valid_session_id(session_id):
            return SessionValidation(False, [f"Invalid session ID format: {session_id}"])

        session_dir = self.base_dir / session_id
        if not await asyncio.to_thread(session_dir.is_dir):
            return SessionValidation(False, ["Session directory does not exist"])

        issues = [
            f"Required file missing: {name}"
            for name in (REQUEST_FILE, STATUS_FILE)
            if not (session_dir / name).exists()
        ]
        if issues:
            return SessionValidation(False, issues)

        try:
            status = await self.get_session_status(session_id)
            request = await self.get_session_request(session_id)
        except (SessionCorruptedError, AtomicOperationError) as exc:
            return SessionValidation(
                False, [f"Could not read session status or request: {exc}"],
            )

        if status is not None and status.session_id != session_id:
            issues.append("Session ID mismatch in status file")
        if request is not None and request.session_id != session_id:
            issues.append("Session ID mismatch in request file")
        if (
            status is not None
            and request is not None
            and status.total_questions != len(request.questions)
        ):
            issues.append("Question count mismatch between status and request")

        try:
            answers = await self.get_session_answers(session_id)
        except (SessionCorruptedError, AtomicOperationError) as exc:
            issues.append(f"Could not read session answers: {exc}")
        else:
            if answers is not None and answers.session_id != session_id:
                issues.append("Session ID mismatch in answers file")

        return SessionValidation(not issues, issues)
