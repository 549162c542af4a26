"""Consumer-side view of the session directory.

:class:`SessionWatcher` is what an interactive client uses to find work:
list pending sessions, load their questions, and get notified when a new
session appears.  Answers and rejections are written back through
:class:`~auq_sessions.store.SessionStore`.

Corrupted documents never break the consumer: they are logged and the
session is treated as absent.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from auq_sessions.config import SessionSettings
from auq_sessions.constants import ANSWERS_FILE
from auq_sessions.exceptions import AtomicOperationError, SessionCorruptedError
from auq_sessions.models import SessionEvent, SessionRequest, SessionStatus
from auq_sessions.paths import is_valid_session_id
from auq_sessions.store import SessionStore
from auq_sessions.watcher import FileWatcher

logger = logging.getLogger(__name__)

EventHandler = Callable[[SessionEvent], Union[Awaitable[Any], None]]

_UNREADABLE = (SessionCorruptedError, AtomicOperationError)


class SessionWatcher:
    """Discover pending sessions and publish new-session events."""

    def __init__(
        self,
        settings: SessionSettings,
        store: SessionStore | None = None,
        watcher: FileWatcher | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or SessionStore(settings)
        self._watcher = watcher or FileWatcher(debounce=settings.watch_debounce)
        self._handlers: dict[str, EventHandler] = {}
        self._queues: set[asyncio.Queue[SessionEvent]] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _pending_status(self, session_id: str) -> SessionStatus | None:
        if not is_valid_session_id(session_id):
            return None
        try:
            status = await self.store.get_session_status(session_id)
        except _UNREADABLE as exc:
            logger.warning("Skipping session %s: %s", session_id, exc)
            return None
        if status is None or not status.status.is_open:
            return None
        answers_path = self.store.base_dir / session_id / ANSWERS_FILE
        if await asyncio.to_thread(answers_path.exists):
            return None
        return status

    async def is_session_pending(self, session_id: str) -> bool:
        """True while the session is open and has no answers yet."""
        return await self._pending_status(session_id) is not None

    async def list_pending_sessions(self) -> list[str]:
        """Pending session ids, oldest first."""
        pending: list[tuple[Any, str]] = []
        for session_id in await self.store.list_session_ids():
            status = await self._pending_status(session_id)
            if status is not None:
                pending.append((status.created_at, session_id))
        pending.sort()
        return [session_id for _, session_id in pending]

    async def get_session_request(self, session_id: str) -> SessionRequest | None:
        try:
            return await self.store.get_session_request(session_id)
        except _UNREADABLE as exc:
            logger.warning("Could not read request for session %s: %s", session_id, exc)
            return None

    async def next_pending_session(self) -> tuple[str, SessionRequest] | None:
        """The oldest pending session whose request can be read, if any."""
        for session_id in await self.list_pending_sessions():
            request = await self.get_session_request(session_id)
            if request is not None:
                return session_id, request
        return None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_event_handler(self, name: str, handler: EventHandler) -> None:
        self._handlers[name] = handler

    def remove_event_handler(self, name: str) -> None:
        self._handlers.pop(name, None)

    async def start(self, callback: EventHandler | None = None) -> None:
        """Begin watching the session root for new sessions."""
        if callback is not None:
            self.add_event_handler("default", callback)
        if self._watcher.active():
            return
        await self.store.initialize()
        self._watcher.watch_for_sessions(self.store.base_dir, self._on_new_session)

    async def _on_new_session(self, session_id: str, session_path: Path) -> None:
        event = SessionEvent(
            session_id=session_id,
            session_path=session_path,
            request=await self.get_session_request(session_id),
        )
        logger.info("New session %s", session_id)

        for queue in list(self._queues):
            queue.put_nowait(event)

        for name, handler in list(self._handlers.items()):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session event handler %r failed", name)

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Yield new-session events until the consumer stops iterating.

        Starts the watch if it is not running yet.
        """
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._queues.add(queue)
        try:
            await self.start()
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    def stop(self) -> None:
        self._watcher.cleanup()
        self._handlers.clear()
