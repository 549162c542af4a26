"""Filesystem event watcher backed by watchdog.

Two uses:

  - ``wait_for_file(directory, name)`` resolves once a named file appears
    (created, or renamed into place by an atomic write).
  - ``watch_for_sessions(root, callback)`` reports each new session
    directory under ``root`` exactly once, after its request document
    exists.  Bursts of events for one directory are debounced.  Sessions
    present before the watch starts are never reported, and a removed
    session directory is dropped from the bookkeeping.

watchdog delivers events on its observer thread; they are handed to the
asyncio loop with ``call_soon_threadsafe`` and all bookkeeping happens on
the loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from auq_sessions.constants import REQUEST_FILE
from auq_sessions.exceptions import WatcherError, WatchTimeoutError
from auq_sessions.paths import is_valid_session_id

logger = logging.getLogger(__name__)

SessionCallback = Callable[[str, Path], Union[Awaitable[Any], None]]

# sink(path, removed): ``removed`` is True when ``path`` went away
EventSink = Callable[[Path, bool], None]


def _existing_session_ids(root: Path) -> set[str]:
    try:
        entries = list(root.iterdir())
    except FileNotFoundError:
        return set()
    return {e.name for e in entries if is_valid_session_id(e.name)}


class _LoopBridge(FileSystemEventHandler):
    """Forward event paths from the observer thread onto the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: EventSink) -> None:
        self._loop = loop
        self._sink = sink

    def _forward(self, raw: Any, removed: bool) -> None:
        try:
            self._loop.call_soon_threadsafe(self._sink, Path(os.fsdecode(raw)), removed)
        except RuntimeError:
            # Loop already closed during shutdown
            pass

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in ("created", "modified"):
            self._forward(event.src_path, False)
        elif event.event_type == "moved":
            self._forward(event.src_path, True)
            self._forward(event.dest_path, False)
        elif event.event_type == "deleted":
            self._forward(event.src_path, True)


class FileWatcher:
    """Debounced watchdog wrapper with an asyncio-facing API."""

    def __init__(self, debounce: float = 0.2, timeout: float = 30.0) -> None:
        self.debounce = debounce
        self.timeout = timeout
        self._observers: list[Any] = []
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._announced: set[str] = set()
        self._tasks: set[asyncio.Task[Any]] = set()

    def active(self) -> bool:
        return bool(self._observers)

    def _start_observer(self, directory: Path, sink: EventSink, recursive: bool) -> Any:
        loop = asyncio.get_running_loop()
        observer = Observer()
        try:
            observer.schedule(_LoopBridge(loop, sink), str(directory), recursive=recursive)
            observer.start()
        except OSError as exc:
            raise WatcherError(f"Failed to watch directory {directory}: {exc}") from exc
        self._observers.append(observer)
        return observer

    def _stop_observer(self, observer: Any) -> None:
        observer.stop()
        observer.join(timeout=1.0)
        if observer in self._observers:
            self._observers.remove(observer)

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    async def wait_for_file(
        self, directory: str | os.PathLike[str], filename: str, timeout: float | None = None,
    ) -> Path:
        """Return the file's path once it exists.

        ``timeout`` defaults to the watcher's timeout; zero or less waits
        forever.  Raises :class:`WatchTimeoutError` on expiry.
        """
        directory = Path(directory)
        target = directory / filename
        loop = asyncio.get_running_loop()
        found: asyncio.Future[Path] = loop.create_future()

        def _sink(path: Path, removed: bool) -> None:
            if not removed and path.name == filename and not found.done():
                found.set_result(target)

        observer = self._start_observer(directory, _sink, recursive=False)
        try:
            # Checked after the observer is running so a file created in
            # between is not missed.
            if await asyncio.to_thread(target.exists):
                return target
            timeout = self.timeout if timeout is None else timeout
            if timeout and timeout > 0:
                return await asyncio.wait_for(found, timeout)
            return await found
        except asyncio.TimeoutError:
            raise WatchTimeoutError(f"Timeout waiting for file: {target}") from None
        finally:
            self._stop_observer(observer)

    # ------------------------------------------------------------------
    # New session directories
    # ------------------------------------------------------------------

    def watch_for_sessions(self, root: str | os.PathLike[str], callback: SessionCallback) -> None:
        """Call ``callback(session_id, session_path)`` for each new session.

        Sessions that already exist when the watch starts are not reported,
        however often their files change afterwards.  A session directory
        that is removed is forgotten.  ``callback`` may be a plain function
        or a coroutine function.
        """
        root = Path(root)
        resolved_root = root.resolve()

        def _relative_parts(path: Path) -> tuple[str, ...]:
            for base in (root, resolved_root):
                try:
                    return path.relative_to(base).parts
                except ValueError:
                    continue
            return ()

        def _sink(path: Path, removed: bool) -> None:
            parts = _relative_parts(path)
            if not parts or not is_valid_session_id(parts[0]):
                return
            session_id = parts[0]

            if removed:
                if len(parts) == 1:
                    self._forget(session_id)
                return
            if session_id in self._announced:
                return
            pending = self._timers.pop(session_id, None)
            if pending is not None:
                pending.cancel()
            self._timers[session_id] = asyncio.get_running_loop().call_later(
                self.debounce, self._fire, root, session_id, callback,
            )

        # Snapshot before the observer starts so activity in old sessions
        # (reads, rejections) never looks like a new session.
        self._announced.update(_existing_session_ids(root))
        self._start_observer(root, _sink, recursive=True)
        logger.info("Watching for new sessions in %s", root)

    def _forget(self, session_id: str) -> None:
        pending = self._timers.pop(session_id, None)
        if pending is not None:
            pending.cancel()
        if session_id in self._announced:
            self._announced.discard(session_id)
            logger.debug("Session directory removed: %s", session_id)

    def _fire(self, root: Path, session_id: str, callback: SessionCallback) -> None:
        self._timers.pop(session_id, None)
        if session_id in self._announced:
            return
        session_path = root / session_id
        if not (session_path / REQUEST_FILE).exists():
            # Directory created but request not written yet; a later event retries.
            return
        self._announced.add(session_id)
        logger.debug("New session detected: %s", session_id)

        try:
            result = callback(session_id, session_path)
        except Exception:
            logger.exception("Session callback failed for %s", session_id)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session callback failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        """Stop every observer and cancel pending debounce timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for observer in list(self._observers):
            self._stop_observer(observer)
        for task in list(self._tasks):
            task.cancel()
        self._announced.clear()

    stop = cleanup
