"""Atomic file primitives shared by producer and consumer processes.

Every document in a session directory is written and read through
:class:`AtomicFileStore`.  Writes never leave a partially written target:
data goes to a hidden temp file next to the target, is fsynced and
verified, then renamed over the target with ``os.replace``.

Cross-process exclusion uses advisory lock files: ``<path>.lock`` is
created with ``O_CREAT | O_EXCL`` and holds the owner's PID.  A lock whose
owner no longer exists is reclaimed immediately instead of waiting for the
timeout.  Locks are advisory only; readers that bypass this class are not
excluded.

Blocking syscalls run in worker threads (``asyncio.to_thread``) so the
event loop stays responsive while a lock is contended.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

from auq_sessions.constants import (
    LOCK_RETRY_INTERVAL,
    LOCK_SUFFIX,
    TEMP_SUFFIX,
    UNREADABLE_LOCK_GRACE,
)
from auq_sessions.exceptions import (
    AtomicOperationError,
    AtomicReadError,
    AtomicWriteError,
    LockTimeoutError,
)

if TYPE_CHECKING:
    from auq_sessions.config import SessionSettings

logger = logging.getLogger(__name__)

PathLike = str | os.PathLike[str]


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + LOCK_SUFFIX)


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if os.name == "nt":
        # os.kill on Windows terminates the target; assume the owner is alive.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    return True


def _create_lock_file(lock_path: Path) -> None:
    fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
    finally:
        os.close(fd)


def _lock_is_stale(lock_path: Path) -> bool:
    """True if the lock file's owner is gone (or the file itself is gone)."""
    try:
        content = lock_path.read_text(encoding="ascii").strip()
        mtime = lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    except (OSError, UnicodeDecodeError):
        return False

    try:
        pid = int(content)
    except ValueError:
        # Owner may sit between create and write.
        return time.time() - mtime > UNREADABLE_LOCK_GRACE
    return not _pid_alive(pid)


class AtomicFileStore:
    """Lock-protected atomic read / write / delete / copy of small text files."""

    def __init__(
        self,
        lock_timeout: float = 5.0,
        max_retries: int = 3,
        retry_delay: float = 0.1,
        file_mode: int = 0o600,
        tmp_dir: PathLike | None = None,
    ) -> None:
        self.lock_timeout = lock_timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.file_mode = file_mode
        self.tmp_dir = Path(tmp_dir) if tmp_dir is not None else None

    @classmethod
    def from_settings(cls, settings: SessionSettings) -> AtomicFileStore:
        return cls(
            lock_timeout=settings.lock_timeout,
            max_retries=settings.read_retries,
            retry_delay=settings.retry_delay,
            file_mode=settings.file_mode,
        )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    async def _acquire_lock(self, path: Path) -> Path:
        """Create ``<path>.lock`` or raise :class:`LockTimeoutError`.

        ``FileNotFoundError`` propagates unchanged when the parent
        directory does not exist.
        """
        lock_path = lock_path_for(path)
        deadline = time.monotonic() + self.lock_timeout

        while True:
            try:
                await asyncio.to_thread(_create_lock_file, lock_path)
                return lock_path
            except FileExistsError:
                pass
            except FileNotFoundError:
                raise
            except OSError as exc:
                raise AtomicOperationError(
                    f"Failed to create lock file: {lock_path}", "lock", str(path),
                ) from exc

            if await asyncio.to_thread(_lock_is_stale, lock_path):
                logger.debug("Removing stale lock %s", lock_path)
                await asyncio.to_thread(lock_path.unlink, missing_ok=True)
                continue

            if time.monotonic() >= deadline:
                raise LockTimeoutError(str(path), self.lock_timeout)
            await asyncio.sleep(LOCK_RETRY_INTERVAL)

    async def _release_lock(self, lock_path: Path) -> None:
        try:
            await asyncio.to_thread(lock_path.unlink, missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove lock file %s: %s", lock_path, exc)

    @asynccontextmanager
    async def locked(self, path: PathLike) -> AsyncIterator[Path]:
        """Hold the advisory lock for ``path`` for the duration of the block."""
        path = Path(path)
        lock_path = await self._acquire_lock(path)
        try:
            yield path
        finally:
            await self._release_lock(lock_path)

    async def is_locked(self, path: PathLike) -> bool:
        """True if a live owner currently holds the lock for ``path``."""
        lock_path = lock_path_for(Path(path))
        if not await asyncio.to_thread(lock_path.exists):
            return False
        return not await asyncio.to_thread(_lock_is_stale, lock_path)

    async def wait_for_unlock(self, path: PathLike, timeout: float = 10.0) -> None:
        """Block until ``path`` is unlocked; :class:`LockTimeoutError` on expiry."""
        deadline = time.monotonic() + timeout
        while await self.is_locked(path):
            if time.monotonic() >= deadline:
                raise LockTimeoutError(str(path), timeout)
            await asyncio.sleep(LOCK_RETRY_INTERVAL)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(self, path: PathLike, data: str, mode: int | None = None) -> None:
        """Atomically replace ``path`` with ``data``.

        Raises:
            LockTimeoutError: the lock could not be acquired.
            AtomicWriteError: anything failed once the lock was held.  The
                temp file is removed and the target is left untouched.
        """
        path = Path(path)
        mode = self.file_mode if mode is None else mode
        payload = data.encode("utf-8")

        try:
            lock_path = await self._acquire_lock(path)
        except FileNotFoundError as exc:
            raise AtomicWriteError(str(path), "parent directory does not exist") from exc

        try:
            await asyncio.to_thread(self._write_locked, path, payload, mode)
        except AtomicWriteError:
            raise
        except Exception as exc:
            raise AtomicWriteError(str(path), str(exc)) from exc
        finally:
            await self._release_lock(lock_path)

    def _write_locked(self, path: Path, payload: bytes, mode: int) -> None:
        scratch = self.tmp_dir or path.parent
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=scratch,
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_path, mode)

            if tmp_path.read_bytes() != payload:
                raise AtomicWriteError(str(path), "Data verification failed after write")

            os.replace(tmp_path, path)

            st_mode = path.stat().st_mode
            if st_mode & 0o600 != 0o600:
                os.chmod(path, mode)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read(self, path: PathLike) -> str | None:
        """Return the contents of ``path``, or ``None`` if it does not exist.

        Transient ``OSError``s are retried with exponential backoff
        (``retry_delay * 2**attempt``).  Permission errors are not retried.
        """
        path = Path(path)
        if not await asyncio.to_thread(path.exists):
            return None

        last_exc: OSError | None = None
        for attempt in range(self.max_retries):
            try:
                async with self.locked(path):
                    return await asyncio.to_thread(path.read_text, encoding="utf-8")
            except FileNotFoundError:
                return None
            except PermissionError as exc:
                raise AtomicReadError(str(path), "permission denied") from exc
            except (LockTimeoutError, AtomicOperationError):
                raise
            except OSError as exc:
                last_exc = exc
                logger.debug(
                    "Read of %s failed (attempt %d/%d): %s",
                    path, attempt + 1, self.max_retries, exc,
                )
            except UnicodeDecodeError as exc:
                raise AtomicReadError(str(path), "file is not valid UTF-8") from exc

            if attempt + 1 < self.max_retries:
                await asyncio.sleep(self.retry_delay * 2 ** attempt)

        raise AtomicReadError(
            str(path), f"giving up after {self.max_retries} attempts",
        ) from last_exc

    # ------------------------------------------------------------------
    # Delete / copy
    # ------------------------------------------------------------------

    async def delete(self, path: PathLike) -> None:
        """Remove ``path``.  A file that is already gone counts as success."""
        path = Path(path)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise AtomicOperationError(
                f"Failed to delete file: {path}", "delete", str(path),
            ) from exc

    async def copy(
        self, source: PathLike, dest: PathLike, mode: int | None = None,
    ) -> None:
        """Copy ``source`` to a new file ``dest``.  Fails if ``dest`` exists."""
        source, dest = Path(source), Path(dest)
        mode = self.file_mode if mode is None else mode

        async with self.locked(dest):
            try:
                await asyncio.to_thread(_copy_exclusive, source, dest, mode)
            except FileExistsError as exc:
                raise AtomicOperationError(
                    f"Destination already exists: {dest}", "copy", str(dest),
                ) from exc
            except OSError as exc:
                raise AtomicOperationError(
                    f"Failed to copy {source} to {dest}", "copy", str(dest),
                ) from exc


def _copy_exclusive(source: Path, dest: Path, mode: int) -> None:
    with open(source, "rb") as src, open(dest, "xb") as dst:
        shutil.copyfileobj(src, dst)
    os.chmod(dest, mode)
