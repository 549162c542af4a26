"""Tests for the atomic file primitives.

Verifies that:
  - Writes replace the target completely and leave no temp or lock files
  - A failure between temp write and rename leaves the old content intact
  - Reads of missing files return None; transient errors are retried
  - Stale locks (dead owner) are reclaimed without waiting for the timeout
  - Live locks time out with LockTimeoutError
  - Delete is idempotent; copy refuses to overwrite
"""

import asyncio
import os
import stat
import subprocess
import sys
import time

import pytest

from auq_sessions import atomic
from auq_sessions.atomic import AtomicFileStore, lock_path_for
from auq_sessions.exceptions import (
    AtomicOperationError,
    AtomicReadError,
    AtomicWriteError,
    LockTimeoutError,
)


# =====================================================================
# Fixtures
# =====================================================================

@pytest.fixture
def files():
    return AtomicFileStore(lock_timeout=1.0, max_retries=3, retry_delay=0.01)


def _dead_pid() -> int:
    """PID of a process that has already exited."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


# =====================================================================
# Write / read
# =====================================================================


class TestWriteRead:

    @pytest.mark.asyncio
    async def test_round_trip(self, files, tmp_path):
        target = tmp_path / "doc.json"
        await files.write(target, '{"a": 1}')
        assert await files.read(target) == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_overwrite_replaces_content(self, files, tmp_path):
        target = tmp_path / "doc.json"
        await files.write(target, "first version, longer")
        await files.write(target, "second")
        assert await files.read(target) == "second", (
            "Second write should fully replace the first"
        )

    @pytest.mark.asyncio
    async def test_no_leftover_temp_or_lock_files(self, files, tmp_path):
        target = tmp_path / "doc.json"
        await files.write(target, "data")
        await files.read(target)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"], (
            "Only the target should remain after write and read"
        )

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    async def test_file_mode_applied(self, files, tmp_path):
        target = tmp_path / "doc.json"
        await files.write(target, "data")
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self, files, tmp_path):
        assert await files.read(tmp_path / "missing.json") is None

    @pytest.mark.asyncio
    async def test_write_into_missing_directory_fails(self, files, tmp_path):
        with pytest.raises(AtomicWriteError):
            await files.write(tmp_path / "nope" / "doc.json", "data")

    @pytest.mark.asyncio
    async def test_unicode_content(self, files, tmp_path):
        target = tmp_path / "doc.json"
        await files.write(target, "→ ภาษาไทย — ok")
        assert await files.read(target) == "→ ภาษาไทย — ok"


# =====================================================================
# Atomicity under failure
# =====================================================================


class TestWriteFailure:

    @pytest.mark.asyncio
    async def test_failure_before_rename_keeps_old_content(
        self, files, tmp_path, monkeypatch,
    ):
        target = tmp_path / "doc.json"
        await files.write(target, "original")

        def fail_replace(src, dst):
            raise OSError("disk unplugged")

        monkeypatch.setattr(atomic.os, "replace", fail_replace)

        with pytest.raises(AtomicWriteError) as excinfo:
            await files.write(target, "replacement")

        monkeypatch.undo()
        assert isinstance(excinfo.value.__cause__, OSError), (
            "The underlying error should be chained"
        )
        assert target.read_text() == "original", (
            "Target must keep its previous content when the rename fails"
        )
        assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"], (
            "Temp and lock files should be cleaned up after a failed write"
        )

    @pytest.mark.asyncio
    async def test_verification_mismatch_raises(self, files, tmp_path, monkeypatch):
        target = tmp_path / "doc.json"
        original_read_bytes = atomic.Path.read_bytes

        def corrupt_read_bytes(self):
            return original_read_bytes(self) + b"garbage"

        monkeypatch.setattr(atomic.Path, "read_bytes", corrupt_read_bytes)

        with pytest.raises(AtomicWriteError, match="Data verification failed"):
            await files.write(target, "data")

        monkeypatch.undo()
        assert not target.exists(), "A write that failed verification must not land"


# =====================================================================
# Read retries
# =====================================================================


class TestReadRetries:

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, files, tmp_path, monkeypatch):
        target = tmp_path / "doc.json"
        target.write_text("data")
        original = atomic.Path.read_text
        calls = {"n": 0}

        def flaky_read_text(self, *args, **kwargs):
            if self == target:
                calls["n"] += 1
                if calls["n"] < 3:
                    raise OSError("EIO")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(atomic.Path, "read_text", flaky_read_text)
        assert await files.read(target) == "data"
        assert calls["n"] == 3, "Should succeed on the third attempt"

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, files, tmp_path, monkeypatch):
        target = tmp_path / "doc.json"
        target.write_text("data")
        original = atomic.Path.read_text

        def broken_read_text(self, *args, **kwargs):
            if self == target:
                raise OSError("EIO")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(atomic.Path, "read_text", broken_read_text)
        with pytest.raises(AtomicReadError) as excinfo:
            await files.read(target)
        assert isinstance(excinfo.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_permission_error_not_retried(self, files, tmp_path, monkeypatch):
        target = tmp_path / "doc.json"
        target.write_text("data")
        original = atomic.Path.read_text
        calls = {"n": 0}

        def denied_read_text(self, *args, **kwargs):
            if self == target:
                calls["n"] += 1
                raise PermissionError("denied")
            return original(self, *args, **kwargs)

        monkeypatch.setattr(atomic.Path, "read_text", denied_read_text)
        with pytest.raises(AtomicReadError, match="permission denied"):
            await files.read(target)
        assert calls["n"] == 1, "Permission errors should not be retried"


# =====================================================================
# Locking
# =====================================================================


class TestLocking:

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="PID liveness probe is POSIX-only")
    async def test_stale_lock_is_reclaimed_quickly(self, tmp_path):
        files = AtomicFileStore(lock_timeout=5.0)
        target = tmp_path / "doc.json"
        lock_path_for(target).write_text(str(_dead_pid()))

        started = time.monotonic()
        await files.write(target, "data")
        elapsed = time.monotonic() - started

        assert target.read_text() == "data"
        assert elapsed < 1.0, f"Stale lock should not wait for the timeout ({elapsed:.2f}s)"
        assert not lock_path_for(target).exists()

    @pytest.mark.asyncio
    async def test_live_lock_times_out(self, tmp_path):
        files = AtomicFileStore(lock_timeout=0.3)
        target = tmp_path / "doc.json"
        lock_path_for(target).write_text(str(os.getpid()))

        with pytest.raises(LockTimeoutError) as excinfo:
            await files.write(target, "data")
        assert excinfo.value.operation == "lock"
        assert "0.3s" in str(excinfo.value)
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_unreadable_lock_reclaimed_after_grace(self, tmp_path):
        files = AtomicFileStore(lock_timeout=3.0)
        target = tmp_path / "doc.json"
        lock = lock_path_for(target)
        lock.write_text("not-a-pid")
        old = time.time() - 10
        os.utime(lock, (old, old))

        await files.write(target, "data")
        assert target.read_text() == "data"

    @pytest.mark.asyncio
    async def test_concurrent_writers_serialize(self, tmp_path):
        files = AtomicFileStore(lock_timeout=10.0)
        target = tmp_path / "doc.json"
        payloads = [f"writer-{i}" * 50 for i in range(10)]
        await asyncio.gather(*(files.write(target, p) for p in payloads))
        assert target.read_text() in payloads, "Final content must be one whole payload"

    @pytest.mark.asyncio
    async def test_is_locked_and_wait_for_unlock(self, files, tmp_path):
        target = tmp_path / "doc.json"
        assert await files.is_locked(target) is False

        async with files.locked(target):
            assert await files.is_locked(target) is True
            with pytest.raises(LockTimeoutError):
                await files.wait_for_unlock(target, timeout=0.1)

        await files.wait_for_unlock(target, timeout=0.1)


# =====================================================================
# Delete / copy
# =====================================================================


class TestDeleteCopy:

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, files, tmp_path):
        target = tmp_path / "doc.json"
        target.write_text("data")
        await files.delete(target)
        await files.delete(target)
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_delete_directory_fails(self, files, tmp_path):
        with pytest.raises(AtomicOperationError) as excinfo:
            await files.delete(tmp_path)
        assert excinfo.value.operation == "delete"

    @pytest.mark.asyncio
    async def test_copy(self, files, tmp_path):
        source = tmp_path / "a.json"
        source.write_text("payload")
        await files.copy(source, tmp_path / "b.json")
        assert (tmp_path / "b.json").read_text() == "payload"

    @pytest.mark.asyncio
    async def test_copy_refuses_existing_destination(self, files, tmp_path):
        source = tmp_path / "a.json"
        dest = tmp_path / "b.json"
        source.write_text("new")
        dest.write_text("old")

        with pytest.raises(AtomicOperationError, match="already exists"):
            await files.copy(source, dest)
        assert dest.read_text() == "old"
