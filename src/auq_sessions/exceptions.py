"""Exception taxonomy for the session coordination engine.

Every error raised by the SDK derives from :class:`AUQError`.  The classes
also inherit from the closest builtin (``ValueError``, ``LookupError``,
``TimeoutError``, ``OSError``) so callers that only know the builtins still
catch them sensibly.

Groups:
  - Validation: malformed session id, bad question payload, answers that do
    not match their questions.  Raised synchronously, never retried.
  - File primitives: typed read/write failures and lock timeouts raised by
    the atomic file store.  Lock timeouts are distinct so callers can tell
    "the filesystem is contended" apart from "the answer never came".
  - Lifecycle: missing or corrupted session documents, illegal state
    transitions, and the wait timeout.
"""

from __future__ import annotations


class AUQError(Exception):
    """Base class for all session coordination errors."""


# --- Validation ---

class InvalidSessionIdError(AUQError, ValueError):
    """A session identifier is not a UUID v4 string."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Invalid session ID format: {session_id}")
        self.session_id = session_id


class QuestionValidationError(AUQError, ValueError):
    """A question payload failed boundary validation.

    ``issues`` holds one human-readable string per problem found.
    """

    def __init__(self, issues: list[str]) -> None:
        super().__init__("Invalid questions: " + "; ".join(issues))
        self.issues = list(issues)


class AnswerValidationError(AUQError, ValueError):
    """Answers reference questions or options that do not exist."""


class SessionValidationError(AUQError, ValueError):
    """A session document disagrees with its directory identifier."""


# --- File primitives ---

class AtomicOperationError(AUQError, OSError):
    """A file primitive failed.  The underlying error is chained as ``__cause__``."""

    def __init__(self, message: str, operation: str, path: str) -> None:
        super().__init__(message)
        self.operation = operation
        self.path = path

    def __str__(self) -> str:
        return self.args[0]


class AtomicReadError(AtomicOperationError):
    def __init__(self, path: str, reason: str | None = None) -> None:
        message = f"Atomic read failed: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, "read", path)


class AtomicWriteError(AtomicOperationError):
    def __init__(self, path: str, reason: str | None = None) -> None:
        message = f"Atomic write failed: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, "write", path)


class LockTimeoutError(AtomicOperationError):
    """The advisory lock for a file could not be acquired in time."""

    def __init__(self, path: str, timeout: float) -> None:
        super().__init__(
            f"Failed to acquire file lock within {timeout:g}s: {path}",
            "lock",
            path,
        )
        self.timeout = timeout


# --- Lifecycle ---

class SessionNotFoundError(AUQError, LookupError):
    """The session (or one of its required documents) does not exist."""


class SessionCorruptedError(AUQError, ValueError):
    """A session document exists but cannot be parsed."""


class SessionStateError(AUQError, ValueError):
    """A lifecycle transition is not allowed from the current state."""


class SessionTimeoutError(AUQError, TimeoutError):
    """No answer or rejection arrived before the wait deadline."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session {session_id} timed out waiting for user response"
        )
        self.session_id = session_id


class SessionStoreError(AUQError, OSError):
    """The session root or a session directory could not be managed."""


# --- Watcher ---

class WatcherError(AUQError):
    """A filesystem watch could not be established."""


class WatchTimeoutError(WatcherError, TimeoutError):
    """A watched file did not appear before the watch deadline."""
