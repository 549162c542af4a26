"""auq_sessions — file-based question sessions between an agent and a human.

Public API:
    SessionOrchestrator — producer side: create a session, wait, return the transcript
    SessionStore        — session documents and the lifecycle state machine
    SessionWatcher      — consumer side: pending sessions and new-session events
    AtomicFileStore     — locked atomic read / write / delete / copy primitives
    FileWatcher         — watchdog-backed wait-for-file and new-directory watch
    SessionSettings     — immutable configuration, built by load_settings()

Formatting:
    format_user_response      — transcript returned to the producer
    validate_answers          — check answers against their questions
    format_elaborate_request  — custom text asking for more detail
    format_rephrase_request   — custom text asking for a rewording

Models:
    Question, Option              — question payload
    SessionRequest, SessionStatus — documents written by the producer
    SessionAnswers, UserAnswer    — documents written by the consumer
    SessionState                  — lifecycle states
    SessionResult, SessionEvent, SessionValidation — SDK return values
"""

from auq_sessions.atomic import AtomicFileStore
from auq_sessions.config import SessionSettings, get_config_paths, load_settings
from auq_sessions.consumer import SessionWatcher
from auq_sessions.formatter import (
    format_elaborate_request,
    format_rephrase_request,
    format_user_response,
    validate_answers,
)
from auq_sessions.models import (
    Option,
    Question,
    SessionAnswers,
    SessionEvent,
    SessionRequest,
    SessionResult,
    SessionState,
    SessionStatus,
    SessionValidation,
    UserAnswer,
    validate_questions,
)
from auq_sessions.orchestrator import SessionOrchestrator
from auq_sessions.paths import get_session_directory, resolve_session_directory
from auq_sessions.store import SessionStore
from auq_sessions.watcher import FileWatcher

__all__ = [
    # Components
    "AtomicFileStore",
    "FileWatcher",
    "SessionOrchestrator",
    "SessionStore",
    "SessionWatcher",
    # Configuration
    "SessionSettings",
    "get_config_paths",
    "get_session_directory",
    "load_settings",
    "resolve_session_directory",
    # Formatting
    "format_elaborate_request",
    "format_rephrase_request",
    "format_user_response",
    "validate_answers",
    "validate_questions",
    # Models
    "Option",
    "Question",
    "SessionAnswers",
    "SessionEvent",
    "SessionRequest",
    "SessionResult",
    "SessionState",
    "SessionStatus",
    "SessionValidation",
    "UserAnswer",
]
