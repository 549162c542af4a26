"""Public model re-exports for auq_sessions.

Consumers should import from ``auq_sessions.models`` rather than reaching
into sub-modules directly.
"""

# --- Lifecycle ---
from auq_sessions.models.enums import SessionState, can_transition

# --- Questions ---
from auq_sessions.models.question import (
    CamelModel,
    Option,
    Question,
    validate_questions,
)

# --- Session documents ---
from auq_sessions.models.session import (
    SessionAnswers,
    SessionEvent,
    SessionRequest,
    SessionResult,
    SessionStatus,
    SessionValidation,
    UserAnswer,
    utc_now,
)

__all__ = [
    # Lifecycle
    "SessionState",
    "can_transition",
    # Questions
    "CamelModel",
    "Option",
    "Question",
    "validate_questions",
    # Session documents
    "SessionAnswers",
    "SessionEvent",
    "SessionRequest",
    "SessionResult",
    "SessionStatus",
    "SessionValidation",
    "UserAnswer",
    "utc_now",
]
