"""Session lifecycle states."""

import enum


class SessionState(str, enum.Enum):
    """Lifecycle states for a question session.

    Transitions:
        pending -> in-progress   (consumer reports the current question)
        pending -> completed     (consumer writes answers)
        pending -> rejected      (consumer declines the question set)
        pending -> timed_out     (producer wait exceeds its deadline)
        pending -> abandoned     (answers unreadable or invalid)
        completed -> abandoned   (answers failed validation after the write)

    Nothing ever moves back to ``pending``.
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionState.PENDING, SessionState.IN_PROGRESS)

    @property
    def is_open(self) -> bool:
        """True while a consumer may still answer the session."""
        return not self.is_terminal


# Allowed target states for each source state.  Re-writing the current
# state is always allowed and not listed here.
_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.PENDING: frozenset(
        {
            SessionState.IN_PROGRESS,
            SessionState.COMPLETED,
            SessionState.REJECTED,
            SessionState.TIMED_OUT,
            SessionState.ABANDONED,
        }
    ),
    SessionState.IN_PROGRESS: frozenset(
        {
            SessionState.COMPLETED,
            SessionState.REJECTED,
            SessionState.TIMED_OUT,
            SessionState.ABANDONED,
        }
    ),
    SessionState.COMPLETED: frozenset({SessionState.ABANDONED}),
    SessionState.REJECTED: frozenset(),
    SessionState.TIMED_OUT: frozenset(),
    SessionState.ABANDONED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    """Return True if ``current -> target`` is a legal lifecycle move."""
    return current == target or target in _TRANSITIONS[current]
