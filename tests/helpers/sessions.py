"""Question / answer builders and a scripted consumer for orchestrator tests."""

import asyncio
from typing import Any, Awaitable, Callable

from auq_sessions.models import Option, Question, SessionAnswers, UserAnswer
from auq_sessions.store import SessionStore


def color_question() -> Question:
    return Question(
        prompt="Favorite color?",
        title="Color",
        options=[
            Option(label="Red", description="The color of fire"),
            Option(label="Blue", description="The color of sky"),
        ],
    )


def feature_question() -> Question:
    return Question(
        prompt="Which features do you want?",
        title="Features",
        multi_select=True,
        options=[
            Option(label="Auth", description="Authentication support"),
            Option(label="Database", description="Database integration"),
            Option(label="API", description="API endpoints"),
        ],
    )


def make_answers(session_id: str, *answers: dict[str, Any], **fields: Any) -> SessionAnswers:
    """SessionAnswers from plain answer dicts (snake_case keys)."""
    return SessionAnswers(
        session_id=session_id,
        answers=[UserAnswer(**a) for a in answers],
        **fields,
    )


async def first_session_id(store: SessionStore, timeout: float = 5.0) -> str:
    """Wait until the store holds a fully written session and return its id."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        ids = await store.list_session_ids()
        if ids:
            session_id = ids[0]
            if (
                await store.get_session_status(session_id) is not None
                and await store.get_session_request(session_id) is not None
            ):
                return session_id
        await asyncio.sleep(0.01)
    raise AssertionError("No session was created")


async def act_as_consumer(
    store: SessionStore,
    action: Callable[[str], Awaitable[None]],
) -> str:
    """Wait for the producer's session, then run ``action`` on it."""
    session_id = await first_session_id(store)
    await action(session_id)
    return session_id
