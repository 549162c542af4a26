"""Tests for SessionOrchestrator — the producer's full round trip.

A scripted consumer runs concurrently with ``start_session`` and acts on
the session through the store, the way the terminal client would.

Verifies that:
  - Answers produce the exact transcript and a completed status
  - Rejection returns the rejection message without raising
  - The deadline marks the session timed_out and raises
  - Unknown options / corrupt answers mark the session abandoned
  - Answers carrying another call's callId are ignored
  - Cancelling the wait, or a lock timeout while polling, marks the session abandoned
  - ask() validates the question payload before creating anything
"""

import asyncio
import os
from dataclasses import replace

import pytest

from auq_sessions.atomic import lock_path_for
from auq_sessions.constants import ANSWERS_FILE, REJECTION_MESSAGE
from auq_sessions.exceptions import (
    AnswerValidationError,
    LockTimeoutError,
    QuestionValidationError,
    SessionCorruptedError,
    SessionTimeoutError,
)
from auq_sessions.models import SessionState
from auq_sessions.orchestrator import SessionOrchestrator
from auq_sessions.store import SessionStore

from helpers.sessions import act_as_consumer, color_question, first_session_id, make_answers


# =====================================================================
# Fixtures
# =====================================================================

@pytest.fixture
def orchestrator(store, settings):
    return SessionOrchestrator(store, settings)


def _blue(session_id, **fields):
    return make_answers(session_id, {"question_index": 0, "selected_option": "Blue"}, **fields)


# =====================================================================
# Outcomes
# =====================================================================


class TestStartSession:

    @pytest.mark.asyncio
    async def test_happy_path(self, orchestrator, store):
        async def answer(session_id):
            await store.save_session_answers(session_id, _blue(session_id))

        result, session_id = await asyncio.gather(
            orchestrator.start_session([color_question()]),
            act_as_consumer(store, answer),
        )

        assert result.session_id == session_id
        assert result.formatted_response == (
            "Here are the user's answers:\n\n1. Favorite color?\n→ Blue — The color of sky"
        )
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_rejection(self, orchestrator, store):
        result, session_id = await asyncio.gather(
            orchestrator.start_session([color_question()]),
            act_as_consumer(store, store.reject_session),
        )
        assert result.formatted_response == REJECTION_MESSAGE
        assert result.formatted_response == (
            "User rejected this question set and chose not to provide answers."
        )
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.REJECTED

    @pytest.mark.asyncio
    async def test_timeout(self, store, settings):
        orchestrator = SessionOrchestrator(store, replace(settings, session_timeout=0.5))

        with pytest.raises(SessionTimeoutError) as excinfo:
            await orchestrator.start_session([color_question()])

        assert "timed out" in str(excinfo.value)
        session_id = excinfo.value.session_id
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.TIMED_OUT

    @pytest.mark.asyncio
    async def test_unknown_option_abandons(self, orchestrator, store):
        async def answer(session_id):
            bad = make_answers(session_id, {"question_index": 0, "selected_option": "Green"})
            await store.files.write(store.base_dir / session_id / ANSWERS_FILE, bad.to_json())

        with pytest.raises(AnswerValidationError) as excinfo:
            await asyncio.gather(
                orchestrator.start_session([color_question()]),
                act_as_consumer(store, answer),
            )

        assert "Answer validation failed" in str(excinfo.value)
        assert "Green" in str(excinfo.value)
        session_id = (await store.list_session_ids())[0]
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.ABANDONED

    @pytest.mark.asyncio
    async def test_corrupt_answers_abandons(self, orchestrator, store):
        async def write_garbage(session_id):
            (store.base_dir / session_id / ANSWERS_FILE).write_text("{oops")

        with pytest.raises(SessionCorruptedError, match="Failed to parse JSON"):
            await asyncio.gather(
                orchestrator.start_session([color_question()]),
                act_as_consumer(store, write_garbage),
            )

        session_id = (await store.list_session_ids())[0]
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.ABANDONED


# =====================================================================
# Correlation ids
# =====================================================================


class TestCallId:

    @pytest.mark.asyncio
    async def test_call_id_attached(self, orchestrator, store):
        async def answer(session_id):
            request = await store.get_session_request(session_id)
            while request.call_id is None:
                await asyncio.sleep(0.01)
                request = await store.get_session_request(session_id)
            await store.save_session_answers(
                session_id, _blue(session_id, call_id=request.call_id),
            )

        result, session_id = await asyncio.gather(
            orchestrator.start_session([color_question()], call_id="call-1"),
            act_as_consumer(store, answer),
        )
        assert "Blue" in result.formatted_response
        assert (await store.get_session_status(session_id)).call_id == "call-1"

    @pytest.mark.asyncio
    async def test_mismatched_call_id_ignored(self, store, settings):
        orchestrator = SessionOrchestrator(store, replace(settings, session_timeout=1.0))

        async def answer_for_other_call(session_id):
            wrong = _blue(session_id, call_id="someone-else")
            await store.files.write(store.base_dir / session_id / ANSWERS_FILE, wrong.to_json())

        with pytest.raises(SessionTimeoutError):
            await asyncio.gather(
                orchestrator.start_session([color_question()], call_id="call-1"),
                act_as_consumer(store, answer_for_other_call),
            )

    @pytest.mark.asyncio
    async def test_answers_without_call_id_accepted(self, orchestrator, store):
        async def answer(session_id):
            await store.save_session_answers(session_id, _blue(session_id))

        result, _ = await asyncio.gather(
            orchestrator.start_session([color_question()], call_id="call-1"),
            act_as_consumer(store, answer),
        )
        assert "Blue" in result.formatted_response


# =====================================================================
# I/O failures while waiting
# =====================================================================


class TestWaitFailures:

    @pytest.mark.asyncio
    async def test_lock_timeout_marks_abandoned(self, orchestrator, store):
        async def answer_behind_live_lock(session_id):
            answers_path = store.base_dir / session_id / ANSWERS_FILE
            # A live owner keeps the answers locked past the lock timeout
            lock_path_for(answers_path).write_text(str(os.getpid()))
            answers_path.write_text(_blue(session_id, call_id="call-1").to_json())

        with pytest.raises(LockTimeoutError):
            await asyncio.gather(
                orchestrator.start_session([color_question()], call_id="call-1"),
                act_as_consumer(store, answer_behind_live_lock),
            )

        session_id = (await store.list_session_ids())[0]
        status = await store.get_session_status(session_id)
        assert status.status == SessionState.ABANDONED


# =====================================================================
# Cancellation / ask()
# =====================================================================


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_marks_abandoned(self, orchestrator, store):
        task = asyncio.create_task(orchestrator.start_session([color_question()]))
        session_id = await first_session_id(store)
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        status = await store.get_session_status(session_id)
        assert status.status == SessionState.ABANDONED


class TestAsk:

    @pytest.mark.asyncio
    async def test_invalid_payload_creates_nothing(self, orchestrator, store):
        bad = {"prompt": "Only one option", "title": "One", "options": [{"label": "A"}]}
        with pytest.raises(QuestionValidationError) as excinfo:
            await orchestrator.ask([bad])
        assert any("between 2 and 4 options" in issue for issue in excinfo.value.issues)
        assert await store.list_session_ids() == []

    @pytest.mark.asyncio
    async def test_malformed_payload(self, orchestrator, store):
        with pytest.raises(QuestionValidationError):
            await orchestrator.ask([{"title": "No prompt or options"}])

    @pytest.mark.asyncio
    async def test_too_many_questions(self, orchestrator):
        with pytest.raises(QuestionValidationError, match="At most 4 questions"):
            await orchestrator.ask([color_question()] * 5)

    @pytest.mark.asyncio
    async def test_ask_initializes_directory(self, tmp_path, settings):
        settings = replace(settings, base_dir=tmp_path / "fresh")
        orchestrator = SessionOrchestrator(SessionStore(settings), settings)

        async def answer(session_id):
            await orchestrator.store.save_session_answers(session_id, _blue(session_id))

        result, _ = await asyncio.gather(
            orchestrator.ask([color_question()]),
            act_as_consumer(orchestrator.store, answer),
        )
        assert "Blue" in result.formatted_response
