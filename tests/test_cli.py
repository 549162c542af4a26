"""Tests for the ``auq`` command line.

Commands run through ``cli([...])`` against a session directory selected
with AUQ_SESSION_DIR, asserting on exit codes and console output.
"""

import argparse
import asyncio
import io
import json

import pytest
from rich.console import Console

from auq_sessions import cli as auq_cli
from auq_sessions.models import SessionState

from helpers.sessions import act_as_consumer, color_question, make_answers


QUESTIONS = {
    "questions": [{
        "title": "Color",
        "prompt": "Favorite color?",
        "options": [
            {"label": "Red", "description": "The color of fire"},
            {"label": "Blue", "description": "The color of sky"},
        ],
    }],
}


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path, settings):
    monkeypatch.setenv("AUQ_SESSION_DIR", str(settings.base_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.delenv("AUQ_SESSION_TIMEOUT", raising=False)
    monkeypatch.delenv("AUQ_LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)
    # Wide consoles so tables never wrap session ids
    monkeypatch.setattr(auq_cli, "console", Console(width=200))
    monkeypatch.setattr(auq_cli, "err_console", Console(stderr=True, width=200))


def run_cli(*argv: str) -> int:
    with pytest.raises(SystemExit) as excinfo:
        auq_cli.cli(list(argv))
    return excinfo.value.code


def _new_session(store, *questions) -> str:
    return asyncio.run(store.create_session(list(questions) or [color_question()]))


# =====================================================================
# Consumer commands
# =====================================================================


class TestList:

    def test_no_sessions(self, store, capsys):
        assert run_cli("list") == 0
        assert "No pending sessions." in capsys.readouterr().out

    def test_pending_sessions_listed(self, store, capsys):
        session_id = _new_session(store)
        assert run_cli("list") == 0
        out = capsys.readouterr().out
        assert session_id in out
        assert "Color" in out


class TestShow:

    def test_show_questions(self, store, capsys):
        session_id = _new_session(store)
        assert run_cli("show", session_id) == 0
        out = capsys.readouterr().out
        assert "0. Color" in out
        assert "Favorite color?" in out
        assert "- Blue" in out
        assert "The color of sky" in out

    def test_unknown_session(self, store, capsys):
        assert run_cli("show", "3f2b8c1e-9d4a-4e7f-8b6c-1a2b3c4d5e6f") == 1
        assert "Session not found" in capsys.readouterr().err


class TestAnswer:

    def test_answer_list(self, store):
        session_id = _new_session(store)
        payload = json.dumps([{"questionIndex": 0, "selectedOption": "Blue"}])

        assert run_cli("answer", session_id, payload) == 0

        answers = asyncio.run(store.get_session_answers(session_id))
        assert answers.session_id == session_id
        assert answers.answers[0].selected_option == "Blue"
        status = asyncio.run(store.get_session_status(session_id))
        assert status.status == SessionState.COMPLETED

    def test_answer_from_stdin_copies_call_id(self, store, monkeypatch):
        session_id = _new_session(store)
        asyncio.run(store.attach_call_id(session_id, "call-7"))
        monkeypatch.setattr(
            "sys.stdin",
            io.StringIO(json.dumps({"answers": [{"questionIndex": 0, "customText": "Green"}]})),
        )

        assert run_cli("answer", session_id) == 0

        answers = asyncio.run(store.get_session_answers(session_id))
        assert answers.call_id == "call-7"
        assert answers.answers[0].custom_text == "Green"

    def test_unknown_option_rejected(self, store, capsys):
        session_id = _new_session(store)
        payload = json.dumps([{"questionIndex": 0, "selectedOption": "Green"}])

        assert run_cli("answer", session_id, payload) == 1

        assert "non-existent option: Green" in capsys.readouterr().err
        assert asyncio.run(store.get_session_answers(session_id)) is None

    def test_invalid_json(self, store, capsys):
        session_id = _new_session(store)
        assert run_cli("answer", session_id, "{not json") == 1

    def test_second_answer_refused(self, store, capsys):
        session_id = _new_session(store)
        payload = json.dumps([{"questionIndex": 0, "selectedOption": "Red"}])
        assert run_cli("answer", session_id, payload) == 0
        assert run_cli("answer", session_id, payload) == 1


class TestRejectValidate:

    def test_reject(self, store):
        session_id = _new_session(store)
        assert run_cli("reject", session_id) == 0
        status = asyncio.run(store.get_session_status(session_id))
        assert status.status == SessionState.REJECTED

    def test_validate_valid(self, store, capsys):
        session_id = _new_session(store)
        assert run_cli("validate", session_id) == 0
        assert "is valid" in capsys.readouterr().out

    def test_validate_invalid_id(self, store, capsys):
        assert run_cli("validate", "nope") == 1
        assert "Invalid session ID format" in capsys.readouterr().out


# =====================================================================
# ask
# =====================================================================


class TestAsk:

    def test_invalid_questions(self, store, capsys):
        payload = json.dumps({"questions": [{"title": "T", "prompt": "P", "options": [{"label": "A"}]}]})
        assert run_cli("ask", payload) == 1
        err = capsys.readouterr().err
        assert "Invalid questions" in err
        assert "between 2 and 4 options" in err

    def test_payload_without_questions(self, store, capsys):
        assert run_cli("ask", json.dumps({"nope": 1})) == 1
        assert "'questions' list" in capsys.readouterr().err

    def test_timeout_exit_code(self, store, monkeypatch, capsys):
        monkeypatch.setenv("AUQ_SESSION_TIMEOUT", "0.3")
        assert run_cli("ask", json.dumps(QUESTIONS)) == 2
        assert "timed out" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_answered_transcript_on_stdout(self, store, settings, capsys):
        args = argparse.Namespace(payload=json.dumps(QUESTIONS), call_id=None)

        async def answer(session_id):
            await store.save_session_answers(
                session_id,
                make_answers(session_id, {"question_index": 0, "selected_option": "Red"}),
            )

        code, _ = await asyncio.gather(
            auq_cli.cmd_ask(args, settings),
            act_as_consumer(store, answer),
        )

        assert code == 0
        assert capsys.readouterr().out == (
            "Here are the user's answers:\n\n"
            "1. Favorite color?\n"
            "→ Red — The color of fire\n"
        )
