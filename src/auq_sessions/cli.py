"""Command-line interface — ``auq``.

Producer side::

    # Ask a question set and block until the user answers
    auq ask '{"questions": [{"title": "Color", "prompt": "Favorite color?",
              "options": [{"label": "Red"}, {"label": "Blue"}]}]}'

    # Same payload piped on stdin
    cat questions.json | auq ask

Consumer side (scriptable stand-in for the interactive client)::

    auq list
    auq show <session-id>
    auq answer <session-id> '[{"questionIndex": 0, "selectedOption": "Blue"}]'
    auq reject <session-id>
    auq validate <session-id>
    auq watch

``ask`` prints only the transcript on stdout; status goes to stderr.
Exit codes: 0 answered or rejected, 1 invalid input or failure, 2 timeout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from auq_sessions.config import SessionSettings, load_settings
from auq_sessions.consumer import SessionWatcher
from auq_sessions.exceptions import (
    AUQError,
    QuestionValidationError,
    SessionTimeoutError,
)
from auq_sessions.formatter import validate_answers
from auq_sessions.models import SessionAnswers
from auq_sessions.orchestrator import SessionOrchestrator
from auq_sessions.store import SessionStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2

console = Console()
err_console = Console(stderr=True)


def _read_json(text: str | None) -> Any:
    """Parse JSON from an argument, or from stdin when none was given."""
    if text is None or text == "-":
        if sys.stdin.isatty():
            raise ValueError("No JSON given: pass it as an argument or pipe it on stdin")
        text = sys.stdin.read()
    return json.loads(text)


# ---------------------------------------------------------------------------
# Producer
# ---------------------------------------------------------------------------


async def cmd_ask(args: argparse.Namespace, settings: SessionSettings) -> int:
    payload = _read_json(args.payload)
    questions = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(questions, list):
        err_console.print("[red]Expected a JSON object with a 'questions' list[/red]")
        return EXIT_FAILURE

    orchestrator = SessionOrchestrator(SessionStore(settings), settings)
    err_console.print(
        f"Waiting for answers ({len(questions)} question(s)); "
        f"open the terminal client to respond. Sessions: {escape(str(settings.base_dir))}"
    )
    try:
        result = await orchestrator.ask(questions, call_id=args.call_id)
    except QuestionValidationError as exc:
        err_console.print("[red]Invalid questions:[/red]")
        for issue in exc.issues:
            err_console.print(f"  - {escape(issue)}")
        return EXIT_FAILURE
    except SessionTimeoutError as exc:
        err_console.print(f"[yellow]{escape(str(exc))}[/yellow]")
        return EXIT_TIMEOUT

    err_console.print(f"Session {result.session_id} finished")
    print(result.formatted_response)
    return EXIT_OK


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------


async def cmd_list(args: argparse.Namespace, settings: SessionSettings) -> int:
    watcher = SessionWatcher(settings)
    session_ids = await watcher.list_pending_sessions()
    if not session_ids:
        console.print("No pending sessions.")
        return EXIT_OK

    table = Table(title="Pending sessions")
    table.add_column("Session ID", style="cyan")
    table.add_column("Created")
    table.add_column("Questions", justify="right")
    table.add_column("Titles")
    for session_id in session_ids:
        request = await watcher.get_session_request(session_id)
        if request is None:
            continue
        table.add_row(
            session_id,
            request.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            str(len(request.questions)),
            escape(", ".join(q.title for q in request.questions)),
        )
    console.print(table)
    return EXIT_OK


async def cmd_show(args: argparse.Namespace, settings: SessionSettings) -> int:
    watcher = SessionWatcher(settings)
    request = await watcher.get_session_request(args.session_id)
    if request is None:
        err_console.print(f"[red]Session not found: {escape(args.session_id)}[/red]")
        return EXIT_FAILURE

    for index, question in enumerate(request.questions):
        kind = " (multi-select)" if question.multi_select else ""
        console.print(
            f"[bold]{index}. {escape(question.title)}[/bold]{kind}: {escape(question.prompt)}"
        )
        for option in question.options:
            line = f"    - {escape(option.label)}"
            if option.description:
                line += f" [dim]{escape(option.description)}[/dim]"
            console.print(line)
    return EXIT_OK


async def cmd_answer(args: argparse.Namespace, settings: SessionSettings) -> int:
    store = SessionStore(settings)
    request = await store.get_session_request(args.session_id)
    if request is None:
        err_console.print(f"[red]Session not found: {escape(args.session_id)}[/red]")
        return EXIT_FAILURE

    payload = _read_json(args.answers)
    if isinstance(payload, list):
        payload = {"answers": payload}
    if not isinstance(payload, dict):
        err_console.print("[red]Expected a list of answers or an answers object[/red]")
        return EXIT_FAILURE
    payload.setdefault("sessionId", args.session_id)
    if request.call_id:
        payload.setdefault("callId", request.call_id)

    answers = SessionAnswers.model_validate(payload)
    validate_answers(answers.answers, request.questions)
    await store.save_session_answers(args.session_id, answers)
    err_console.print(f"Answers saved for session {args.session_id}")
    return EXIT_OK


async def cmd_reject(args: argparse.Namespace, settings: SessionSettings) -> int:
    await SessionStore(settings).reject_session(args.session_id)
    err_console.print(f"Session {args.session_id} rejected")
    return EXIT_OK


async def cmd_validate(args: argparse.Namespace, settings: SessionSettings) -> int:
    result = await SessionStore(settings).validate_session(args.session_id)
    if result.is_valid:
        console.print(f"[green]Session {args.session_id} is valid[/green]")
        return EXIT_OK
    console.print(f"[red]Session {escape(args.session_id)} has issues:[/red]")
    for issue in result.issues:
        console.print(f"  - {escape(issue)}")
    return EXIT_FAILURE


async def cmd_watch(args: argparse.Namespace, settings: SessionSettings) -> int:
    watcher = SessionWatcher(settings)
    err_console.print(f"Watching {escape(str(settings.base_dir))} (Ctrl-C to stop)")
    try:
        async for event in watcher.events():
            titles = ""
            if event.request is not None:
                titles = ", ".join(q.title for q in event.request.questions)
            console.print(f"[cyan]{event.session_id}[/cyan] {escape(titles)}")
    finally:
        watcher.stop()
    return EXIT_OK


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser(settings: SessionSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auq",
        description="Ask a human structured questions through a shared session directory.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: $AUQ_LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Ask questions and wait for the answers")
    ask.add_argument("payload", nargs="?", help='JSON {"questions": [...]}; stdin if omitted')
    ask.add_argument("--call-id", default=None, help="Correlation id echoed in the answers")
    ask.set_defaults(handler=cmd_ask)

    sub.add_parser("list", help="List pending sessions").set_defaults(handler=cmd_list)

    show = sub.add_parser("show", help="Show the questions of a session")
    show.add_argument("session_id")
    show.set_defaults(handler=cmd_show)

    answer = sub.add_parser("answer", help="Submit answers for a session")
    answer.add_argument("session_id")
    answer.add_argument("answers", nargs="?", help="JSON answers list or object; stdin if omitted")
    answer.set_defaults(handler=cmd_answer)

    reject = sub.add_parser("reject", help="Decline a session's questions")
    reject.add_argument("session_id")
    reject.set_defaults(handler=cmd_reject)

    validate = sub.add_parser("validate", help="Check a session's documents for consistency")
    validate.add_argument("session_id")
    validate.set_defaults(handler=cmd_validate)

    sub.add_parser("watch", help="Print new sessions as they appear").set_defaults(
        handler=cmd_watch,
    )
    return parser


async def _dispatch(args: argparse.Namespace, settings: SessionSettings) -> int:
    try:
        return await args.handler(args, settings)
    except ValidationError as exc:
        err_console.print(f"[red]Invalid input:[/red] {escape(str(exc))}")
    except (AUQError, ValueError, OSError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        err_console.print(f"[red]{escape(str(exc))}[/red]")
    return EXIT_FAILURE


def cli(argv: list[str] | None = None) -> None:
    """Console-script entry point: ``auq``."""
    settings = load_settings()
    args = build_parser(settings).parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        code = asyncio.run(_dispatch(args, settings))
    except KeyboardInterrupt:
        code = EXIT_OK
    sys.exit(code)
