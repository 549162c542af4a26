"""Answer validation and transcript formatting.

Pure functions, no I/O.  The transcript is what the producer receives::

    Here are the user's answers:

    1. Favorite color?
    → Blue — The color of sky

    2. Which features?
    → Auth
    → Other: 'caching'

Custom text that starts with a special-request sentinel
(``[ELABORATE_REQUEST]``, ``[REPHRASE_REQUEST]``) is passed through
verbatim instead of being wrapped in ``Other: '...'``.
"""

from __future__ import annotations

from typing import Sequence

from auq_sessions.constants import (
    ANSWER_ARROW,
    ELABORATE_SENTINEL,
    REPHRASE_SENTINEL,
    RESPONSE_HEADER,
    SPECIAL_REQUEST_SENTINELS,
)
from auq_sessions.exceptions import AnswerValidationError
from auq_sessions.models import Question, UserAnswer


def is_special_request(text: str | None) -> bool:
    return bool(text) and text.startswith(SPECIAL_REQUEST_SENTINELS)


def validate_answers(answers: Sequence[UserAnswer], questions: Sequence[Question]) -> None:
    """Raise :class:`AnswerValidationError` if answers do not fit the questions.

    An empty ``selected_options`` list is a valid answer (multi-select with
    nothing chosen); empty strings are not.
    """
    if not answers:
        raise AnswerValidationError("No answers provided")
    if not questions:
        raise AnswerValidationError("No questions provided")

    for answer in answers:
        index = answer.question_index
        if index < 0 or index >= len(questions):
            raise AnswerValidationError(
                f"Answer references invalid question index: {index}"
            )

        if (
            not answer.selected_option
            and answer.selected_options is None
            and not answer.custom_text
        ):
            raise AnswerValidationError(
                f"Answer for question {index} has neither selectedOption, "
                "selectedOptions, nor customText"
            )

        question = questions[index]
        labels = []
        if answer.selected_option:
            labels.append(answer.selected_option)
        labels.extend(answer.selected_options or [])
        for label in labels:
            if question.find_option(label) is None:
                raise AnswerValidationError(
                    f"Answer for question {index} references non-existent option: {label}"
                )


def _option_line(question: Question, label: str) -> str:
    option = question.find_option(label)
    if option is not None and option.description:
        return f"{ANSWER_ARROW} {option.label} — {option.description}"
    return f"{ANSWER_ARROW} {label}"


def _format_question(question: Question, entries: list[UserAnswer], number: int) -> str:
    lines = [f"{number}. {question.prompt}"]
    answer_lines: list[str] = []

    # Options first, then custom text, in entry order.
    for entry in entries:
        if entry.selected_options:
            answer_lines.extend(_option_line(question, label) for label in entry.selected_options)
        elif entry.selected_option:
            answer_lines.append(_option_line(question, entry.selected_option))

    for entry in entries:
        text = entry.custom_text
        if not text:
            continue
        if is_special_request(text):
            answer_lines.append(text)
        else:
            escaped = text.replace("'", "\\'")
            answer_lines.append(f"{ANSWER_ARROW} Other: '{escaped}'")

    if not answer_lines:
        answer_lines.append(f"{ANSWER_ARROW} (No selection)")

    lines.extend(answer_lines)
    return "\n".join(lines)


def format_user_response(answers: Sequence[UserAnswer], questions: Sequence[Question]) -> str:
    """Render answers as the numbered transcript returned to the producer.

    Questions without any answer entry are left out; numbering still
    follows the question's position.
    """
    if not answers:
        raise AnswerValidationError("No answers provided")
    if not questions:
        raise AnswerValidationError("No questions provided")

    blocks = []
    for index, question in enumerate(questions):
        entries = [a for a in answers if a.question_index == index]
        if entries:
            blocks.append(_format_question(question, entries, index + 1))

    return "\n".join([RESPONSE_HEADER, "", "\n\n".join(blocks)])


def format_rephrase_request(question_index: int, title: str) -> str:
    """Custom text asking the producer to reword a question."""
    return (
        f"{REPHRASE_SENTINEL} Please rephrase question '{title}' in a different way\n"
        f"Question index: {question_index}"
    )


def format_elaborate_request(
    question_index: int,
    title: str,
    prompt: str,
    user_note: str | None = None,
    user_guidance: str | None = None,
) -> str:
    """Custom text asking the producer to explain a question in more depth."""
    lines = [
        f"{ELABORATE_SENTINEL} The user asked for more detail on question "
        f"'{title}' (index {question_index}): {prompt}",
        "This means the user may have additional info to share or needs more "
        "context before choosing an answer.",
    ]
    if user_note:
        lines.append(f"User note: {user_note}")
    if user_guidance:
        escaped = user_guidance.replace('"', '\\"')
        lines.append(f'User guidance: "{escaped}"')
    else:
        lines.append(
            "Provide examples and larger context for each option, "
            "then ask the question again."
        )
    return "\n".join(lines)
