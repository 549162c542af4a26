"""Question and option models.

These are the typed shape of the question payload a producer sends.  They
carry no business rules: option counts, non-empty labels and the question
limit are checked by :func:`validate_questions`, which returns a list of
readable issues instead of raising on the first one.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from auq_sessions.constants import MIN_OPTIONS


class CamelModel(BaseModel):
    """Base for every on-disk document: camelCase JSON keys, snake_case attributes.

    Unknown keys written by other tools are ignored on read.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self) -> str:
        """Serialise with camelCase keys, omitting unset optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class Option(CamelModel):
    """A selectable choice within a question."""

    label: str
    description: Optional[str] = None


class Question(CamelModel):
    """A single question shown to the user.

    ``title`` is a short chip label for the UI (e.g. "Language"); ``prompt``
    is the full question text.
    """

    prompt: str
    title: str
    options: List[Option]
    multi_select: bool = False

    def option_labels(self) -> list[str]:
        return [opt.label for opt in self.options]

    def find_option(self, label: str) -> Option | None:
        for opt in self.options:
            if opt.label == label:
                return opt
        return None


def validate_questions(
    questions: list[Question],
    *,
    max_questions: int,
    max_options: int,
) -> list[str]:
    """Check a question list against the payload rules.

    Returns an empty list when the payload is acceptable, otherwise one
    message per problem, numbered from 1 the way the user sees them.
    """
    issues: list[str] = []
    if not questions:
        return ["At least one question is required"]
    if len(questions) > max_questions:
        issues.append(
            f"At most {max_questions} questions are allowed, got {len(questions)}"
        )

    for number, question in enumerate(questions, start=1):
        if not question.prompt.strip():
            issues.append(f"Question {number} is missing 'prompt'")
        if not question.title.strip():
            issues.append(
                f"Question {number} is missing 'title' "
                "(a short summary like 'Language' or 'Framework')"
            )

        count = len(question.options)
        if count < MIN_OPTIONS or count > max_options:
            issues.append(
                f"Question {number} must have between {MIN_OPTIONS} and "
                f"{max_options} options, got {count}"
            )

        seen: set[str] = set()
        for opt in question.options:
            if not opt.label.strip():
                issues.append(f"Question {number} has an option with an empty label")
            elif opt.label in seen:
                issues.append(
                    f"Question {number} has duplicate option label '{opt.label}'"
                )
            seen.add(opt.label)

    return issues
