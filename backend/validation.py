"""Answer-set validation for survey submissions.

Everything here is pure: it works over question rows already loaded from the
store and the raw ``answers`` payload, and raises ``InvalidInput`` on the first
rule a submission breaks. Nothing is written until ``validate_answers`` returns.
"""
from typing import Any, Iterable

from pydantic import ValidationError

from errors import InvalidInput
from schemas import AnswerIn

RATING_MIN = 1
RATING_MAX = 10
BOOLEAN_VALUES = {"true", "false", "yes", "no", "1", "0"}
TRUTHY_VALUES = {"true", "yes", "1"}


def coerce_answer_text(value: Any) -> str:
    """Normalise a submitted answer value to the text form that gets stored."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def split_choices(text: str) -> list[str]:
    return [token.strip() for token in text.split(",")]


def parse_rating(text: str):
    """Return the integer rating, or None when text is not a plain ASCII whole number."""
    text = text.strip()
    digits = text[1:] if text[:1] in ("+", "-") else text
    if not (digits.isascii() and digits.isdigit()):
        return None
    return int(text)


def check_answer_type(question, text: str) -> None:
    """Apply the per-type rule for a non-empty answer.

    Raises:
        InvalidInput: naming the question when the text does not fit its type.
    """
    qtype = question.type
    options = list(question.options or [])

    if qtype == "single_choice":
        if text not in options:
            raise InvalidInput(f'Invalid option for question "{question.text}"', question_id=question.id)
    elif qtype == "multiple_choice":
        for option in split_choices(text):
            if option not in options:
                raise InvalidInput(f'Invalid option "{option}" for question "{question.text}"',
                                   question_id=question.id)
    elif qtype == "rating":
        rating = parse_rating(text)
        if rating is None or rating < RATING_MIN or rating > RATING_MAX:
            raise InvalidInput(
                f'Rating must be a number between {RATING_MIN} and {RATING_MAX} for question "{question.text}"',
                question_id=question.id,
            )
    elif qtype == "boolean":
        if text.lower() not in BOOLEAN_VALUES:
            raise InvalidInput(f'Boolean answer required for question "{question.text}"', question_id=question.id)


def validate_answers(questions: Iterable, answers: Any) -> list[tuple[int, str]]:
    """Check a proposed answer set against a survey's questions.

    Args:
        questions: Question rows of the survey (anything with id, text, type,
            is_required and options attributes), in display order.
        answers: Raw payload, expected to be a list of
            ``{"question_id": int, "answer_text": str}`` objects.

    Returns:
        list[tuple[int, str]]: (question_id, answer_text) pairs in submission order.

    Raises:
        InvalidInput: on the first violated rule.
    """
    if not isinstance(answers, list):
        raise InvalidInput("Answers array is required")

    questions = list(questions)
    by_id = {q.id: q for q in questions}
    accepted: list[tuple[int, str]] = []
    seen: set[int] = set()

    for raw in answers:
        try:
            item = AnswerIn.model_validate(raw)
        except ValidationError as exc:
            errors = exc.errors()
            # question_id is checked first, so an answer_text error means the id is usable
            if errors and errors[0]["loc"][:1] == ("answer_text",):
                question_id = raw["question_id"]
                raise InvalidInput(f"Answer for question {question_id} must be text, a number or a boolean",
                                   question_id=question_id)
            raise InvalidInput("Each answer must have a valid question_id")

        question = by_id.get(item.question_id)
        if question is None:
            raise InvalidInput(f"Question {item.question_id} does not belong to this survey",
                               question_id=item.question_id)
        if item.question_id in seen:
            raise InvalidInput(f"Duplicate answer for question {item.question_id}", question_id=item.question_id)
        seen.add(item.question_id)

        text = coerce_answer_text(item.answer_text)
        if question.is_required and not text.strip():
            raise InvalidInput(f'Question "{question.text}" is required', question_id=question.id)
        if text:
            check_answer_type(question, text)

        accepted.append((item.question_id, text))

    for question in questions:
        if question.is_required and question.id not in seen:
            raise InvalidInput(f'Required question "{question.text}" was not answered', question_id=question.id)

    return accepted
