"""
Validation of normalized answer fields against the question's answer type.

Validation never raises: it returns a ValidationResult whose errors are
descriptive strings. The task executor joins them with "; " into the
result's error_text under the SCHEMA_INVALID code.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from .recovery import FIELD_KEYS

VALID_FLAGS = (
    "None",
    "Needs follow-up",
    "Source missing",
    "Ambiguous law",
    "Conflicting sources",
    "Translation needed",
    "Other",
)

BOOLEAN_ANSWERS = ("Yes", "No", "N/A")
VALID_REFORMS = ("Yes", "No")
TEXT_FIELDS = ("legal_basis", "url", "comments")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
INTEGER_PATTERN = re.compile(r"^-?\d+$")


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    @property
    def error_text(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


def _validate_answer(answer: Any, answer_type: str) -> str | None:
    if answer_type == "boolean_yesno":
        if answer not in BOOLEAN_ANSWERS:
            return 'answer must be "Yes", "No", or "N/A" for boolean questions'

    elif answer_type == "integer":
        is_number = isinstance(answer, int | float) and not isinstance(answer, bool)
        is_digit_string = isinstance(answer, str) and INTEGER_PATTERN.match(answer)
        if not (is_number or is_digit_string or answer == "N/A"):
            return "answer must be a number for integer questions"

    elif answer_type in ("text", "single_select"):
        if not isinstance(answer, str):
            return f"answer must be a string for {answer_type} questions"

    elif answer_type == "multi_select":
        if not isinstance(answer, list | str):
            return "answer must be an array or string for multi_select questions"

    return None


def validate_fields(fields: Any, answer_type: str) -> ValidationResult:
    """
    Validate normalized fields for one question.

    Args:
        fields: Normalized structured output (should be a mapping)
        answer_type: Question answer type (boolean_yesno, integer, text,
            single_select, multi_select)

    Returns:
        ValidationResult with every violation found

    Example:
        >>> validate_fields({"answer": "maybe", ...}, "boolean_yesno").error_text
        'answer must be "Yes", "No", or "N/A" for boolean questions'
    """
    if not isinstance(fields, dict):
        return ValidationResult(valid=False, errors=["Output must be a JSON object"])

    errors = [
        f"Missing required field: {key}" for key in FIELD_KEYS if key not in fields
    ]

    answer_error = _validate_answer(fields.get("answer"), answer_type)
    if answer_error:
        errors.append(answer_error)

    for key in TEXT_FIELDS:
        value = fields.get(key)
        if value is not None and not isinstance(value, str):
            errors.append(f"{key} must be a string")

    for key in ("date_of_enactment", "date_of_enforcement"):
        value = fields.get(key)
        if value and not (isinstance(value, str) and DATE_PATTERN.match(value)):
            errors.append(f"{key} must be in YYYY-MM-DD format")

    reforms = fields.get("reforms")
    if reforms and reforms not in VALID_REFORMS:
        errors.append('reforms must be "Yes" or "No"')

    flag = fields.get("flag")
    if flag and flag not in VALID_FLAGS:
        errors.append(f"flag must be one of: {', '.join(VALID_FLAGS)}")

    return ValidationResult(valid=not errors, errors=errors)
