"""
Output recovery pipeline: recover -> normalize -> validate.

parse_answer() turns raw model text into the outcome fields persisted on
a task result. Raw text is never modified; the caller stores it verbatim.

Outcomes:
- Nothing recoverable: parsed=None, PARSE_ERROR (attempt is format_invalid)
- Recovered but invalid: parsed set, schema_valid=False, SCHEMA_INVALID
  (attempt stays completed)
- Recovered and valid: parsed set, schema_valid=True, no error
"""

import logging
from dataclasses import dataclass
from typing import Any

from .normalizer import normalize_fields
from .recovery import recover_fields
from .validator import validate_fields

logger = logging.getLogger(__name__)

PARSE_ERROR_TEXT = (
    "Could not recover structured fields from the response "
    "(neither a JSON object nor the labeled template was found)."
)


@dataclass
class ParsedAnswer:
    """
    Result of running raw output through the recovery pipeline.

    Attributes:
        parsed: Normalized structured fields, None when unrecoverable
        schema_valid: Fields passed validation for the question's answer type
        error_code: "PARSE_ERROR", "SCHEMA_INVALID" or None
        error_text: Human-readable explanation, None on success
    """

    parsed: dict[str, Any] | None
    schema_valid: bool
    error_code: str | None = None
    error_text: str | None = None

    @property
    def recovered(self) -> bool:
        return self.parsed is not None


def parse_answer(raw_text: str, answer_type: str) -> ParsedAnswer:
    """
    Recover, normalize and validate one model answer.

    Args:
        raw_text: Model output text
        answer_type: Question answer type used for validation

    Returns:
        ParsedAnswer describing the outcome
    """
    recovered = recover_fields(raw_text)
    if recovered is None:
        logger.debug("No structured fields recovered from response")
        return ParsedAnswer(
            parsed=None,
            schema_valid=False,
            error_code="PARSE_ERROR",
            error_text=PARSE_ERROR_TEXT,
        )

    normalized = normalize_fields(recovered)
    validation = validate_fields(normalized, answer_type)

    if not validation.valid:
        logger.debug(f"Structured output failed validation: {validation.error_text}")
        return ParsedAnswer(
            parsed=normalized,
            schema_valid=False,
            error_code="SCHEMA_INVALID",
            error_text=validation.error_text,
        )

    return ParsedAnswer(parsed=normalized, schema_valid=True)
