"""
Answer extraction for the AI Research Engine.

Turns free-form model output into the eight structured answer fields
(answer, legal_basis, url, reforms, date_of_enactment,
date_of_enforcement, comments, flag).
"""

from .normalizer import normalize_fields
from .parser import ParsedAnswer, parse_answer
from .recovery import FIELD_KEYS, recover_fields
from .validator import VALID_FLAGS, ValidationResult, validate_fields

__all__ = [
    "FIELD_KEYS",
    "VALID_FLAGS",
    "ParsedAnswer",
    "ValidationResult",
    "normalize_fields",
    "parse_answer",
    "recover_fields",
    "validate_fields",
]
