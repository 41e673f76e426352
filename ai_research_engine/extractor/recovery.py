"""
Structured-answer recovery from free-form model output.

Models are asked for a line-oriented labeled template, but in practice
they also return JSON (often fenced, with smart quotes or trailing
commas) or JSON embedded in prose. Recovery tries, stopping at the first
success:

1. JSON object recovery (repair, parse, then first balanced ``{...}`` span)
2. Labeled-template recovery (``Answer: ...``, ``Legal basis: ...``)

Only a JSON object counts as structured output; arrays and scalars are
ignored so a stray ``[1, 2]`` never becomes an answer.

Example:
    >>> recover_fields('```json\\n{"answer": "yes",}\\n```')
    {'answer': 'yes'}
    >>> recover_fields("Answer: Yes\\nLegal basis: Art. 5")["legal_basis"]
    'Art. 5'
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

FIELD_KEYS = (
    "answer",
    "legal_basis",
    "url",
    "reforms",
    "date_of_enactment",
    "date_of_enforcement",
    "comments",
    "flag",
)

# Canonical key -> accepted labels (matched case-insensitively)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "answer": ("answer",),
    "legal_basis": ("legal_basis", "legal basis", "legal citation", "citation"),
    "url": ("url", "link", "source url", "source"),
    "reforms": ("reforms", "recent reforms"),
    "date_of_enactment": ("date_of_enactment", "date of enactment", "enactment date"),
    "date_of_enforcement": (
        "date_of_enforcement",
        "date of enforcement",
        "effective date",
        "enforcement date",
    ),
    "comments": ("comments", "notes", "context"),
    "flag": ("flag", "flags", "issue", "issues"),
}

SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
}

OPENING_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?")
CLOSING_FENCE = re.compile(r"\n?\s*```\s*$")
TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def _build_label_pattern() -> tuple[re.Pattern, dict[str, str]]:
    alias_to_key = {
        alias: key for key, aliases in FIELD_ALIASES.items() for alias in aliases
    }
    # Longest first so "legal basis" wins over a shorter alias sharing a prefix
    ordered = sorted(alias_to_key, key=len, reverse=True)
    alternation = "|".join(re.escape(alias) for alias in ordered)
    pattern = re.compile(
        rf"^\s*(?:[-*]\s*)?({alternation})\s*[:\-]\s*(.*)$",
        re.IGNORECASE,
    )
    return pattern, alias_to_key


LABEL_PATTERN, ALIAS_TO_KEY = _build_label_pattern()


def strip_code_fences(text: str) -> str:
    """Remove a leading ```/```json fence and a trailing ``` fence."""
    text = OPENING_FENCE.sub("", text, count=1)
    text = CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def repair_json_text(text: str) -> str:
    """
    Repair the usual defects of model-written JSON.

    - Strips markdown code fences
    - Replaces typographic quotes with ASCII quotes
    - Removes trailing commas before ``}`` or ``]``
    """
    repaired = strip_code_fences(text)
    for smart, plain in SMART_QUOTES.items():
        repaired = repaired.replace(smart, plain)
    return TRAILING_COMMA.sub(r"\1", repaired)


def extract_json_object_span(text: str) -> str | None:
    """
    Return the first balanced ``{...}`` span, or None.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for index in range(start, len(text)):
        char = text[index]

        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def parse_json_object(text: str) -> dict[str, Any] | None:
    """
    Recover a JSON object from model output.

    Tries the repaired whole text first, then the first balanced object span.
    """
    repaired = repair_json_text(text)

    parsed = _loads_object(repaired)
    if parsed is not None:
        return parsed

    span = extract_json_object_span(repaired)
    if span is not None:
        return _loads_object(span)

    return None


def parse_labeled_template(text: str) -> dict[str, str] | None:
    """
    Recover fields from the line-oriented labeled template.

    A label line is an optional ``-``/``*`` bullet, a known alias, then ``:``
    or ``-``. Unlabeled lines continue the current field (newline-joined).
    Fields that end up empty are dropped before the missing keys are filled.

    Returns:
        Dict with all eight canonical keys ("" when absent), or None if no
        field was captured
    """
    captured: dict[str, str] = {}
    current_key: str | None = None
    buffer: list[str] = []

    def flush() -> None:
        if current_key is None:
            return
        value = "\n".join(buffer).strip()
        if value:
            captured[current_key] = value

    for line in strip_code_fences(text).splitlines():
        match = LABEL_PATTERN.match(line)
        if match:
            flush()
            current_key = ALIAS_TO_KEY[match.group(1).lower()]
            buffer = [match.group(2)]
        elif current_key is not None:
            buffer.append(line)

    flush()

    if not captured:
        return None

    return {key: captured.get(key, "") for key in FIELD_KEYS}


def recover_fields(raw_text: str) -> dict[str, Any] | None:
    """
    Recover structured fields from raw model output.

    Args:
        raw_text: Model output, stored verbatim elsewhere

    Returns:
        Recovered mapping, or None when neither strategy succeeds
    """
    if not raw_text or not raw_text.strip():
        return None

    parsed = parse_json_object(raw_text)
    if parsed is not None:
        logger.debug("Recovered structured output from JSON object")
        return parsed

    parsed = parse_labeled_template(raw_text)
    if parsed is not None:
        logger.debug("Recovered structured output from labeled template")
        return parsed

    return None
