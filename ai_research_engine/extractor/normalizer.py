"""
Canonicalization of recovered answer fields.

normalize_fields() is idempotent: normalizing an already-normalized
mapping returns an equal mapping.

Rules:
- Missing canonical keys are filled with "" (flag defaults to "None")
- answer: yes/no/n/a/na (any case) -> "Yes"/"No"/"N/A"
- reforms: yes/no -> "Yes"/"No"; n/a/na/unknown -> ""
- dates: n/a/na/unknown -> ""; ISO datetimes keep only the date part
- flag: none/n/a/na/"no issues" -> "None"
"""

from typing import Any

from .recovery import FIELD_KEYS

DEFAULT_FLAG = "None"

YES_NO = {"yes": "Yes", "no": "No"}
NOT_APPLICABLE = {"n/a", "na"}
UNKNOWN_DATE_VALUES = {"n/a", "na", "unknown"}
UNKNOWN_REFORM_VALUES = {"n/a", "na", "unknown"}
NO_FLAG_VALUES = {"none", "n/a", "na", "no issues"}

DATE_FIELDS = ("date_of_enactment", "date_of_enforcement")


def _normalize_answer(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if lowered in YES_NO:
        return YES_NO[lowered]
    if lowered in NOT_APPLICABLE:
        return "N/A"
    return value


def _normalize_reforms(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if lowered in YES_NO:
        return YES_NO[lowered]
    if lowered in UNKNOWN_REFORM_VALUES:
        return ""
    return value


def _normalize_date(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    stripped = value.strip()
    if stripped.lower() in UNKNOWN_DATE_VALUES:
        return ""
    if "T" in stripped:
        return stripped.split("T", 1)[0]
    return stripped


def _normalize_flag(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if value.strip().lower() in NO_FLAG_VALUES:
        return DEFAULT_FLAG
    return value


def normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Return a canonicalized copy of recovered fields.

    Extra keys returned by the model are preserved untouched.

    Example:
        >>> normalize_fields({"answer": "yes", "flag": "n/a"})["flag"]
        'None'
    """
    normalized = dict(fields)

    for key in FIELD_KEYS:
        if normalized.get(key) is None:
            normalized[key] = DEFAULT_FLAG if key == "flag" else ""

    normalized["answer"] = _normalize_answer(normalized["answer"])
    normalized["reforms"] = _normalize_reforms(normalized["reforms"])
    for key in DATE_FIELDS:
        normalized[key] = _normalize_date(normalized[key])
    normalized["flag"] = _normalize_flag(normalized["flag"])

    return normalized
