"""
Token usage normalization and cost estimation for the AI Research Engine.

Pricing is not hardcoded: every Model row carries its own input/output
price in USD per 1M tokens. Missing prices are treated as zero so a model
without pricing still runs, just with a 0.0 cost estimate.

This module provides:
- TokenUsage: Normalized (tokens_in, tokens_out) pair
- ModelPricing: Per-model USD pricing per 1M tokens
- normalize_usage: Map any vendor usage block to a TokenUsage
- estimate_cost: Compute the USD estimate for one attempt

Example:
    >>> usage = normalize_usage({"input_tokens": 1000, "output_tokens": 500})
    >>> estimate_cost(usage.tokens_in, usage.tokens_out, ModelPricing(2.50, 10.00))
    0.0075
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

COST_CURRENCY = "USD"

# Field pairs tried in order; the first pair with any numeric value wins.
USAGE_FIELD_PAIRS = (
    ("prompt_tokens", "completion_tokens"),
    ("input_tokens", "output_tokens"),
)

TOKENS_PER_PRICING_UNIT = 1_000_000


@dataclass(frozen=True)
class TokenUsage:
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass(frozen=True)
class ModelPricing:
    """
    USD price per 1M tokens for one model.

    Attributes:
        input: Price per 1M input (prompt) tokens, None when unknown
        output: Price per 1M output (completion) tokens, None when unknown
    """

    input: float | None = None
    output: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ModelPricing":
        """Build pricing from a stored ``{"input": x, "output": y}`` mapping."""
        if not data:
            return cls()
        return cls(input=_as_number(data.get("input")), output=_as_number(data.get("output")))


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_count(value: Any) -> int | None:
    number = _as_number(value)
    if number is None:
        return None
    return max(0, int(number))


def normalize_usage(usage: dict[str, Any] | None) -> TokenUsage:
    """
    Normalize a vendor usage block into input/output token counts.

    Tries, in order:
    1. prompt_tokens / completion_tokens
    2. input_tokens / output_tokens
    3. total_tokens, counted entirely as input
    Falls back to (0, 0).

    Args:
        usage: Usage mapping as returned by the vendor (may be None)

    Returns:
        TokenUsage with non-negative integer counts

    Example:
        >>> normalize_usage({"total_tokens": 42})
        TokenUsage(tokens_in=42, tokens_out=0)
    """
    if not usage or not isinstance(usage, dict):
        return TokenUsage()

    for in_field, out_field in USAGE_FIELD_PAIRS:
        tokens_in = _as_count(usage.get(in_field))
        tokens_out = _as_count(usage.get(out_field))
        if tokens_in is not None or tokens_out is not None:
            return TokenUsage(tokens_in=tokens_in or 0, tokens_out=tokens_out or 0)

    total = _as_count(usage.get("total_tokens"))
    if total is not None:
        return TokenUsage(tokens_in=total, tokens_out=0)

    logger.debug(f"Usage block has no recognised token fields: keys={sorted(usage)}")
    return TokenUsage()


def estimate_cost(tokens_in: int, tokens_out: int, pricing: ModelPricing) -> float:
    """
    Estimate the USD cost of one attempt.

    cost = tokens_in * input / 1M + tokens_out * output / 1M, rounded to
    6 decimal places. Unset prices count as 0.

    Args:
        tokens_in: Prompt/input tokens
        tokens_out: Completion/output tokens
        pricing: Model pricing in USD per 1M tokens

    Returns:
        float: Estimated cost in USD
    """
    input_price = pricing.input or 0.0
    output_price = pricing.output or 0.0

    cost = (tokens_in * input_price + tokens_out * output_price) / TOKENS_PER_PRICING_UNIT

    return round(cost, 6)
