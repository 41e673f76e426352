"""
Tests for utils.cost module.

Tests cover:
- Usage normalization across vendor field names
- Cost estimation with per-model pricing
- Missing pricing (cost 0.0)
- Rounding to 6 decimal places
"""

import pytest

from ai_research_engine.utils.cost import (
    COST_CURRENCY,
    ModelPricing,
    TokenUsage,
    estimate_cost,
    normalize_usage,
)


class TestNormalizeUsage:
    """Test suite for normalize_usage()."""

    def test_prompt_completion_fields(self):
        usage = normalize_usage({"prompt_tokens": 120, "completion_tokens": 30})
        assert usage == TokenUsage(tokens_in=120, tokens_out=30)

    def test_input_output_fields(self):
        usage = normalize_usage({"input_tokens": 1000, "output_tokens": 500})
        assert usage == TokenUsage(tokens_in=1000, tokens_out=500)

    def test_prompt_fields_take_precedence(self):
        usage = normalize_usage(
            {
                "prompt_tokens": 10,
                "completion_tokens": 5,
                "input_tokens": 999,
                "output_tokens": 999,
            }
        )
        assert usage == TokenUsage(tokens_in=10, tokens_out=5)

    def test_total_only_counts_as_input(self):
        usage = normalize_usage({"total_tokens": 42})
        assert usage == TokenUsage(tokens_in=42, tokens_out=0)

    def test_partial_pair_fills_zero(self):
        usage = normalize_usage({"input_tokens": 7})
        assert usage == TokenUsage(tokens_in=7, tokens_out=0)

    @pytest.mark.parametrize("usage", [None, {}, {"unrelated": 3}, "not a dict"])
    def test_unusable_usage_is_zero(self, usage):
        assert normalize_usage(usage) == TokenUsage()

    def test_numeric_strings_are_accepted(self):
        usage = normalize_usage({"prompt_tokens": "15", "completion_tokens": "4"})
        assert usage == TokenUsage(tokens_in=15, tokens_out=4)

    def test_negative_counts_clamped(self):
        usage = normalize_usage({"prompt_tokens": -5, "completion_tokens": 3})
        assert usage == TokenUsage(tokens_in=0, tokens_out=3)


class TestModelPricing:
    """Test suite for ModelPricing.from_dict()."""

    def test_from_dict(self):
        pricing = ModelPricing.from_dict({"input": 2.5, "output": "10"})
        assert pricing == ModelPricing(input=2.5, output=10.0)

    def test_from_empty_dict(self):
        assert ModelPricing.from_dict(None) == ModelPricing()
        assert ModelPricing.from_dict({}) == ModelPricing()

    def test_invalid_values_become_none(self):
        pricing = ModelPricing.from_dict({"input": "cheap", "output": True})
        assert pricing.input is None
        assert pricing.output is None


class TestEstimateCost:
    """Test suite for estimate_cost()."""

    def test_reference_price(self):
        # 1000 * 2.50/1M + 500 * 10.00/1M
        cost = estimate_cost(1000, 500, ModelPricing(input=2.50, output=10.00))
        assert cost == 0.0075

    def test_missing_pricing_is_free(self):
        assert estimate_cost(1000, 500, ModelPricing()) == 0.0

    def test_missing_output_price(self):
        assert estimate_cost(1_000_000, 1_000_000, ModelPricing(input=1.0)) == 1.0

    def test_zero_tokens(self):
        assert estimate_cost(0, 0, ModelPricing(input=5.0, output=15.0)) == 0.0

    def test_rounded_to_six_places(self):
        cost = estimate_cost(1, 1, ModelPricing(input=0.15, output=0.60))
        assert cost == round(cost, 6)
        assert cost == 0.000001

    def test_currency(self):
        assert COST_CURRENCY == "USD"
