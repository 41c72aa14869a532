"""
Unit tests for pricing calculations.

Tests cost accuracy, rounding behavior, and error handling.
"""

import pytest
from decimal import Decimal

from oracle_guard.core.pricing import (
    DEFAULT_PRICING,
    ModelPricing,
    PricingTable,
    calculate_cost,
    default_pricing,
)
from oracle_guard.core.token_counter import TokenUsage, estimate_tokens


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(input_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        """Verify zero token handling."""
        usage = TokenUsage(input_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0

    def test_estimate_tokens(self):
        """Verify the character-based estimate."""
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcdefgh") == 2
        assert estimate_tokens("abc") == 0


class TestPricingTable:
    """Test pricing table functionality."""

    def test_get_supported_model(self):
        """Verify pricing retrieval for supported models."""
        gpt4_pricing = DEFAULT_PRICING.get_pricing("gpt-4")
        assert gpt4_pricing.input_cost_per_1k == Decimal("0.03")
        assert gpt4_pricing.completion_cost_per_1k == Decimal("0.06")

    def test_unsupported_model_raises_error(self):
        """Verify error for unknown models."""
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            DEFAULT_PRICING.get_pricing("unknown-model")

    def test_local_models_are_free(self):
        """Verify local and offline models cost nothing."""
        assert DEFAULT_PRICING.get_pricing("llama").input_cost_per_1k == Decimal("0")
        assert DEFAULT_PRICING.has_model("offline-fallback")

    def test_register_model(self):
        """Verify runtime registration does not touch other tables."""
        table = default_pricing()
        table.register("custom", ModelPricing(Decimal("1"), Decimal("2")))
        assert "custom" in table.models()
        assert not DEFAULT_PRICING.has_model("custom")

    def test_copy_is_independent(self):
        """Verify copies do not share registrations."""
        table = PricingTable()
        clone = table.copy()
        clone.register("x", ModelPricing(Decimal("0"), Decimal("0")))
        assert not table.has_model("x")


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost_gpt4(self):
        """Verify exact cost calculation for GPT-4."""
        usage = TokenUsage(input_tokens=1000, completion_tokens=500)
        cost = calculate_cost("gpt-4", usage)
        # Input: 1000/1000 * $0.03 = $0.03
        # Completion: 500/1000 * $0.06 = $0.03
        assert cost == 0.06

    def test_exact_cost_gpt35_turbo(self):
        """Verify exact cost calculation for GPT-3.5-Turbo."""
        usage = TokenUsage(input_tokens=1000, completion_tokens=1000)
        cost = calculate_cost("gpt-3.5-turbo", usage)
        # Input: $0.0005, Completion: $0.0015
        assert cost == 0.002

    def test_rounding_up_behavior(self):
        """Verify costs round UP to the micro-dollar."""
        usage = TokenUsage(input_tokens=1, completion_tokens=0)
        cost = calculate_cost("gpt-3.5-turbo", usage)
        # 1/1000 * $0.0005 = $0.0000005 -> rounds UP to $0.000001
        assert cost == 0.000001

    def test_exact_micro_amounts_unchanged(self):
        """Verify exact six-decimal amounts are not bumped."""
        usage = TokenUsage(input_tokens=1, completion_tokens=1)
        assert calculate_cost("gpt-4", usage) == 0.00009

    def test_large_token_counts(self):
        """Verify calculation with very large token counts."""
        usage = TokenUsage(input_tokens=1000000, completion_tokens=500000)
        cost = calculate_cost("gpt-4", usage)
        # Input: 1000 * $0.03 = $30, Completion: 500 * $0.06 = $30
        assert cost == 60.00

    def test_zero_tokens_cost(self):
        """Verify cost calculation with zero tokens."""
        usage = TokenUsage(input_tokens=0, completion_tokens=0)
        assert calculate_cost("gpt-4", usage) == 0.00

    def test_local_model_cost(self):
        """Verify local models cost nothing regardless of volume."""
        usage = TokenUsage(input_tokens=50000, completion_tokens=50000)
        assert calculate_cost("llama", usage) == 0.0

    def test_unsupported_model_cost(self):
        """Verify cost calculation rejects unknown models."""
        with pytest.raises(ValueError):
            calculate_cost("unknown-model", TokenUsage(1, 1))
