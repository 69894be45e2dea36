"""
Unit tests for pricing calculations.

Tests cost accuracy, rounding behavior, and error handling.
"""

import pytest
from decimal import Decimal

from spend_monitor.core.pricing import (
    PRICING_TABLE,
    calculate_cost,
    estimate_inference_cost,
    quantize_cost,
)
from spend_monitor.core.token_counter import TokenUsage, estimate_tokens


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        """Verify zero token handling."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            TokenUsage(prompt_tokens=-1, completion_tokens=0)

    def test_from_text(self):
        """Verify the four-characters-per-token estimate rounds up."""
        usage = TokenUsage.from_text("abcde", "abcd")
        assert usage.prompt_tokens == 2
        assert usage.completion_tokens == 1

    def test_estimate_tokens_of_empty_text(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0


class TestPricingTable:
    """Test pricing table functionality."""

    def test_get_supported_model(self):
        """Verify pricing retrieval for supported models."""
        pricing = PRICING_TABLE.get_pricing("amazon.titan-text-express-v1")
        assert pricing.prompt_cost_per_1k == Decimal("0.0008")
        assert pricing.completion_cost_per_1k == Decimal("0.0016")

    def test_unsupported_model_raises_error(self):
        """Verify error for unknown models."""
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            PRICING_TABLE.get_pricing("unknown-model")

    def test_supports(self):
        assert PRICING_TABLE.supports("gpt-4o-mini")
        assert not PRICING_TABLE.supports("gpt-4")


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost_gpt4o(self):
        """Verify exact cost calculation for GPT-4o."""
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        cost = calculate_cost("gpt-4o", usage)
        # Prompt: 1000/1000 * $0.0025 = $0.0025
        # Completion: 500/1000 * $0.01 = $0.005
        assert cost == Decimal("0.0075")

    def test_exact_cost_gpt35_turbo(self):
        """Verify exact cost calculation for GPT-3.5-Turbo."""
        usage = TokenUsage(prompt_tokens=2000, completion_tokens=1000)
        cost = calculate_cost("gpt-3.5-turbo", usage)
        # Prompt: 2000/1000 * $0.0005 = $0.001
        # Completion: 1000/1000 * $0.0015 = $0.0015
        assert cost == Decimal("0.0025")

    def test_rounding_up_behavior(self):
        """Verify costs round UP (conservative bias)."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=1)
        cost = calculate_cost("amazon.titan-text-express-v1", usage)
        # $0.0000024 -> should round UP to $0.00001
        assert cost == Decimal("0.00001")

    def test_fractional_token_calculation(self):
        """Verify precise calculation with fractional tokens."""
        usage = TokenUsage(prompt_tokens=333, completion_tokens=667)
        cost = calculate_cost("gpt-4o-mini", usage)
        # Prompt: 333/1000 * $0.00015 = $0.00004995
        # Completion: 667/1000 * $0.0006 = $0.0004002
        # Total: $0.00045015 -> should round UP to $0.00046
        assert cost == Decimal("0.00046")

    def test_large_token_counts(self):
        """Verify calculation with very large token counts."""
        usage = TokenUsage(prompt_tokens=1000000, completion_tokens=500000)
        cost = calculate_cost("gpt-4o", usage)
        assert cost == Decimal("7.5")

    def test_zero_tokens_cost(self):
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert calculate_cost("gpt-4o", usage) == Decimal("0")

    def test_unknown_model_error(self):
        """Verify error handling for unknown models."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            calculate_cost("unknown-model", usage)

    def test_quantize_cost_rounds_up(self):
        assert quantize_cost(Decimal("0.000001")) == Decimal("0.00001")
        assert quantize_cost(Decimal("1.00000")) == Decimal("1")


class TestInferenceCostEstimate:
    """Test the pre-call upper-bound estimate."""

    def test_estimate_from_input_shape(self):
        cost = estimate_inference_cost("gpt-4o-mini", category_count=5, analyses=3, max_tokens=1000)
        # Prompt: 3 * (900 + 5 * 40) chars = 825 tokens -> $0.00012375
        # Completion: 3000 tokens -> $0.0018
        assert cost == Decimal("0.00193")

    def test_history_increases_estimate(self):
        cost = estimate_inference_cost(
            "gpt-4o-mini", category_count=5, analyses=3, max_tokens=1000, history_count=10)
        assert cost == Decimal("0.00194")

    def test_no_analyses_costs_nothing(self):
        assert estimate_inference_cost("gpt-4o", category_count=10, analyses=0, max_tokens=1000) == 0

    def test_negative_input_rejected(self):
        with pytest.raises(ValueError):
            estimate_inference_cost("gpt-4o", category_count=-1, analyses=1, max_tokens=100)

    def test_unknown_model_rejected(self):
        with pytest.raises(ValueError, match="Unsupported model"):
            estimate_inference_cost("unknown-model", category_count=1, analyses=1, max_tokens=100)
