"""
Pricing calculations for the enrichment inference calls.

Costs are Decimal and rounded UP to COST_PRECISION before any comparison
against the budget, so a threshold cannot flap on float noise.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict

from .token_counter import CHARS_PER_TOKEN, TokenUsage

# Five decimal places: sub-cent inference calls still register in the ledger.
COST_PRECISION = Decimal("0.00001")

# Characters of prompt scaffolding per sub-analysis, and per category line.
PROMPT_BASE_CHARS = 900
PROMPT_CHARS_PER_CATEGORY = 40
PROMPT_CHARS_PER_HISTORY_PERIOD = 24


def quantize_cost(amount: Decimal) -> Decimal:
    """Round a monetary amount UP to the ledger's precision."""
    return Decimal(amount).quantize(COST_PRECISION, rounding=ROUND_UP)


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]

    def supports(self, model: str) -> bool:
        return model in self.prices


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "amazon.titan-text-express-v1": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0008"),
        completion_cost_per_1k=Decimal("0.0016"),
    ),
    "amazon.titan-text-lite-v1": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0003"),
        completion_cost_per_1k=Decimal("0.0004"),
    ),
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.00015"),
        completion_cost_per_1k=Decimal("0.0006"),
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.01"),
    ),
    "gpt-3.5-turbo": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0005"),
        completion_cost_per_1k=Decimal("0.0015"),
    ),
})


def calculate_cost(model: str, usage: TokenUsage) -> Decimal:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Total cost rounded UP to 5 decimal places

    Raises:
        ValueError: If model is not supported
    """
    pricing = PRICING_TABLE.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    return quantize_cost(prompt_cost + completion_cost)


def estimate_inference_cost(
    model: str,
    category_count: int,
    analyses: int,
    max_tokens: int,
    history_count: int = 0,
) -> Decimal:
    """Upper-bound cost of one enrichment round before it is issued.

    Prompt size is estimated from the input shape (number of categories and
    historical periods); completion size is assumed to hit `max_tokens` for
    every sub-analysis.

    Args:
        model: Model identifier
        category_count: Categories in the cost breakdown
        analyses: Number of sub-analyses that will be requested
        max_tokens: Completion token cap per sub-analysis
        history_count: Historical periods included in the anomaly prompt

    Returns:
        Estimated cost rounded UP to 5 decimal places

    Raises:
        ValueError: If model is not supported or an argument is negative
    """
    if category_count < 0 or analyses < 0 or max_tokens < 0 or history_count < 0:
        raise ValueError("estimate inputs must be >= 0")

    prompt_chars = analyses * (PROMPT_BASE_CHARS + category_count * PROMPT_CHARS_PER_CATEGORY)
    prompt_chars += history_count * PROMPT_CHARS_PER_HISTORY_PERIOD
    usage = TokenUsage(
        prompt_tokens=math.ceil(prompt_chars / CHARS_PER_TOKEN),
        completion_tokens=analyses * max_tokens,
    )
    return calculate_cost(model, usage)
