"""
Pricing calculations and rate management.

Handles cost computations for the models the oracle can call.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_UP
from typing import Dict, List

from .token_counter import TokenUsage

COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal  # USD per 1K input tokens
    completion_cost_per_1k: Decimal  # USD per 1K completion tokens


@dataclass
class PricingTable:
    """Pricing table for known models.

    Unlike a fixed rate card, models can be registered at runtime so local
    or self-hosted backends can be priced explicitly.
    """
    prices: Dict[str, ModelPricing] = field(default_factory=dict)

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

    def has_model(self, model: str) -> bool:
        return model in self.prices

    def register(self, model: str, pricing: ModelPricing) -> None:
        self.prices[model] = pricing

    def models(self) -> List[str]:
        return sorted(self.prices)

    def copy(self) -> "PricingTable":
        return PricingTable(dict(self.prices))


def default_pricing() -> PricingTable:
    """Fresh table with the built-in rate card."""
    return PricingTable({
        "gpt-4": ModelPricing(
            input_cost_per_1k=Decimal("0.03"),
            completion_cost_per_1k=Decimal("0.06")
        ),
        "gpt-3.5-turbo": ModelPricing(
            input_cost_per_1k=Decimal("0.0005"),
            completion_cost_per_1k=Decimal("0.0015")
        ),
        "llama": ModelPricing(
            input_cost_per_1k=Decimal("0"),
            completion_cost_per_1k=Decimal("0")
        ),
        "offline-fallback": ModelPricing(
            input_cost_per_1k=Decimal("0"),
            completion_cost_per_1k=Decimal("0")
        ),
    })


DEFAULT_PRICING = default_pricing()


def calculate_cost_decimal(pricing: ModelPricing, usage: TokenUsage) -> Decimal:
    """Exact cost rounded UP to 6 decimal places."""
    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k
    return (input_cost + completion_cost).quantize(COST_QUANTUM, rounding=ROUND_UP)


def calculate_cost(model: str, usage: TokenUsage, table: PricingTable = DEFAULT_PRICING) -> float:
    """Calculate total cost for model usage with conservative rounding.

    Args:
        model: Model identifier
        usage: Token usage data
        table: Pricing table to consult

    Returns:
        Total cost in USD rounded UP to 6 decimal places

    Raises:
        ValueError: If model is not supported
    """
    pricing = table.get_pricing(model)
    return float(calculate_cost_decimal(pricing, usage))
