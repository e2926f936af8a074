"""
Pricing calculations and rate management.

Handles cost computations for the models the assistant calls.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict, Tuple

from .token_counter import TokenUsage

COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal  # Cost per 1K input tokens
    output_cost_per_1k: Decimal  # Cost per 1K output tokens


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

    def __contains__(self, model: str) -> bool:
        return model in self.prices


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "gpt-3.5-turbo": ModelPricing(
        input_cost_per_1k=Decimal("0.0005"),
        output_cost_per_1k=Decimal("0.0015")
    ),
    "gpt-4-turbo-preview": ModelPricing(
        input_cost_per_1k=Decimal("0.01"),
        output_cost_per_1k=Decimal("0.03")
    ),
    "gpt-4": ModelPricing(
        input_cost_per_1k=Decimal("0.03"),
        output_cost_per_1k=Decimal("0.06")
    ),
    "gpt-4o": ModelPricing(
        input_cost_per_1k=Decimal("0.005"),
        output_cost_per_1k=Decimal("0.015")
    ),
})


def calculate_cost_split(
    model: str,
    usage: TokenUsage,
    table: PricingTable = PRICING_TABLE,
) -> Tuple[float, float]:
    """Calculate input and output cost separately with conservative rounding.
    
    Args:
        model: Model identifier
        usage: Token usage data
        table: Price table to use
        
    Returns:
        Tuple of (input_cost, output_cost), each rounded UP to 6 decimal places
        
    Raises:
        ValueError: If model is not supported
    """
    pricing = table.get_pricing(model)
    
    input_cost = (Decimal(usage.input_tokens) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(usage.output_tokens) / Decimal("1000")) * pricing.output_cost_per_1k
    
    return (
        float(input_cost.quantize(COST_QUANTUM, rounding=ROUND_UP)),
        float(output_cost.quantize(COST_QUANTUM, rounding=ROUND_UP)),
    )

