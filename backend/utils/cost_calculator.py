"""
Cost Calculator - Production Ready
Token estimation and per-generation cost accounting for completion provider
calls. Provider-reported usage wins over local estimates.
"""

from typing import Dict, Any, Optional
from decimal import Decimal, ROUND_HALF_UP

from config import settings


# Rough characters-per-token ratio for English prompts
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Cheap token estimate used for prompt budgeting."""
    if not text:
        return 0
    return max(1, (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN)


# ============================================================================
# COST CALCULATOR
# ============================================================================

class CostCalculator:
    """
    Cost calculation for plan generations.

    Prices are USD per 1K tokens, split into prompt and completion rates,
    taken from ProviderConfig unless overridden.
    """

    def __init__(
        self,
        prompt_cost_per_1k: Optional[float] = None,
        completion_cost_per_1k: Optional[float] = None
    ):
        self.prompt_cost_per_1k = (
            prompt_cost_per_1k if prompt_cost_per_1k is not None
            else settings.provider.prompt_cost_per_1k
        )
        self.completion_cost_per_1k = (
            completion_cost_per_1k if completion_cost_per_1k is not None
            else settings.provider.completion_cost_per_1k
        )
        self.total_cost_usd = 0.0
        self.total_tokens = 0

    def calculate_cost(self, prompt_tokens: int = 0, completion_tokens: int = 0) -> float:
        """
        Cost of one generation.

        Returns:
            Cost in USD rounded to micro-dollar precision
        """
        subtotal = (
            (prompt_tokens / 1000) * self.prompt_cost_per_1k
            + (completion_tokens / 1000) * self.completion_cost_per_1k
        )

        cost = Decimal(str(subtotal)).quantize(
            Decimal("0.000001"),
            rounding=ROUND_HALF_UP
        )
        return float(cost)

    def account(
        self,
        prompt_text: str,
        completion_text: str,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Token usage and cost for one provider round trip.

        Reported usage is used when present; otherwise tokens are estimated
        from text length.
        """
        estimated = prompt_tokens is None or completion_tokens is None
        prompt_tokens = prompt_tokens if prompt_tokens is not None else estimate_tokens(prompt_text)
        completion_tokens = completion_tokens if completion_tokens is not None else estimate_tokens(completion_text)
        cost = self.calculate_cost(prompt_tokens, completion_tokens)

        self.total_cost_usd += cost
        self.total_tokens += prompt_tokens + completion_tokens

        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
            "cost_usd": cost,
            "estimated": estimated
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_cost_usd": round(self.total_cost_usd, 6),
            "total_tokens": self.total_tokens,
            "prompt_cost_per_1k": self.prompt_cost_per_1k,
            "completion_cost_per_1k": self.completion_cost_per_1k
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CostCalculator",
    "estimate_tokens",
    "CHARS_PER_TOKEN"
]
