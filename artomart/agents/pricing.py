"""Pricing advice shared by the recommender and the artisan assistant."""
from __future__ import annotations

from statistics import median
from typing import Any, Dict, TYPE_CHECKING

from artomart.agents.base import TaskContext, parse_payload
from artomart.agents.schemas import PricingInput, PricingRecommendation

if TYPE_CHECKING:
    from artomart.core.models import TaskAssignment

PRICING_INSTRUCTION = (
    "Suggest a fair price in INR for this handcrafted product. Consider materials, "
    "production time, crafting complexity, regional market and competitor prices. "
    "recommendedPrice must fall inside priceRange."
)


class PricingMixin:
    """Adds the ``suggestPricing`` action to an :class:`~artomart.agents.base.Agent`."""

    async def _suggest_pricing(self, assignment: "TaskAssignment", ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(PricingInput, assignment.payload)
        result = await self.run_structured(  # type: ignore[attr-defined]
            ctx,
            request.model_dump(),
            PricingRecommendation,
            PRICING_INSTRUCTION,
        )
        price_range = result["priceRange"]
        low, high = sorted((price_range["min"], price_range["max"]))
        result["priceRange"] = {"min": low, "max": high}
        result["recommendedPrice"] = min(max(result["recommendedPrice"], low), high)

        competitors = request.marketContext.competitorPrices
        if competitors:
            result["competitorMedian"] = median(competitors)
        return result
