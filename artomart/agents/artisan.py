"""Assistant for artisans managing their shop."""
from __future__ import annotations

from typing import Any, Dict

from artomart.agents.base import ActionHandler, Agent, TaskContext, parse_payload
from artomart.agents.pricing import PricingMixin
from artomart.agents.schemas import (
    BusinessInsights,
    BusinessInsightsInput,
    ListingOptimization,
    OptimizeListingInput,
)
from artomart.core.errors import ValidationFailed
from artomart.core.models import TaskAssignment


class ArtisanAssistantAgent(PricingMixin, Agent):
    """Pricing, listing optimisation and business insight for sellers."""

    def action_handlers(self) -> Dict[str, ActionHandler]:
        handlers = super().action_handlers()
        handlers.update(
            {
                "suggestPricing": self._suggest_pricing,
                "optimizeListing": self._optimize_listing,
                "businessInsights": self._business_insights,
            }
        )
        return handlers

    async def _optimize_listing(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(OptimizeListingInput, assignment.payload)
        goals = [name for name, wanted in request.goals.model_dump().items() if wanted]
        if not goals:
            raise ValidationFailed("At least one optimization goal is required")
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            ListingOptimization,
            "Improve this marketplace listing. Only return suggestions for: " + ", ".join(goals) + ".",
        )
        # drop sections nobody asked for
        return {name: value for name, value in result.items() if name in goals and value is not None}

    async def _business_insights(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(BusinessInsightsInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            BusinessInsights,
            f"Analyse this artisan's sales and reviews over {request.timeframe} and suggest how to grow.",
        )
        result["artisanId"] = request.artisanId
        result["timeframe"] = request.timeframe
        return result
