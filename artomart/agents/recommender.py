"""Shopper-facing product recommendation agent."""
from __future__ import annotations

from typing import Any, Dict

import structlog

from artomart.agents.base import ActionHandler, Agent, TaskContext, parse_payload
from artomart.agents.pricing import PricingMixin
from artomart.agents.schemas import (
    ParseSearchInput,
    ProductRecommendations,
    RecommendProductsInput,
    SearchFilters,
)
from artomart.core.models import TaskAssignment

log = structlog.get_logger(__name__)


class ProductRecommendationAgent(PricingMixin, Agent):
    """Recommends products and turns free-text searches into filters."""

    def action_handlers(self) -> Dict[str, ActionHandler]:
        handlers = super().action_handlers()
        handlers.update(
            {
                "recommendProducts": self._recommend_products,
                "parseSearchQuery": self._parse_search_query,
                "suggestPricing": self._suggest_pricing,
            }
        )
        return handlers

    async def _recommend_products(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(RecommendProductsInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            ProductRecommendations,
            "Recommend handcrafted products that match the shopper's request and preferences. "
            "matchScore is a number between 0 and 1.",
        )
        result["recommendations"].sort(key=lambda item: item["matchScore"], reverse=True)

        product_ids = [str(item["productId"]) for item in result["recommendations"]]
        if product_ids:
            # inventory keeps an eye on what we just recommended
            sent = self.send_message("orderProcessing", "stockCheck", {"productIds": product_ids})
            if not sent:
                log.debug("recommender.stock_check.skipped", task_id=assignment.task_id)
        return result

    async def _parse_search_query(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(ParseSearchInput, assignment.payload)
        filters = await self.run_structured(
            ctx,
            request.model_dump(),
            SearchFilters,
            "Parse this natural-language product search into structured filters.",
        )
        if (
            filters["budgetMin"] is not None
            and filters["budgetMax"] is not None
            and filters["budgetMin"] > filters["budgetMax"]
        ):
            filters["budgetMin"], filters["budgetMax"] = filters["budgetMax"], filters["budgetMin"]
        return filters
