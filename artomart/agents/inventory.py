"""Order processing and inventory agent."""
from __future__ import annotations

from typing import Any, Dict, Set

import structlog

from artomart.agents.base import ActionHandler, Agent, TaskContext, parse_payload
from artomart.agents.schemas import LowStockInput, ReorderInput, ReorderRecommendations
from artomart.core.models import A2AMessage, TaskAssignment

log = structlog.get_logger(__name__)


class OrderProcessingAgent(Agent):
    """Stock checks and reorder advice.

    Products other agents recommend arrive as ``stockCheck`` messages and
    are flagged as ``watched`` in later low-stock reports.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.watchlist: Set[str] = set()

    def action_handlers(self) -> Dict[str, ActionHandler]:
        handlers = super().action_handlers()
        handlers.update(
            {
                "reorderRecommendations": self._reorder_recommendations,
                "checkLowStock": self._check_low_stock,
            }
        )
        return handlers

    async def handle_message(self, message: A2AMessage) -> None:
        if message.name != "stockCheck":
            await super().handle_message(message)
            return
        product_ids = [str(pid) for pid in message.payload.get("productIds", [])]
        self.watchlist.update(product_ids)
        log.debug("inventory.watchlist.updated", sender=message.sender_id, added=len(product_ids))

    async def _check_low_stock(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(LowStockInput, assignment.payload)
        ctx.progress(0.3, "Scanning inventory")
        low = [item for item in request.products if item.stock <= item.threshold]
        low.sort(key=lambda item: item.stock - item.threshold)
        ctx.progress(0.9, "Building report")
        return {
            "lowStockItems": [
                {
                    "productId": item.productId,
                    "name": item.name,
                    "stock": item.stock,
                    "threshold": item.threshold,
                    "shortfall": item.threshold - item.stock,
                    "outOfStock": item.stock <= 0,
                    "watched": str(item.productId) in self.watchlist,
                }
                for item in low
            ],
            "checkedCount": len(request.products),
        }

    async def _reorder_recommendations(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(ReorderInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            ReorderRecommendations,
            "Recommend reorder quantities for these products based on recent sales.",
        )
        known = {str(record.productId) for record in request.salesData}
        result["recommendations"] = [
            item for item in result["recommendations"] if str(item["productId"]) in known
        ]
        return result
