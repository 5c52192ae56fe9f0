"""Content generation and marketing agent."""
from __future__ import annotations

from typing import Any, Dict

from artomart.agents.base import ActionHandler, Agent, TaskContext, parse_payload
from artomart.agents.schemas import (
    ArtisanStory,
    ArtisanStoryInput,
    CustomerSegments,
    ListingContent,
    ListingContentInput,
    MarketingContent,
    MarketingInput,
    SegmentInput,
    SeoInput,
    SeoOptimization,
)
from artomart.core.models import TaskAssignment

SHORT_DESCRIPTION_LIMIT = 200
_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


class ContentGenerationAgent(Agent):
    def action_handlers(self) -> Dict[str, ActionHandler]:
        handlers = super().action_handlers()
        handlers.update(
            {
                "generateListingContent": self._generate_listing_content,
                "generateMarketingContent": self._generate_marketing_content,
                "segmentCustomers": self._segment_customers,
                "createArtisanStory": self._create_artisan_story,
                "optimizeForSEO": self._optimize_for_seo,
            }
        )
        return handlers

    async def _generate_listing_content(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(ListingContentInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            ListingContent,
            "Write listing content for this handcrafted product, including its cultural story "
            f"and SEO metadata. shortDescription is at most {SHORT_DESCRIPTION_LIMIT} characters.",
        )
        short = result["shortDescription"]
        if len(short) > SHORT_DESCRIPTION_LIMIT:
            result["shortDescription"] = short[: SHORT_DESCRIPTION_LIMIT - 1].rstrip() + "…"
        return result

    async def _generate_marketing_content(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(MarketingInput, assignment.payload)
        campaign = request.campaign
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            MarketingContent,
            f"Write {campaign.type} marketing copy for the '{campaign.target}' audience.",
        )
        result["campaign"] = campaign.model_dump()
        return result

    async def _segment_customers(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(SegmentInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            CustomerSegments,
            "Group these customers into marketing segments by spend and interests.",
        )
        known = {customer.id for customer in request.customers}
        segments = []
        for segment in result["segments"]:
            members = [cid for cid in segment["customers"] if cid in known]
            if members:
                segments.append({**segment, "customers": members})
        return {"segments": segments}

    async def _create_artisan_story(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(ArtisanStoryInput, assignment.payload)
        return await self.run_structured(
            ctx,
            request.model_dump(),
            ArtisanStory,
            "Write an engaging biography of this artisan that highlights their journey, "
            "their craft tradition and its cultural impact.",
        )

    async def _optimize_for_seo(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(SeoInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            SeoOptimization,
            f"Optimize this content for search on {request.platform} without losing its "
            "readability or cultural authenticity. Report keyword density as a percentage.",
        )
        wanted = {keyword.lower() for keyword in request.keywords}
        optimized = result["optimized"]
        optimized["keywords"] = [entry for entry in optimized["keywords"] if entry["word"].lower() in wanted]
        result["analysis"]["improvements"].sort(key=lambda item: _PRIORITY_ORDER[item["priority"]])
        result["platform"] = request.platform
        return result
