"""Customer support agent."""
from __future__ import annotations

from typing import Any, Dict, List

from artomart.agents.base import ActionHandler, Agent, TaskContext, parse_payload
from artomart.agents.schemas import (
    EscalationInput,
    FaqAnswer,
    FaqInput,
    QueryCategory,
    SuggestedActions,
    SupportQueryInput,
)
from artomart.core.models import TaskAssignment

ESCALATION_KEYWORDS = (
    "refund",
    "complaint",
    "legal",
    "urgent",
    "emergency",
    "fraud",
    "stolen",
    "damaged",
)


def escalation_triggers(query: str) -> List[str]:
    lowered = query.lower()
    return [keyword for keyword in ESCALATION_KEYWORDS if keyword in lowered]


def needs_escalation(query: str) -> bool:
    """True when a human should look at the query."""
    return bool(escalation_triggers(query))


class CustomerSupportAgent(Agent):
    def action_handlers(self) -> Dict[str, ActionHandler]:
        handlers = super().action_handlers()
        handlers.update(
            {
                "categorizeQuery": self._categorize_query,
                "suggestActions": self._suggest_actions,
                "faqAnswer": self._faq_answer,
                "checkEscalation": self._check_escalation,
            }
        )
        return handlers

    async def _categorize_query(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(SupportQueryInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            QueryCategory,
            "Categorize this customer support query and judge its sentiment.",
        )
        result["escalate"] = needs_escalation(request.query) or result["sentiment"] == "negative"
        return result

    async def _suggest_actions(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(SupportQueryInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            SuggestedActions,
            "Suggest concrete next actions for this customer query, most important first.",
        )
        if needs_escalation(request.query):
            result["actions"].insert(
                0,
                {
                    "action": "escalate",
                    "description": "Connect the customer with a human support agent",
                    "priority": "high",
                },
            )
        return result

    async def _faq_answer(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(FaqInput, assignment.payload)
        result = await self.run_structured(
            ctx,
            request.model_dump(),
            FaqAnswer,
            "Answer the question from the most relevant FAQ entry. If no entry matches, "
            "answer helpfully and leave matchedQuestion empty.",
        )
        known = {faq.question for faq in request.faqs}
        if result["matchedQuestion"] not in known:
            result["matchedQuestion"] = None
        result["escalate"] = needs_escalation(request.question)
        return result

    async def _check_escalation(self, assignment: TaskAssignment, ctx: TaskContext) -> Dict[str, Any]:
        request = parse_payload(EscalationInput, assignment.payload)
        ctx.progress(0.5, "Checking escalation triggers")
        triggers = escalation_triggers(request.query)
        return {"escalate": bool(triggers), "triggers": triggers}
