"""Application runtime composition."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Type

import structlog

from artomart.agents.archetypes import ARCHETYPES
from artomart.agents.artisan import ArtisanAssistantAgent
from artomart.agents.base import Agent
from artomart.agents.inventory import OrderProcessingAgent
from artomart.agents.marketing import ContentGenerationAgent
from artomart.agents.recommender import ProductRecommendationAgent
from artomart.agents.support import CustomerSupportAgent
from artomart.config import Config
from artomart.core.conversations import ConversationStore
from artomart.core.message_bus import A2AMessageBus
from artomart.core.models import Archetype
from artomart.core.rate_limit import TokenBucketLimiter
from artomart.orchestration.dispatcher import DispatchPolicy, TaskDispatcher
from artomart.orchestration.journal import ResultJournal
from artomart.orchestration.registry import AgentRegistry
from artomart.realtime.channel import RealtimeChannel
from artomart.services.llm_pool import CompletionProvider, LLMPool, OpenAICompatibleProvider
from artomart.services.model_client import BackoffPolicy, ModelClient

log = structlog.get_logger(__name__)

TokenVerifier = Callable[[str], bool]

_AGENT_CATALOG: Dict[str, Type[Agent]] = {
    "productRecommendation": ProductRecommendationAgent,
    "customerSupport": CustomerSupportAgent,
    "artisanAssistant": ArtisanAssistantAgent,
    "orderProcessing": OrderProcessingAgent,
    "contentGeneration": ContentGenerationAgent,
}


def accept_any_token(token: str) -> bool:
    """Default verifier: session issuance lives outside this service."""
    return bool(token.strip())


@dataclass
class Runtime:
    """Every long-lived collaborator of the service, built from one Config."""

    config: Config
    bus: A2AMessageBus
    pool: LLMPool
    model_client: ModelClient
    conversations: ConversationStore
    channel: RealtimeChannel
    registry: AgentRegistry
    dispatcher: TaskDispatcher
    limiter: TokenBucketLimiter
    token_verifier: TokenVerifier = accept_any_token
    started_at: float = field(default_factory=time.time)

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: Optional[CompletionProvider] = None,
        *,
        archetypes: Mapping[str, Archetype] = ARCHETYPES,
        backoff: Optional[BackoffPolicy] = None,
        dispatch_policy: DispatchPolicy = DispatchPolicy(),
        token_verifier: TokenVerifier = accept_any_token,
    ) -> "Runtime":
        provider_config = config.provider
        bus = A2AMessageBus()
        pool = LLMPool(
            provider if provider is not None else OpenAICompatibleProvider(provider_config),
            max_concurrent=provider_config.max_concurrent,
            requests_per_minute=provider_config.requests_per_minute,
        )
        model_client = ModelClient(
            pool,
            archetypes,
            model=provider_config.model,
            timeout_seconds=provider_config.timeout_seconds,
            backoff=backoff or BackoffPolicy(attempts=provider_config.max_attempts),
            performance_logging=config.performance_logging,
        )
        conversations = ConversationStore()
        channel = RealtimeChannel(idle_seconds=config.session_idle_seconds)
        registry = AgentRegistry(
            archetypes,
            _AGENT_CATALOG,
            bus=bus,
            model_client=model_client,
            conversations=conversations,
        )
        journal = ResultJournal(config.result_journal_path) if config.result_journal_path else None
        dispatcher = TaskDispatcher(
            registry,
            channel,
            default_deadline=config.task_deadline_seconds,
            retention_seconds=config.task_retention_seconds,
            policy=dispatch_policy,
            journal=journal,
        )
        limiter = TokenBucketLimiter(
            config.gateway.rate_limit_max_requests,
            config.gateway.rate_limit_window_seconds,
        )
        return cls(
            config=config,
            bus=bus,
            pool=pool,
            model_client=model_client,
            conversations=conversations,
            channel=channel,
            registry=registry,
            dispatcher=dispatcher,
            limiter=limiter,
            token_verifier=token_verifier,
        )

    async def start(self) -> None:
        await self.registry.start_all()
        self.dispatcher.start()
        self.channel.start(housekeeping=(self.prune_rate_limits,))
        log.info("runtime.started", archetypes=list(self.registry.archetypes), model=self.model_client.model)

    def prune_rate_limits(self) -> int:
        """Drop gateway buckets untouched for a whole rate limit window."""
        pruned = self.limiter.prune(self.config.gateway.rate_limit_window_seconds)
        if pruned:
            log.debug("runtime.rate_limits.pruned", count=pruned)
        return pruned

    async def shutdown(self) -> None:
        """Stop agents first so their final task events still reach the channel."""
        await self.registry.shutdown()
        await self.dispatcher.shutdown()
        await self.channel.shutdown()
        await self.pool.aclose()
        log.info("runtime.stopped")
