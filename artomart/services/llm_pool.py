"""Shared access to the upstream model provider with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import openai
import structlog

from artomart.config import ModelProviderConfig
from artomart.core.errors import MalformedResponse, ProviderError, TransientProviderError
from artomart.core.rate_limit import TokenBucketLimiter

log = structlog.get_logger(__name__)


class CompletionProvider(Protocol):
    """Anything that can turn chat messages into a completion string."""

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        ...


class OpenAICompatibleProvider:
    """Provider backed by the OpenAI SDK against any compatible endpoint.

    Failures are translated into :class:`ProviderError` so the model client
    decides about retries; the SDK's own retry loop is disabled.
    """

    def __init__(self, config: ModelProviderConfig) -> None:
        self._config = config
        self._client: Optional[openai.AsyncOpenAI] = None

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self._config.api_key:
            raise ProviderError("Model provider API key is not configured", status=401)
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        client = self._get_client()
        extra: Dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra,
            )
        except openai.APITimeoutError as exc:
            raise TransientProviderError(f"Provider timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise TransientProviderError(f"Provider unreachable: {exc}") from exc
        except openai.RateLimitError as exc:
            raise TransientProviderError("Provider rate limit hit", status=429) from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientProviderError(
                    f"Provider error {exc.status_code}", status=exc.status_code
                ) from exc
            raise ProviderError(f"Provider rejected request ({exc.status_code})", status=exc.status_code) from exc

        if not response.choices:
            raise MalformedResponse("Provider returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise MalformedResponse("Provider returned empty content")
        return content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class LLMPool:
    """Bounds outbound provider concurrency and request rate for all agents."""

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        max_concurrent: int = 8,
        requests_per_minute: int = 120,
    ) -> None:
        self._provider = provider
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._limiter = TokenBucketLimiter(requests_per_minute, 60.0)
        self._max_concurrent = max_concurrent
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[CompletionProvider]:
        """Acquire a provider slot, waiting on the concurrency bound and the token bucket."""
        async with self._semaphore:
            waited = await self._limiter.acquire("provider")
            if waited > 0:
                log.debug("llm.pool.throttled", waited_seconds=round(waited, 3))
            self._in_flight += 1
            try:
                yield self._provider
            finally:
                self._in_flight -= 1

    async def aclose(self) -> None:
        close = getattr(self._provider, "aclose", None)
        if close is not None:
            await close()
