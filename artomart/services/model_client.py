"""Single adapter over the upstream generative-language provider."""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import stamina
import structlog

from artomart.core.errors import ProviderError, TransientProviderError, UnknownArchetype, UpstreamFailure
from artomart.core.models import Archetype
from artomart.services.llm_pool import LLMPool
from artomart.services.prompts import fingerprint

log = structlog.get_logger(__name__)

FALLBACK_MODEL = "fallback-mode"


@dataclass(frozen=True)
class Generation:
    """Reply text plus how it was produced."""

    text: str
    latency_ms: int
    model: str
    degraded: bool = False


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry schedule for transient provider failures.

    With the defaults the waits between attempts follow the ladder
    0.5 s, 1.5 s, 3 s (capped), each with up to ``jitter`` seconds added.
    """

    attempts: int = 3
    initial: float = 0.5
    exp_base: float = 3.0
    maximum: float = 3.0
    jitter: float = 0.25


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a JSON object, tolerating markdown code fences around it."""
    text = content.strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0].strip()
    elif text.startswith("```"):
        text = text.split("```")[1].strip()
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("expected a JSON object")
    return parsed


class ModelClient:
    """Prompt assembly, timeout, retry and fallback for every archetype.

    The client keeps no state between calls and knows nothing about tasks;
    agents are its only callers.
    """

    def __init__(
        self,
        pool: LLMPool,
        archetypes: Mapping[str, Archetype],
        *,
        model: str,
        timeout_seconds: float = 15.0,
        backoff: BackoffPolicy = BackoffPolicy(),
        performance_logging: bool = False,
    ) -> None:
        self._pool = pool
        self._archetypes = dict(archetypes)
        self._model = model
        self._timeout = timeout_seconds
        self._backoff = backoff
        self._performance_logging = performance_logging

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        archetype_name: str,
        user_text: str,
        context_hints: Optional[Mapping[str, Any]] = None,
    ) -> Generation:
        """Free-text reply. Persistent failure yields the archetype's fallback."""
        archetype = self._archetype(archetype_name)
        messages = archetype.prompt.render(user_text, context_hints)
        started = time.monotonic()
        try:
            text = await self._complete(archetype, messages, json_mode=False)
        except ProviderError as exc:
            log.warning(
                "model.generate.degraded",
                archetype=archetype_name,
                error=exc.message,
                status=exc.status,
            )
            return self.fallback(archetype_name, latency_ms=_elapsed_ms(started))
        latency_ms = _elapsed_ms(started)
        self._log_latency(archetype_name, "generate", latency_ms)
        return Generation(text=text.strip(), latency_ms=latency_ms, model=self._model)

    async def generate_structured(
        self,
        archetype_name: str,
        action: str,
        payload: Mapping[str, Any],
        *,
        instruction: str,
        required_fields: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """JSON-shaped result for dashboard actions.

        Raises:
            UpstreamFailure: the provider failed permanently or returned
                something that is not a JSON object.
        """
        archetype = self._archetype(archetype_name)
        messages = archetype.prompt.render_structured(action, payload, instruction, required_fields)
        started = time.monotonic()
        try:
            raw = await self._complete(archetype, messages, json_mode=True)
        except ProviderError as exc:
            raise UpstreamFailure(f"Model provider failed: {exc.message}") from exc
        try:
            result = parse_json_object(raw)
        except ValueError as exc:
            log.warning("model.structured.malformed", archetype=archetype_name, action=action)
            raise UpstreamFailure("Model returned malformed JSON") from exc
        self._log_latency(archetype_name, action, _elapsed_ms(started))
        return result

    def fallback(self, archetype_name: str, latency_ms: int = 0) -> Generation:
        """Canonical degraded reply for an archetype."""
        archetype = self._archetype(archetype_name)
        return Generation(
            text=archetype.fallback_reply,
            latency_ms=latency_ms,
            model=FALLBACK_MODEL,
            degraded=True,
        )

    async def _complete(self, archetype: Archetype, messages: List[Dict[str, str]], *, json_mode: bool) -> str:
        backoff = self._backoff
        attempts = 0
        request_hash = fingerprint(
            messages,
            model=self._model,
            temperature=archetype.temperature,
            max_tokens=archetype.max_tokens,
            json_mode=json_mode,
        )

        @stamina.retry(
            on=TransientProviderError,
            attempts=backoff.attempts,
            timeout=None,
            wait_initial=backoff.initial,
            wait_exp_base=backoff.exp_base,
            wait_max=backoff.maximum,
            wait_jitter=backoff.jitter,
        )
        async def _with_retry() -> str:
            nonlocal attempts
            attempts += 1
            log.debug("model.request.started", archetype=archetype.name, attempt=attempts, request_hash=request_hash)
            async with self._pool.acquire() as provider:
                try:
                    return await asyncio.wait_for(
                        provider.complete(
                            messages,
                            model=self._model,
                            temperature=archetype.temperature,
                            max_tokens=archetype.max_tokens,
                            json_mode=json_mode,
                        ),
                        timeout=self._timeout,
                    )
                except asyncio.TimeoutError as exc:
                    raise TransientProviderError(f"Provider call exceeded {self._timeout}s") from exc

        try:
            return await _with_retry()
        except TransientProviderError as exc:
            log.error(
                "model.request.exhausted",
                archetype=archetype.name,
                attempts=attempts,
                status=exc.status,
                request_hash=request_hash,
            )
            raise ProviderError(
                f"{exc.message} (gave up after {attempts} attempts)", status=exc.status
            ) from exc

    def _archetype(self, name: str) -> Archetype:
        try:
            return self._archetypes[name]
        except KeyError:
            raise UnknownArchetype(name) from None

    def _log_latency(self, archetype: str, operation: str, latency_ms: int) -> None:
        if self._performance_logging:
            log.info("model.request.completed", archetype=archetype, operation=operation, latency_ms=latency_ms)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
