"""Shared fixtures: a scripted model provider and a fast-retry runtime."""
from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

import pytest

from artomart.agents.archetypes import ARCHETYPES
from artomart.config import Config, GatewayConfig
from artomart.core.models import Archetype
from artomart.orchestration.dispatcher import DispatchPolicy
from artomart.runtime import Runtime
from artomart.services.model_client import BackoffPolicy

NO_WAIT = BackoffPolicy(attempts=3, initial=0.0, maximum=0.0, jitter=0.0)
FAST_DISPATCH = DispatchPolicy(attempts=3, interval_seconds=0.01)

PRICING_PAYLOAD = {
    "productData": {"title": "Blue Pottery Vase", "materials": ["quartz", "glaze"], "productionTime": 12},
    "marketContext": {"category": "Pottery", "region": "Rajasthan", "competitorPrices": [900, 1200, 1500]},
}

PRICING_RESULT = {
    "basePrice": 1000,
    "recommendedPrice": 1800,
    "priceRange": {"min": 1400, "max": 1100},
    "rationale": "Hand-painted glaze work commands a premium.",
    "factors": [{"name": "materials", "impact": "medium", "description": "Quartz base"}],
    "strategies": [],
}


class ScriptedProvider:
    """Completion provider that replays a script of replies and exceptions.

    Dict replies are returned as JSON text. When the script runs out the
    provider answers with ``default``. Set ``gate`` to hold every call
    until the event is set.
    """

    def __init__(self, *script: Any, default: str = "Happy to help you explore handcrafted pottery!") -> None:
        self.script: List[Any] = list(script)
        self.default = default
        self.calls: List[Dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def push(self, *items: Any) -> None:
        self.script.extend(items)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> str:
        self.calls.append(
            {
                "messages": messages,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
            }
        )
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if self.script else self.default
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            return json.dumps(item)
        return item

    async def aclose(self) -> None:
        self.closed = True


def make_config(**overrides: Any) -> Config:
    gateway = overrides.pop("gateway", GatewayConfig(rate_limit_max_requests=1000))
    defaults: Dict[str, Any] = {
        "environment": "test",
        "log_level": "WARNING",
        "task_deadline_seconds": 5.0,
        "gateway": gateway,
    }
    defaults.update(overrides)
    return Config(**defaults)


def build_runtime(
    provider: ScriptedProvider,
    config: Optional[Config] = None,
    archetypes: Mapping[str, Archetype] = ARCHETYPES,
) -> Runtime:
    return Runtime.from_config(
        config or make_config(),
        provider,
        archetypes=archetypes,
        backoff=NO_WAIT,
        dispatch_policy=FAST_DISPATCH,
    )


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait until ``predicate`` holds, polling the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
async def runtime(anyio_backend: str, provider: ScriptedProvider) -> AsyncIterator[Runtime]:
    rt = build_runtime(provider)
    await rt.start()
    try:
        yield rt
    finally:
        await rt.shutdown()
