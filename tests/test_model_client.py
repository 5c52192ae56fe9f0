"""Tests for the model client: retries, fallback and structured output."""
from __future__ import annotations

import asyncio

import pytest

from artomart.agents.archetypes import ARCHETYPES
from artomart.config import ModelProviderConfig
from artomart.core.errors import ProviderError, TransientProviderError, UnknownArchetype, UpstreamFailure
from artomart.services.llm_pool import LLMPool, OpenAICompatibleProvider
from artomart.services.model_client import FALLBACK_MODEL, ModelClient, parse_json_object
from conftest import NO_WAIT, ScriptedProvider


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_client(provider: ScriptedProvider, timeout_seconds: float = 5.0) -> ModelClient:
    return ModelClient(
        LLMPool(provider, max_concurrent=2),
        ARCHETYPES,
        model="test-model",
        timeout_seconds=timeout_seconds,
        backoff=NO_WAIT,
    )


@pytest.mark.anyio
async def test_generate_uses_archetype_parameters() -> None:
    provider = ScriptedProvider("  Jaipur blue pottery is a lovely choice.  ")
    client = make_client(provider)

    generation = await client.generate("productRecommendation", "Show me pottery")

    assert generation.text == "Jaipur blue pottery is a lovely choice."
    assert generation.model == "test-model"
    assert not generation.degraded
    call = provider.calls[0]
    assert call["temperature"] == 0.7
    assert call["max_tokens"] == 1500
    assert call["messages"][0]["role"] == "system"
    assert "Art-O-Mart" in call["messages"][0]["content"]
    assert "Show me pottery" in call["messages"][-1]["content"]


@pytest.mark.anyio
async def test_generate_falls_back_after_three_transient_failures() -> None:
    """Three 503s exhaust the retries and yield the canonical fallback."""
    provider = ScriptedProvider(*(TransientProviderError("Provider error 503", status=503) for _ in range(3)))
    client = make_client(provider)

    generation = await client.generate("customerSupport", "Where is my order?")

    assert len(provider.calls) == 3
    assert generation.degraded
    assert generation.model == FALLBACK_MODEL
    assert generation.text == ARCHETYPES["customerSupport"].fallback_reply


@pytest.mark.anyio
async def test_generate_recovers_when_a_retry_succeeds() -> None:
    provider = ScriptedProvider(
        TransientProviderError("Provider error 503", status=503),
        TransientProviderError("Provider rate limit hit", status=429),
        "Here are some woven scarves.",
    )
    client = make_client(provider)

    generation = await client.generate("productRecommendation", "Scarves please")

    assert len(provider.calls) == 3
    assert generation.text == "Here are some woven scarves."
    assert not generation.degraded


@pytest.mark.anyio
async def test_permanent_provider_error_is_not_retried() -> None:
    provider = ScriptedProvider(ProviderError("Provider rejected request (400)", status=400))
    client = make_client(provider)

    generation = await client.generate("artisanAssistant", "How do I price a shawl?")

    assert len(provider.calls) == 1
    assert generation.degraded


@pytest.mark.anyio
async def test_slow_provider_counts_as_transient() -> None:
    provider = ScriptedProvider()
    provider.gate = asyncio.Event()
    client = make_client(provider, timeout_seconds=0.01)

    generation = await client.generate("orderProcessing", "Status of order 42")

    assert len(provider.calls) == 3
    assert generation.model == FALLBACK_MODEL


@pytest.mark.anyio
async def test_history_hints_become_chat_turns() -> None:
    provider = ScriptedProvider("Sure.")
    client = make_client(provider)

    await client.generate(
        "productRecommendation",
        "Something cheaper?",
        {"history": [{"role": "user", "text": "Show me jewelry"}, {"role": "agent", "text": "Try silver jhumkas"}]},
    )

    roles = [message["role"] for message in provider.calls[0]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]


@pytest.mark.anyio
async def test_generate_structured_parses_fenced_json() -> None:
    provider = ScriptedProvider('```json\n{"category": "Shipping", "sentiment": "neutral"}\n```')
    client = make_client(provider)

    result = await client.generate_structured(
        "customerSupport",
        "categorizeQuery",
        {"query": "When will it ship?"},
        instruction="Categorize.",
        required_fields=("category", "sentiment"),
    )

    assert result == {"category": "Shipping", "sentiment": "neutral"}
    assert provider.calls[0]["json_mode"] is True
    assert "Required top-level keys: category, sentiment" in provider.calls[0]["messages"][-1]["content"]


@pytest.mark.anyio
async def test_generate_structured_rejects_malformed_json() -> None:
    client = make_client(ScriptedProvider("definitely not json"))

    with pytest.raises(UpstreamFailure):
        await client.generate_structured("customerSupport", "categorizeQuery", {"query": "?"}, instruction="x")


@pytest.mark.anyio
async def test_generate_structured_raises_when_retries_exhausted() -> None:
    provider = ScriptedProvider(*(TransientProviderError("Provider unreachable") for _ in range(3)))
    client = make_client(provider)

    with pytest.raises(UpstreamFailure):
        await client.generate_structured("contentGeneration", "generateListingContent", {}, instruction="x")
    assert len(provider.calls) == 3


@pytest.mark.anyio
async def test_unknown_archetype_is_rejected() -> None:
    client = make_client(ScriptedProvider())

    with pytest.raises(UnknownArchetype):
        await client.generate("astrologer", "hello")


@pytest.mark.anyio
async def test_missing_api_key_is_a_permanent_failure() -> None:
    provider = OpenAICompatibleProvider(ModelProviderConfig(api_key=None))

    with pytest.raises(ProviderError) as excinfo:
        await provider.complete([{"role": "user", "content": "hi"}], model="m", temperature=0.1, max_tokens=10)

    assert excinfo.value.status == 401
    assert not excinfo.value.transient


def test_parse_json_object_requires_an_object() -> None:
    assert parse_json_object('```\n{"a": 1}\n```') == {"a": 1}
    with pytest.raises(ValueError):
        parse_json_object("[1, 2, 3]")
