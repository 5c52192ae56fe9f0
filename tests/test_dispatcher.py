"""Task dispatcher: admission, deduplication, deadlines, cancellation and retention."""
from __future__ import annotations

import asyncio
import dataclasses
import time
from pathlib import Path
from typing import List

import pytest

from artomart.agents.archetypes import ARCHETYPES
from artomart.core.errors import (
    DuplicateRequest,
    Forbidden,
    TaskNotFound,
    TaskTimeout,
    UnknownArchetype,
    UnsupportedAction,
)
from artomart.core.models import TaskState
from artomart.orchestration.dispatcher import DispatchPolicy
from artomart.orchestration.journal import ResultJournal
from artomart.runtime import Runtime
from conftest import NO_WAIT, PRICING_PAYLOAD, PRICING_RESULT, ScriptedProvider, build_runtime, eventually, make_config

LOW_STOCK = {"products": [{"productId": "p-1", "name": "Handmade Bowl", "stock": 1, "threshold": 5}]}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def event_types(runtime: Runtime, session_id: str, task_id: str) -> List[str]:
    events, _ = runtime.channel.poll(session_id)
    return [envelope.type.value for envelope in events if envelope.task_id == task_id]


@pytest.mark.anyio
async def test_unknown_archetype_and_action_create_no_task(runtime: Runtime) -> None:
    with pytest.raises(UnknownArchetype):
        runtime.dispatcher.submit("astrologer", "chat", {"message": "hi"}, "s-1")
    with pytest.raises(UnsupportedAction):
        runtime.dispatcher.submit("orderProcessing", "suggestPricing", PRICING_PAYLOAD, "s-1")

    assert sum(runtime.dispatcher.stats().values()) == 0
    assert runtime.channel.latest_cursor("s-1") == 0


@pytest.mark.anyio
async def test_task_events_arrive_in_sequence(runtime: Runtime) -> None:
    submitted = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1")
    task = await runtime.dispatcher.wait(submitted.task_id, timeout=2)

    assert task.state is TaskState.COMPLETED
    assert task.progress == 1.0
    assert task.result["lowStockItems"][0]["shortfall"] == 4

    events, cursor = runtime.channel.poll("s-1")
    assert [envelope.type.value for envelope in events] == [
        "taskAccepted",
        "taskProgress",
        "taskProgress",
        "taskCompleted",
    ]
    assert [envelope.seq for envelope in events] == [1, 2, 3, 4]
    assert cursor == 4
    progress = [envelope.payload["value"] for envelope in events if envelope.type.value == "taskProgress"]
    assert progress == [0.3, 0.9]


@pytest.mark.anyio
async def test_duplicate_request_returns_the_same_task(runtime: Runtime, provider: ScriptedProvider) -> None:
    first = runtime.dispatcher.submit("productRecommendation", "chat", {"message": "hi"}, "s-1", "req-1")
    second = runtime.dispatcher.submit("productRecommendation", "chat", {"message": "hi"}, "s-1", "req-1")

    assert second.task_id == first.task_id
    assert (first.duplicate, second.duplicate) == (False, True)
    await runtime.dispatcher.wait(first.task_id, timeout=2)
    assert len(provider.calls) == 1

    with pytest.raises(DuplicateRequest) as excinfo:
        runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1", "req-1")
    assert excinfo.value.status_code == 409

    # another session may reuse the identifier
    other = runtime.dispatcher.submit("productRecommendation", "chat", {"message": "hi"}, "s-2", "req-1")
    assert other.task_id != first.task_id


@pytest.mark.anyio
async def test_stopped_archetype_fails_tasks_as_unavailable(runtime: Runtime) -> None:
    await runtime.registry.stop("productRecommendation")

    submitted = runtime.dispatcher.submit("productRecommendation", "suggestPricing", PRICING_PAYLOAD, "s-1")
    task = await runtime.dispatcher.wait(submitted.task_id, timeout=2)

    assert task.state is TaskState.FAILED
    assert task.error["kind"] == "agentUnavailable"
    assert task.error["retryable"] is True
    assert event_types(runtime, "s-1", task.task_id) == ["taskAccepted", "taskFailed"]


@pytest.mark.anyio
async def test_cancel_while_awaiting_the_model(runtime: Runtime, provider: ScriptedProvider) -> None:
    provider.gate = asyncio.Event()
    provider.push(PRICING_RESULT)
    submitted = runtime.dispatcher.submit("artisanAssistant", "suggestPricing", PRICING_PAYLOAD, "s-1")
    await eventually(lambda: "taskProgress" in event_types(runtime, "s-1", submitted.task_id))

    task = runtime.dispatcher.cancel(submitted.task_id, "s-1")
    provider.gate.set()
    await asyncio.sleep(0.05)

    assert task.state is TaskState.CANCELLED
    assert task.error is None
    events, _ = runtime.channel.poll("s-1")
    last = events[-1]
    assert last.type.value == "taskFailed"
    assert last.payload["error"]["kind"] == "cancelled"
    # the agent's own cancellation report does not produce a second terminal event
    assert event_types(runtime, "s-1", task.task_id).count("taskFailed") == 1

    status = runtime.registry.status("artisanAssistant")
    assert status.tasks_completed == 0
    assert status.error_count == 0

    again = runtime.dispatcher.cancel(submitted.task_id, "s-1")
    assert again.state is TaskState.CANCELLED


@pytest.mark.anyio
async def test_cancel_of_a_finished_task_is_a_no_op(runtime: Runtime) -> None:
    submitted = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1")
    await runtime.dispatcher.wait(submitted.task_id, timeout=2)

    task = runtime.dispatcher.cancel(submitted.task_id, "s-1")

    assert task.state is TaskState.COMPLETED
    assert event_types(runtime, "s-1", task.task_id)[-1] == "taskCompleted"


@pytest.mark.anyio
async def test_tasks_belong_to_their_session(runtime: Runtime) -> None:
    submitted = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1")

    with pytest.raises(Forbidden):
        runtime.dispatcher.get(submitted.task_id, "s-2")
    with pytest.raises(Forbidden):
        runtime.dispatcher.cancel(submitted.task_id, "s-2")
    with pytest.raises(TaskNotFound):
        runtime.dispatcher.get("task_missing")
    assert runtime.dispatcher.get(submitted.task_id).session_id == "s-1"


@pytest.mark.anyio
async def test_wait_gives_up_on_slow_tasks(runtime: Runtime, provider: ScriptedProvider) -> None:
    provider.gate = asyncio.Event()
    submitted = runtime.dispatcher.submit("customerSupport", "chat", {"message": "Where is my order?"}, "s-1")

    with pytest.raises(TaskTimeout):
        await runtime.dispatcher.wait(submitted.task_id, timeout=0.05)
    provider.gate.set()


@pytest.mark.anyio
async def test_deadline_miss_fails_the_task_with_timeout(anyio_backend: str) -> None:
    provider = ScriptedProvider()
    provider.gate = asyncio.Event()
    archetypes = dict(ARCHETYPES)
    archetypes["customerSupport"] = dataclasses.replace(
        ARCHETYPES["customerSupport"], action_deadlines={"chat": 0.05}
    )
    runtime = build_runtime(provider, archetypes=archetypes)
    await runtime.start()
    try:
        started = time.monotonic()
        submitted = runtime.dispatcher.submit("customerSupport", "chat", {"message": "hello?"}, "s-1")
        task = await runtime.dispatcher.wait(submitted.task_id, timeout=1)

        assert time.monotonic() - started < 0.5
        assert task.state is TaskState.FAILED
        assert task.error["kind"] == "timeout"
        await eventually(lambda: not runtime.registry.status("customerSupport").current_task_ids)
        assert runtime.registry.status("customerSupport").error_count == 0
        assert event_types(runtime, "s-1", task.task_id).count("taskFailed") == 1
    finally:
        await runtime.shutdown()


@pytest.mark.anyio
async def test_queued_tasks_hear_about_restarts_and_run_afterwards(anyio_backend: str) -> None:
    provider = ScriptedProvider("bad", "bad", "bad")
    archetypes = dict(ARCHETYPES)
    archetypes["orderProcessing"] = dataclasses.replace(
        ARCHETYPES["orderProcessing"], max_concurrent_tasks=3, restart_delay_ladder=(0.05,)
    )
    runtime = Runtime.from_config(
        make_config(),
        provider,
        archetypes=archetypes,
        backoff=NO_WAIT,
        dispatch_policy=DispatchPolicy(attempts=100, interval_seconds=0.01),
    )
    await runtime.start()
    try:
        sales = {"salesData": [{"productId": "p-1", "salesCount": 3}]}
        for _ in range(3):
            runtime.dispatcher.submit("orderProcessing", "reorderRecommendations", sales, "s-1")
        waiting = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1")

        task = await runtime.dispatcher.wait(waiting.task_id, timeout=3)

        assert task.state is TaskState.COMPLETED
        events, _ = runtime.channel.poll("s-1")
        notices = [e.payload for e in events if e.task_id == task.task_id and e.type.value == "agentMessage"]
        assert notices and notices[0]["status"] == "restarting"
        assert runtime.registry.status("orderProcessing").restarts == 1
    finally:
        await runtime.shutdown()


@pytest.mark.anyio
async def test_reap_forgets_old_tasks(runtime: Runtime) -> None:
    submitted = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1", "req-9")
    await runtime.dispatcher.wait(submitted.task_id, timeout=2)

    assert runtime.dispatcher.reap() == 0
    assert runtime.dispatcher.reap(now=time.time() + runtime.config.task_retention_seconds + 1) == 1
    with pytest.raises(TaskNotFound):
        runtime.dispatcher.get(submitted.task_id)

    again = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1", "req-9")
    assert again.task_id != submitted.task_id


@pytest.mark.anyio
async def test_finished_tasks_are_journaled(anyio_backend: str, tmp_path: Path) -> None:
    path = tmp_path / "results.jsonl"
    runtime = build_runtime(ScriptedProvider(), make_config(result_journal_path=str(path)))
    await runtime.start()
    try:
        submitted = runtime.dispatcher.submit("orderProcessing", "checkLowStock", LOW_STOCK, "s-1")
        await runtime.dispatcher.wait(submitted.task_id, timeout=2)
    finally:
        await runtime.shutdown()

    entries = ResultJournal(path).read_all()
    assert [entry["taskId"] for entry in entries] == [submitted.task_id]
    assert entries[0]["state"] == "completed"
    assert entries[0]["finishedAt"]
