"""HTTP and WebSocket surface tests against a runtime with a scripted provider."""
from __future__ import annotations

import time
from typing import Any, Dict, Iterator

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from artomart.agents.archetypes import ARCHETYPES
from artomart.config import Config, GatewayConfig
from artomart.core.errors import TransientProviderError
from artomart.main import create_app
from conftest import PRICING_PAYLOAD, ScriptedProvider, build_runtime, make_config

LOW_STOCK = {"products": [{"productId": "p-1", "name": "Handmade Bowl", "stock": 1, "threshold": 5}]}
TERMINAL = {"completed", "failed", "cancelled"}


def open_client(provider: ScriptedProvider, config: Config | None = None) -> TestClient:
    return TestClient(create_app(runtime=build_runtime(provider, config)))


@pytest.fixture
def client(provider: ScriptedProvider) -> Iterator[TestClient]:
    with open_client(provider) as test_client:
        yield test_client


def wait_for_task(client: TestClient, task_id: str, session_id: str, timeout: float = 3.0) -> Dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/tasks/{task_id}", headers={"X-Session-Id": session_id}).json()
        if body["state"] in TERMINAL or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------


def test_chat_returns_the_agent_reply(client: TestClient) -> None:
    response = client.post("/api/chat", json={"message": "Hello", "agentType": "productRecommendation"})

    assert response.status_code == 200
    body = response.json()
    assert body["response"]
    assert body["suggestions"] == ["Show me pottery", "Find jewelry", "Cultural artifacts", "Custom orders"]
    assert body["metadata"]["agent"] == "productRecommendation"
    assert body["agentType"] == "productRecommendation"
    assert body["userId"] == "anonymous"
    assert body["conversationId"].startswith("conv_")
    assert body["timestamp"].endswith("Z")


def test_chat_requires_a_message(client: TestClient) -> None:
    response = client.post("/api/chat", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Message is required", "kind": "validationError"}


def test_chat_only_accepts_post(client: TestClient) -> None:
    response = client.get("/api/chat")

    assert response.status_code == 405
    assert response.json()["error"] == "Method not allowed"


def test_chat_degrades_to_the_canonical_fallback(provider: ScriptedProvider) -> None:
    provider.push(*(TransientProviderError("Provider error 503", status=503) for _ in range(3)))
    with open_client(provider) as client:
        response = client.post("/api/chat", json={"message": "Where is my order?", "agentType": "customerSupport"})

    assert response.status_code == 200
    body = response.json()
    assert body["response"] == ARCHETYPES["customerSupport"].fallback_reply
    assert body["metadata"]["model"] == "fallback-mode"
    assert body["metadata"]["degraded"] is True
    assert len(provider.calls) == 3


def test_chat_with_unknown_agent_type_uses_the_recommender(client: TestClient) -> None:
    response = client.post("/api/chat", json={"message": "Hi", "agentType": "astrologer"})

    assert response.status_code == 200
    assert response.json()["agentType"] == "productRecommendation"


def test_chat_falls_back_when_the_agent_is_stopped(client: TestClient) -> None:
    client.post("/api/agents/artisanAssistant/stop")

    response = client.post("/api/chat", json={"message": "Pricing help", "agentType": "artisanAssistant"})

    assert response.status_code == 200
    assert response.json()["metadata"]["model"] == "fallback-mode"


def test_chat_input_is_sanitized(client: TestClient, provider: ScriptedProvider) -> None:
    client.post("/api/chat", json={"message": "<script>alert(1)</script>Show me\x00 shawls"})

    user_turn = provider.calls[-1]["messages"][-1]["content"]
    assert "<script>" not in user_turn
    assert "\x00" not in user_turn
    assert "Show me shawls" in user_turn


# ---------------------------------------------------------------------------
# tasks
# ---------------------------------------------------------------------------


def test_task_submission_and_lookup(client: TestClient) -> None:
    response = client.post(
        "/api/agents/orderProcessing/task",
        json={"action": "checkLowStock", **LOW_STOCK},
        headers={"X-Session-Id": "s-1"},
    )

    assert response.status_code == 202
    accepted = response.json()
    assert accepted["sessionId"] == "s-1"
    task = wait_for_task(client, accepted["taskId"], "s-1")
    assert task["state"] == "completed"
    assert task["result"]["lowStockItems"][0]["productId"] == "p-1"

    other = client.get(f"/api/tasks/{accepted['taskId']}", headers={"X-Session-Id": "s-2"})
    assert other.status_code == 403
    missing = client.get("/api/tasks/task_unknown")
    assert missing.status_code == 404


def test_unknown_archetype_and_unsupported_action(client: TestClient) -> None:
    unknown = client.post("/api/agents/astrologer/task", json={"action": "chat"})
    assert unknown.status_code == 404
    assert unknown.json()["kind"] == "validationError"

    unsupported = client.post("/api/agents/orderProcessing/task", json={"action": "suggestPricing"})
    assert unsupported.status_code == 400

    missing_action = client.post("/api/agents/orderProcessing/task", json={"products": []})
    assert missing_action.status_code == 400


def test_stopped_archetype_reports_agent_unavailable(client: TestClient) -> None:
    stopped = client.post("/api/agents/productRecommendation/stop")
    assert stopped.json()["result"] == "stopped"

    response = client.post(
        "/api/agents/productRecommendation/task",
        json={"action": "suggestPricing", **PRICING_PAYLOAD},
        headers={"X-Session-Id": "s-1"},
    )
    assert response.status_code == 202
    task = wait_for_task(client, response.json()["taskId"], "s-1")
    assert task["state"] == "failed"
    assert task["error"]["kind"] == "agentUnavailable"

    polled = client.post("/api/websocket", json={"type": "poll", "data": {"sinceCursor": 0}}, headers={
        "X-Session-Id": "s-1"})
    events = polled.json()["events"]
    assert [event["type"] for event in events] == ["taskAccepted", "taskFailed"]
    assert events[-1]["payload"]["error"]["kind"] == "agentUnavailable"


def test_duplicate_submissions_share_a_task(client: TestClient) -> None:
    headers = {"X-Session-Id": "s-1"}
    body = {"action": "checkLowStock", "requestId": "req-1", **LOW_STOCK}

    first = client.post("/api/agents/orderProcessing/task", json=body, headers=headers).json()
    second = client.post("/api/agents/orderProcessing/task", json=body, headers=headers).json()

    assert first["taskId"] == second["taskId"]
    assert second["duplicate"] is True

    conflict = client.post(
        "/api/agents/orderProcessing/task",
        json={"action": "chat", "requestId": "req-1", "message": "hi"},
        headers=headers,
    )
    assert conflict.status_code == 409


def test_cancel_requires_a_session_and_is_idempotent_for_finished_tasks(client: TestClient) -> None:
    headers = {"X-Session-Id": "s-1"}
    accepted = client.post(
        "/api/agents/orderProcessing/task", json={"action": "checkLowStock", **LOW_STOCK}, headers=headers
    ).json()
    wait_for_task(client, accepted["taskId"], "s-1")

    assert client.post(f"/api/tasks/{accepted['taskId']}/cancel").status_code == 400
    cancelled = client.post(f"/api/tasks/{accepted['taskId']}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["state"] == "completed"


# ---------------------------------------------------------------------------
# agents and health
# ---------------------------------------------------------------------------


def test_agent_lifecycle_endpoints(client: TestClient) -> None:
    agents = client.get("/api/agents").json()
    assert {agent["archetype"] for agent in agents} == set(ARCHETYPES)
    assert all(agent["running"] for agent in agents)

    started = client.post("/api/agents/contentGeneration/start").json()
    assert started["result"] == "alreadyRunning"

    restarted = client.post("/api/agents/contentGeneration/restart").json()
    assert restarted["result"] == "restarted"
    assert restarted["agent"]["restarts"] == 1
    assert restarted["agent"]["state"] == "ready"

    assert client.get("/api/agents/astrologer").status_code == 404


def test_health_probes(client: TestClient) -> None:
    health = client.get("/api/health")
    assert health.status_code == 200
    body = health.json()
    assert body["status"] == "ok"
    assert body["service"] == "Art-O-Mart AI Backend"
    assert body["endpoints"]["chat"] == "/api/chat"
    assert body["features"]["ai_chat"] == "enabled"

    agents = client.get("/api/health/agents")
    assert agents.status_code == 200
    assert agents.json()["status"] == "healthy"

    client.post("/api/agents/orderProcessing/stop")
    degraded = client.get("/api/health/agents")
    assert degraded.status_code == 503
    assert degraded.json()["agents"]["orderProcessing"]["running"] is False


# ---------------------------------------------------------------------------
# realtime
# ---------------------------------------------------------------------------


def test_polling_channel_endpoints(client: TestClient) -> None:
    info = client.get("/api/websocket", headers={"X-Session-Id": "s-9"}).json()
    assert info["type"] == "info"
    assert info["sessionId"] == "s-9"

    connected = client.post("/api/websocket", json={"type": "connect", "sessionId": "s-9"}).json()
    assert connected["status"] == "connected"
    typing = client.post("/api/websocket", json={"type": "typing", "sessionId": "s-9"}).json()
    assert typing["status"] == "typing_indicator"
    echoed = client.post("/api/websocket", json={"type": "message", "data": {"text": "hi"}}).json()
    assert echoed["echo"] == {"text": "hi"}

    accepted = client.post(
        "/api/agents/orderProcessing/task",
        json={"action": "checkLowStock", **LOW_STOCK},
        headers={"X-Session-Id": "s-9"},
    ).json()
    wait_for_task(client, accepted["taskId"], "s-9")
    polled = client.post("/api/websocket", json={"type": "poll", "sessionId": "s-9"}).json()
    assert [event["seq"] for event in polled["events"]] == [1, 2, 3, 4]
    assert polled["events"][-1]["type"] == "taskCompleted"

    again = client.post(
        "/api/websocket", json={"type": "poll", "sessionId": "s-9", "data": {"sinceCursor": polled["cursor"]}}
    ).json()
    assert again["events"] == []


def test_websocket_streams_task_events(client: TestClient) -> None:
    with client.websocket_connect("/api/ws?sessionId=ws-1") as websocket:
        assert websocket.receive_json() == {"type": "connected", "sessionId": "ws-1"}
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json()["type"] == "pong"

        accepted = client.post(
            "/api/agents/orderProcessing/task",
            json={"action": "checkLowStock", **LOW_STOCK},
            headers={"X-Session-Id": "ws-1"},
        ).json()

        frames = []
        while not frames or frames[-1]["type"] not in ("taskCompleted", "taskFailed"):
            frames.append(websocket.receive_json())

        assert {frame["taskId"] for frame in frames} == {accepted["taskId"]}
        assert [frame["type"] for frame in frames] == ["taskAccepted", "taskProgress", "taskProgress", "taskCompleted"]
        assert [frame["seq"] for frame in frames] == sorted(frame["seq"] for frame in frames)

        websocket.send_json({"type": "subscribe", "taskId": accepted["taskId"]})
        replies = {frame["type"]: frame for frame in (websocket.receive_json(), websocket.receive_json())}
        assert replies["subscribed"] == {"type": "subscribed", "taskId": accepted["taskId"], "replayed": True}
        assert replies["taskCompleted"]["seq"] == frames[-1]["seq"]


# ---------------------------------------------------------------------------
# gateway
# ---------------------------------------------------------------------------


def test_rate_limit_rejects_bursts(provider: ScriptedProvider) -> None:
    config = make_config(gateway=GatewayConfig(rate_limit_max_requests=2, rate_limit_window_seconds=60))
    with open_client(provider, config) as client:
        assert client.get("/api/agents").status_code == 200
        assert client.get("/api/agents").status_code == 200
        limited = client.get("/api/agents")
        # health probes are never throttled
        assert client.get("/api/health").status_code == 200

    assert limited.status_code == 429
    assert limited.json()["kind"] == "rateLimited"
    assert int(limited.headers["Retry-After"]) >= 1


def test_origin_allow_list(client: TestClient) -> None:
    rejected = client.get("/api/health", headers={"Origin": "https://evil.example"})
    assert rejected.status_code == 403
    # the origin check runs before a request id is assigned
    assert "X-Request-Id" not in rejected.headers

    allowed = client.get("/api/health", headers={"Origin": "http://localhost:3000"})
    assert allowed.status_code == 200
    assert allowed.headers["X-Request-Id"]
    assert allowed.headers["access-control-allow-origin"] == "http://localhost:3000"

    preflight = client.options(
        "/api/chat",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
    )
    assert preflight.status_code == 200


def test_oversized_bodies_are_rejected(provider: ScriptedProvider) -> None:
    config = make_config(gateway=GatewayConfig(max_body_bytes=64, rate_limit_max_requests=1000))
    with open_client(provider, config) as client:
        response = client.post("/api/chat", json={"message": "x" * 200})

    assert response.status_code == 413
    assert response.json()["kind"] == "validationError"


def test_bearer_token_required_when_configured(provider: ScriptedProvider) -> None:
    config = make_config(gateway=GatewayConfig(auth_required=True, rate_limit_max_requests=1000))
    with open_client(provider, config) as client:
        denied = client.post("/api/chat", json={"message": "hi"})
        granted = client.post("/api/chat", json={"message": "hi"}, headers={"Authorization": "Bearer s3cret"})
        health = client.get("/api/health")

    assert denied.status_code == 401
    assert denied.json()["kind"] == "unauthorized"
    assert granted.status_code == 200
    assert health.status_code == 200


def test_websocket_requires_a_bearer_token_when_configured(provider: ScriptedProvider) -> None:
    config = make_config(gateway=GatewayConfig(auth_required=True, rate_limit_max_requests=1000))
    auth = {"Authorization": "Bearer s3cret"}
    with open_client(provider, config) as client:
        accepted = client.post(
            "/api/agents/orderProcessing/task",
            json={"action": "checkLowStock", **LOW_STOCK},
            headers={**auth, "X-Session-Id": "owner"},
        )
        assert accepted.status_code == 202

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/api/ws?sessionId=owner"):
                pass
        assert excinfo.value.code == 1008

        with client.websocket_connect("/api/ws?sessionId=owner&token=s3cret") as websocket:
            assert websocket.receive_json() == {"type": "connected", "sessionId": "owner"}
        with client.websocket_connect("/api/ws?sessionId=owner", headers=auth) as websocket:
            assert websocket.receive_json() == {"type": "connected", "sessionId": "owner"}


def test_websocket_upgrades_are_rate_limited(provider: ScriptedProvider) -> None:
    config = make_config(gateway=GatewayConfig(rate_limit_max_requests=1, rate_limit_window_seconds=60))
    with open_client(provider, config) as client:
        with client.websocket_connect("/api/ws?sessionId=ws-1") as websocket:
            assert websocket.receive_json()["type"] == "connected"

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with client.websocket_connect("/api/ws?sessionId=ws-1"):
                pass
    assert excinfo.value.code == 1008


def test_responses_carry_request_id_and_security_headers(client: TestClient) -> None:
    response = client.get("/api/health", headers={"X-Request-Id": "req-abc"})

    assert response.headers["X-Request-Id"] == "req-abc"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
