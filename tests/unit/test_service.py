"""Unit tests for the HTTP service wiring."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.exceptions import HandlerExecutionError
from idempotent_endpoint.service import (
    create_app,
    default_business_logic,
    echo_logic,
    webhook_logic,
)
from idempotent_endpoint.storage.memory import MemoryStorageAdapter


class WebhookRecorder:
    """httpx mock transport handler that records forwarded payloads."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.payloads: list = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={"received": True})


# ============================================================================
# Business logic
# ============================================================================


@pytest.mark.asyncio
async def test_echo_logic():
    assert await echo_logic({"name": "abc"}) == {"status": "ok"}


def test_default_business_logic_selection():
    assert default_business_logic(IdempotencyConfig()) is echo_logic
    assert default_business_logic(IdempotencyConfig(webhook_url="http://hook.test/")) is not echo_logic


@pytest.mark.asyncio
async def test_webhook_forwards_payload():
    recorder = WebhookRecorder()
    logic = webhook_logic("http://hook.test/", transport=httpx.MockTransport(recorder))

    result = await logic({"name": "abc"})

    assert result == {"status": "ok", "webhook_status": 200}
    assert recorder.payloads == [{"name": "abc"}]


@pytest.mark.asyncio
async def test_webhook_error_status_is_a_failure():
    logic = webhook_logic("http://hook.test/", transport=httpx.MockTransport(WebhookRecorder(500)))

    with pytest.raises(HandlerExecutionError) as exc_info:
        await logic({"name": "abc"})

    assert exc_info.value.status_code == 424
    assert exc_info.value.error_type == "WebhookError"


@pytest.mark.asyncio
async def test_webhook_transport_error_is_a_failure():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    logic = webhook_logic("http://hook.test/", transport=httpx.MockTransport(refuse))

    with pytest.raises(HandlerExecutionError):
        await logic({"name": "abc"})


# ============================================================================
# Application
# ============================================================================


def test_healthz():
    with TestClient(create_app()) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_exposes_idempotency_counters():
    with TestClient(create_app()) as client:
        client.post("/", json={"name": "abc"}, headers={"Idempotency-Key": "metrics-1"})
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "idempotency_decisions_total" in response.text
    assert "idempotency_responses_total" in response.text


def test_post_executes_and_replays():
    with TestClient(create_app(storage=MemoryStorageAdapter())) as client:
        first = client.post("/", json={"name": "abc"}, headers={"Idempotency-Key": "req-1"})
        second = client.post("/", json={"name": "abc"}, headers={"Idempotency-Key": "req-1"})

    assert first.status_code == second.status_code == 200
    assert first.content == second.content == b'{"status":"ok"}'
    assert first.headers["Idempotent-Replay"] == "false"
    assert second.headers["Idempotent-Replay"] == "true"


def test_get_on_endpoint_is_method_not_allowed():
    with TestClient(create_app()) as client:
        response = client.get("/")

    assert response.status_code == 405
    assert response.headers["Allow"] == "POST"


def test_webhook_called_once_per_key():
    recorder = WebhookRecorder()
    logic = webhook_logic("http://hook.test/", transport=httpx.MockTransport(recorder))
    app = create_app(IdempotencyConfig(key_field="name"), business_logic=logic)

    with TestClient(app) as client:
        for _ in range(3):
            response = client.post("/", json={"name": "abc"})
            assert response.status_code == 200

    assert recorder.payloads == [{"name": "abc"}]


def test_app_exposes_coordinator_and_storage():
    storage = MemoryStorageAdapter()
    app = create_app(storage=storage)

    assert app.state.storage is storage
    assert app.state.coordinator.storage is storage
