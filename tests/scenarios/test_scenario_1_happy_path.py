"""Scenario 1: Happy Path Conformance Tests

This module tests the core happy path flow of the idempotent endpoint:
- First request with an idempotency key executes the business logic
- The result is stored and returned
- A second identical request returns the stored result (replay)
- Replay has header: Idempotent-Replay: true
- Replayed body is byte-identical to the original
"""

from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.core.coordinator import IdempotencyCoordinator
from idempotent_endpoint.fingerprint import compute_fingerprint
from idempotent_endpoint.models import DecisionKind, RecordStatus
from idempotent_endpoint.service import create_app
from idempotent_endpoint.storage.memory import MemoryStorageAdapter


class PaymentLogic:
    """Payment business logic counting its executions."""

    def __init__(self) -> None:
        self.executions = 0

    async def __call__(self, payload: Any) -> dict[str, Any]:
        self.executions += 1
        return {
            "id": f"pay_{self.executions}",
            "status": "success",
            "amount": payload["amount"],
            "currency": payload.get("currency", "USD"),
        }


# Fixtures
@pytest.fixture
def logic() -> PaymentLogic:
    return PaymentLogic()


@pytest.fixture
def app(logic: PaymentLogic) -> FastAPI:
    return create_app(IdempotencyConfig(), storage=MemoryStorageAdapter(), business_logic=logic)


@pytest.fixture
def client(app: FastAPI):
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Coordinator-level walkthrough
# ============================================================================


@pytest.mark.asyncio
async def test_req_1_proceed_complete_replay(coordinator: IdempotencyCoordinator, storage):
    """admit(req-1, abc) -> PROCEED; complete; admit(req-1, abc) -> REPLAY."""
    fingerprint = compute_fingerprint({"name": "abc"})

    decision = await coordinator.admit("req-1", fingerprint)
    assert decision.kind is DecisionKind.PROCEED

    await coordinator.complete("req-1", decision.version, {"status": "ok"})

    record = await storage.get_item("req-1")
    assert record is not None
    assert record.status is RecordStatus.COMPLETED

    replay = await coordinator.admit("req-1", fingerprint)
    assert replay.kind is DecisionKind.REPLAY
    assert replay.result == '{"status":"ok"}'


# ============================================================================
# HTTP walkthrough
# ============================================================================


def test_first_request_executes(client: TestClient, logic: PaymentLogic):
    response = client.post("/", json={"amount": 100}, headers={"Idempotency-Key": "pay-1"})

    assert response.status_code == 200
    assert response.json() == {"id": "pay_1", "status": "success", "amount": 100, "currency": "USD"}
    assert response.headers["Idempotent-Replay"] == "false"
    assert response.headers["Idempotency-Key"] == "pay-1"
    assert logic.executions == 1


def test_duplicate_is_replayed(client: TestClient, logic: PaymentLogic):
    headers = {"Idempotency-Key": "pay-1"}
    first = client.post("/", json={"amount": 100}, headers=headers)
    second = client.post("/", json={"amount": 100}, headers=headers)

    assert logic.executions == 1
    assert second.status_code == first.status_code
    assert second.content == first.content
    assert second.headers["Idempotent-Replay"] == "true"
    assert second.headers["content-type"] == "application/json"


def test_many_duplicates_replay_identically(client: TestClient, logic: PaymentLogic):
    headers = {"Idempotency-Key": "pay-1"}
    bodies = {
        client.post("/", json={"amount": 5, "currency": "EUR"}, headers=headers).content
        for _ in range(10)
    }

    assert len(bodies) == 1
    assert logic.executions == 1


def test_key_order_and_whitespace_do_not_matter(client: TestClient, logic: PaymentLogic):
    headers = {"Idempotency-Key": "pay-1", "content-type": "application/json"}
    client.post("/", content=b'{"amount": 1, "currency": "EUR"}', headers=headers)
    response = client.post("/", content=b'{"currency":"EUR","amount":1}', headers=headers)

    assert response.headers["Idempotent-Replay"] == "true"
    assert logic.executions == 1


def test_different_keys_execute_independently(client: TestClient, logic: PaymentLogic):
    first = client.post("/", json={"amount": 1}, headers={"Idempotency-Key": "pay-1"})
    second = client.post("/", json={"amount": 1}, headers={"Idempotency-Key": "pay-2"})

    assert first.json()["id"] == "pay_1"
    assert second.json()["id"] == "pay_2"
    assert logic.executions == 2


def test_key_header_is_case_insensitive(client: TestClient, logic: PaymentLogic):
    client.post("/", json={"amount": 1}, headers={"Idempotency-Key": "pay-1"})
    response = client.post("/", json={"amount": 1}, headers={"IDEMPOTENCY-KEY": "pay-1"})

    assert response.headers["Idempotent-Replay"] == "true"
    assert logic.executions == 1


def test_key_from_payload_field(logic: PaymentLogic):
    app = create_app(
        IdempotencyConfig(key_field="name"),
        storage=MemoryStorageAdapter(),
        business_logic=logic,
    )
    with TestClient(app) as client:
        client.post("/", json={"name": "abc", "amount": 1})
        response = client.post("/", json={"name": "abc", "amount": 1})

    assert response.headers["Idempotency-Key"] == "abc"
    assert response.headers["Idempotent-Replay"] == "true"
    assert logic.executions == 1
