"""Scenario 4: TTL Expiry Tests

This module tests record expiry:
- Terminal records replay until their TTL elapses
- Expired records are removed by the sweep and the key becomes reusable
- Expired terminal records not yet swept are cleared on the next admit
- Reusing an expired key with a different payload is a fresh request
"""

import json

import pytest

from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.core.handler import IdempotentHandler, Request
from idempotent_endpoint.models import DecisionKind, ErrorInfo, RecordStatus

TERMINAL_TTL = 3600


def _request(payload: dict) -> Request:
    return Request("POST", "/", {"Idempotency-Key": "req-1"}, json.dumps(payload).encode())


@pytest.mark.asyncio
async def test_completed_record_replays_within_ttl(coordinator, fp_a, clock):
    decision = await coordinator.admit("req-1", fp_a)
    await coordinator.complete("req-1", decision.version, {"status": "ok"})

    for _ in range(3):
        clock.advance(TERMINAL_TTL // 4)
        assert (await coordinator.admit("req-1", fp_a)).kind is DecisionKind.REPLAY


@pytest.mark.asyncio
async def test_swept_record_is_absent_and_key_reusable(coordinator, storage, fp_a, clock):
    decision = await coordinator.admit("req-1", fp_a)
    await coordinator.complete("req-1", decision.version, {"status": "ok"})
    clock.advance(TERMINAL_TTL)

    removed = await storage.cleanup_expired()

    assert removed == 1
    assert await storage.get_item("req-1") is None

    again = await coordinator.admit("req-1", fp_a)
    assert again.kind is DecisionKind.PROCEED
    assert again.version == 0


@pytest.mark.asyncio
async def test_unswept_expired_record_cleared_on_admit(coordinator, storage, fp_a, clock):
    decision = await coordinator.admit("req-1", fp_a)
    await coordinator.fail("req-1", decision.version, ErrorInfo(error_type="X", message="x"))
    clock.advance(TERMINAL_TTL + 1)

    # Still physically present, like an item DynamoDB has not deleted yet
    assert await storage.get_item("req-1") is not None

    again = await coordinator.admit("req-1", fp_a)

    assert again.kind is DecisionKind.PROCEED
    record = await storage.get_item("req-1")
    assert record is not None
    assert record.status is RecordStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_expired_key_accepts_new_payload(coordinator, fp_a, fp_b, clock):
    decision = await coordinator.admit("req-1", fp_a)
    await coordinator.complete("req-1", decision.version, {"status": "ok"})

    assert (await coordinator.admit("req-1", fp_b)).kind is DecisionKind.CONFLICT

    clock.advance(TERMINAL_TTL)

    assert (await coordinator.admit("req-1", fp_b)).kind is DecisionKind.PROCEED


@pytest.mark.asyncio
async def test_sweep_keeps_unexpired_records(coordinator, storage, fp_a, clock):
    first = await coordinator.admit("old", fp_a)
    await coordinator.complete("old", first.version, {"n": 1})
    clock.advance(TERMINAL_TTL - 10)
    second = await coordinator.admit("new", fp_a)
    await coordinator.complete("new", second.version, {"n": 2})
    clock.advance(10)

    assert await storage.cleanup_expired() == 1
    assert await storage.get_item("old") is None
    assert await storage.get_item("new") is not None


@pytest.mark.asyncio
async def test_handler_executes_again_after_expiry(coordinator, clock):
    handler = IdempotentHandler(coordinator, IdempotencyConfig())
    executions = []

    async def logic(payload):
        executions.append(payload)
        return {"execution": len(executions)}

    first = await handler.handle(_request({"name": "abc"}), logic)
    replay = await handler.handle(_request({"name": "abc"}), logic)
    clock.advance(TERMINAL_TTL)
    fresh = await handler.handle(_request({"name": "abc"}), logic)

    assert first.json() == replay.json() == {"execution": 1}
    assert fresh.json() == {"execution": 2}
    assert fresh.headers["Idempotent-Replay"] == "false"
