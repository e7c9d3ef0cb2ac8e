"""End-to-end scenario tests for the idempotent endpoint.

Each scenario drives the coordinator, the handler or the full FastAPI app
through one aspect of idempotency handling: replays, conflicts, concurrent
duplicates, expiry, crash recovery and request validation.
"""
