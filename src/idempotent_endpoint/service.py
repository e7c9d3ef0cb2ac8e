"""HTTP service exposing the idempotent endpoint.

Wires configuration, storage, expiry policy, coordinator and handler into a
FastAPI application:

    POST /        idempotent business logic
    GET /healthz  liveness probe
    GET /metrics  Prometheus metrics

Run with the ``idempotent-endpoint`` console script, configured through
``IDEMPOTENCY_*`` environment variables::

    IDEMPOTENCY_BACKEND=dynamodb TABLE_NAME=idempotency idempotent-endpoint

Then::

    curl -X POST localhost:8000/ -H 'Idempotency-Key: req-1' -d '{"name": "abc"}'
"""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from idempotent_endpoint import __version__
from idempotent_endpoint.adapters.asgi import ASGIIdempotentEndpoint
from idempotent_endpoint.config import IdempotencyConfig
from idempotent_endpoint.core.cleanup import needs_sweep, start_cleanup_task, stop_cleanup_task
from idempotent_endpoint.core.coordinator import IdempotencyCoordinator
from idempotent_endpoint.core.handler import BusinessLogic, IdempotentHandler
from idempotent_endpoint.exceptions import HandlerExecutionError
from idempotent_endpoint.expiry import ExpiryPolicy
from idempotent_endpoint.observability.logging import configure_logging, get_logger
from idempotent_endpoint.storage import StorageAdapter, build_storage

logger = get_logger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0

# Non-POST methods reach the handler so they get its JSON 405 response
ROUTE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def echo_logic(payload: Any) -> dict[str, Any]:
    """Default business logic: acknowledge the payload."""
    return {"status": "ok"}


def webhook_logic(
    url: str,
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BusinessLogic:
    """Build business logic that forwards the payload to ``url``.

    A transport error or a non-2xx answer from the webhook is recorded as a
    424 Failed Dependency, so retries with the same key replay it instead of calling
    the webhook again.
    """

    async def forward(payload: Any) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("webhook.failed", url=url, error=str(e))
                raise HandlerExecutionError(
                    message=f"Webhook request failed: {e}",
                    status_code=424,
                    error_type="WebhookError",
                ) from e

        logger.info("webhook.delivered", url=url, status_code=response.status_code)
        return {"status": "ok", "webhook_status": response.status_code}

    return forward


def default_business_logic(config: IdempotencyConfig) -> BusinessLogic:
    """Pick the bundled business logic for ``config``."""
    if config.webhook_url:
        return webhook_logic(config.webhook_url)
    return echo_logic


def create_app(
    config: IdempotencyConfig | None = None,
    storage: StorageAdapter | None = None,
    business_logic: BusinessLogic | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Service configuration (defaults to ``IdempotencyConfig()``).
        storage: Storage adapter. Built from ``config`` when omitted.
        business_logic: Async function of the parsed payload. Defaults to the
            bundled echo or webhook logic.

    Returns:
        The configured FastAPI application. The expiry sweep runs during its
        lifespan when the storage has no native expiry.
    """
    if config is None:
        config = IdempotencyConfig()
    if storage is None:
        storage = build_storage(config)
    if business_logic is None:
        business_logic = default_business_logic(config)

    coordinator = IdempotencyCoordinator(
        storage,
        ExpiryPolicy.from_config(config),
        retry_after_seconds=config.retry_after_seconds,
    )
    handler = IdempotentHandler(coordinator, config)
    endpoint = ASGIIdempotentEndpoint(handler, business_logic)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task = None
        if needs_sweep(storage):
            task = await start_cleanup_task(storage, config.cleanup_interval_seconds)
        logger.info("service.started", backend=config.backend)
        try:
            yield
        finally:
            if task is not None:
                await stop_cleanup_task(task)
            logger.info("service.stopped")

    app = FastAPI(title="Idempotent Endpoint", version=__version__, lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.storage = storage

    @app.api_route("/", methods=ROUTE_METHODS)
    async def idempotent(request: Request) -> Response:
        return await endpoint(request)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def main() -> None:
    """Console entry point: run the service with uvicorn."""
    config = IdempotencyConfig.from_env()
    configure_logging(level=config.log_level, json_output=config.json_logs)

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
