"""ASGI adapter for FastAPI and Starlette applications.

This module exposes the framework-agnostic IdempotentHandler as a Starlette
endpoint:

1. Converts the Starlette request to the internal Request format
2. Processes it through the handler
3. Converts the EndpointResponse back to a Starlette Response

Examples:
    FastAPI integration::

        from fastapi import FastAPI

        app = FastAPI()
        endpoint = ASGIIdempotentEndpoint(handler, business_logic)
        app.add_api_route("/", endpoint, methods=["POST"])

    Starlette integration::

        from starlette.applications import Starlette
        from starlette.routing import Route

        app = Starlette(routes=[Route("/", endpoint, methods=["POST"])])
"""

from starlette.requests import Request as StarletteRequest
from starlette.responses import Response

from idempotent_endpoint.core.handler import BusinessLogic, IdempotentHandler, Request
from idempotent_endpoint.core.replay import EndpointResponse


class ASGIIdempotentEndpoint:
    """Starlette endpoint running ``business_logic`` through an IdempotentHandler.

    Attributes:
        handler: The framework-agnostic handler
        business_logic: Async function of the parsed JSON payload
    """

    def __init__(self, handler: IdempotentHandler, business_logic: BusinessLogic) -> None:
        self.handler = handler
        self.business_logic = business_logic

    async def __call__(self, request: StarletteRequest) -> Response:
        """Process one ASGI request with idempotency handling."""
        internal_request = await self._convert_request(request)
        result = await self.handler.handle(internal_request, self.business_logic)
        return self._convert_response(result)

    async def _convert_request(self, request: StarletteRequest) -> Request:
        body = await request.body()

        headers: dict[str, str] = {}
        for key, value in request.headers.items():
            headers[key] = value

        return Request(
            method=request.method,
            path=request.url.path,
            headers=headers,
            body=body,
        )

    def _convert_response(self, response: EndpointResponse) -> Response:
        return Response(
            content=response.body,
            status_code=response.status,
            headers=response.headers,
        )
