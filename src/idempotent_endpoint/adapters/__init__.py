"""Framework adapters for the idempotent endpoint.

- asgi.py: Starlette endpoint for FastAPI, Starlette, etc.
"""

from idempotent_endpoint.adapters.asgi import ASGIIdempotentEndpoint

__all__ = ["ASGIIdempotentEndpoint"]
