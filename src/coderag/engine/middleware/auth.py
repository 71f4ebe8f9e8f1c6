"""Client key check for service mode.

Clients send the key as ``X-API-Key`` or as an ``Authorization: Bearer``
token. With no key configured every request passes, which is the normal
local setup.
"""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger(__name__)

OPEN_PATHS = frozenset({"/health", "/docs", "/openapi.json"})


def request_key(request: Request) -> str | None:
    """Key presented by the client, if any."""
    key = request.headers.get("X-API-Key")
    if key:
        return key
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return None


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Reject requests whose key does not match ``CODERAG_SERVICE_API_KEY``."""

    def __init__(self, app, api_key: str | None = None, open_paths: frozenset[str] = OPEN_PATHS) -> None:  # type: ignore[override]
        super().__init__(app)
        self._api_key = api_key or os.environ.get("CODERAG_SERVICE_API_KEY")
        self._open_paths = open_paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._api_key or request.url.path in self._open_paths:
            return await call_next(request)

        key = request_key(request)
        if key is None or not hmac.compare_digest(key.encode(), self._api_key.encode()):
            logger.warning("Rejected %s %s: bad or missing API key", request.method, request.url.path)
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})

        return await call_next(request)
