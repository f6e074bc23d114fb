"""Request ID middleware.

Every request gets an id: the caller's ``X-Request-ID`` when it is a short
token of safe characters, otherwise a fresh UUID4. The id is stored in
``request.state.request_id``, bound to :data:`request_id_var` so every log
line written while the request runs carries it, and echoed in the
``X-Request-ID`` response header. The same id keys the session's captcha
signal and its progress events.
"""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from arenabridge.logging_config import request_id_var

# Caller ids end up in URLs (/api/captcha/{id}/resolved) and log lines
_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    """The caller's id when acceptable, else a new UUID4."""
    if header_value and _VALID_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assigns and propagates the per-request id."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = resolve_request_id(request.headers.get("x-request-id"))
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response: Response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response
