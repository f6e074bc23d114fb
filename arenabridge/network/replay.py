"""Server-side replay of a captured API request.

Used once per session when the page never delivered a usable response: the
captured request is re-sent with httpx, carrying the page's cookies.
"""

from __future__ import annotations

import logging

import httpx

from arenabridge.network.capture import CapturedRequest, CapturedResponse

logger = logging.getLogger(__name__)

# Headers httpx computes itself or that must not be forwarded
_DROP_HEADERS = frozenset({"host", "content-length", "connection", "cookie", "accept-encoding"})


class RequestReplayer:
    """Re-sends captured requests."""

    def __init__(self, *, timeout: float = 60.0, client: httpx.AsyncClient | None = None) -> None:
        self._timeout = timeout
        self._client = client

    async def replay(
        self,
        request: CapturedRequest,
        cookies: list[dict] | None = None,
        *,
        proxy_url: str | None = None,
    ) -> CapturedResponse:
        """Send *request* again. Raises ``httpx.HTTPError`` on transport failure."""
        headers = {k: v for k, v in request.headers.items() if k.lower() not in _DROP_HEADERS}
        jar = "; ".join(f"{c['name']}={c['value']}" for c in cookies or [] if "name" in c and "value" in c)
        if jar:
            headers["Cookie"] = jar
        logger.info("Replaying captured %s request to %s", request.method, request.url)

        if self._client is not None:
            response = await self._client.request(
                request.method,
                request.url,
                headers=headers,
                content=request.body,
                timeout=self._timeout,
            )
        else:
            async with httpx.AsyncClient(
                proxy=proxy_url,
                timeout=httpx.Timeout(self._timeout),
            ) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    headers=headers,
                    content=request.body,
                )
        return CapturedResponse(status=response.status_code, body=response.text, url=request.url)
