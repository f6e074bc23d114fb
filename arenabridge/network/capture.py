"""Capture of the chat API exchange on a page.

``begin_capture`` installs request/response listeners for URLs containing a
pattern. Matching requests are recorded (so they can be replayed later) and
the first matching response resolves ``await_match``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CapturedRequest:
    """An outgoing API request seen on the page."""

    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None

    @property
    def json_body(self) -> Any:
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            return None


@dataclass
class CapturedResponse:
    """Status and body of the API response."""

    status: int
    body: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class NetworkCapture:
    """Listens on one page for the chat API call."""

    def __init__(self, page: Any) -> None:
        self._page = page
        self._pattern = ""
        self._method = "POST"
        self._requests: list[CapturedRequest] = []
        self._result: asyncio.Future[CapturedResponse] | None = None
        self._reads: set[asyncio.Task] = set()
        self._active = False

    def begin_capture(self, url_pattern: str, method: str = "POST") -> None:
        """Start recording requests and responses whose URL contains *url_pattern*."""
        self.stop()
        self._pattern = url_pattern
        self._method = method.upper()
        self._requests = []
        self._result = asyncio.get_running_loop().create_future()
        self._page.on("request", self._on_request)
        self._page.on("response", self._on_response)
        self._active = True

    async def await_match(self, timeout: float) -> CapturedResponse | None:
        """First matching response, or ``None`` if none arrives within *timeout*."""
        if self._result is None:
            raise RuntimeError("begin_capture() has not been called")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def get_already_captured(self) -> CapturedRequest | None:
        """Most recent matching request, if any was seen."""
        return self._requests[-1] if self._requests else None

    def stop(self) -> None:
        if not self._active:
            return
        for event, handler in (("request", self._on_request), ("response", self._on_response)):
            try:
                self._page.remove_listener(event, handler)
            except Exception:  # noqa: BLE001
                logger.debug("Could not remove %s listener", event, exc_info=True)
        for task in self._reads:
            task.cancel()
        self._reads.clear()
        self._active = False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def _matches(self, url: str, method: str) -> bool:
        return self._pattern in url and method.upper() == self._method

    def _on_request(self, request: Any) -> None:
        if not self._matches(request.url, request.method):
            return
        self._requests.append(
            CapturedRequest(
                url=request.url,
                method=request.method,
                headers=dict(request.headers),
                body=request.post_data,
            )
        )
        logger.debug("Captured API request to %s", request.url)

    def _on_response(self, response: Any) -> None:
        if not self._matches(response.url, response.request.method):
            return
        if self._result is None or self._result.done():
            return
        task = asyncio.ensure_future(self._read(response))
        self._reads.add(task)
        task.add_done_callback(self._reads.discard)

    async def _read(self, response: Any) -> None:
        try:
            body = await response.text()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not read API response body: %s", exc)
            body = ""
        if self._result is not None and not self._result.done():
            self._result.set_result(
                CapturedResponse(status=response.status, body=body, url=response.url)
            )
