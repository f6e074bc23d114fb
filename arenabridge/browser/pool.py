"""Bounded page pool (``MAX_TABS``) over the shared browser.

At most ``max_tabs`` pages are open at once. Requests beyond capacity wait in
FIFO order (priority requests jump to the front) until a page is released;
a waiter that times out gets :class:`ResourceAcquisitionFailedError` and
nothing is ever dropped silently. Every handle carries a browser lease, so
profile rotation cannot tear the browser down under an open page.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from arenabridge.middleware.error_handler import (
    BridgeError,
    ResourceAcquisitionFailedError,
)

if TYPE_CHECKING:
    from arenabridge.browser.manager import BrowserLease, BrowserManager
    from arenabridge.proxy.types import Proxy

logger = logging.getLogger(__name__)


@dataclass
class PageHandle:
    """One pool slot: a page plus the lease and proxy it was opened with."""

    request_id: str
    page: Any  # playwright.async_api.Page at runtime
    lease: "BrowserLease"
    proxy: "Proxy | None" = None
    id: str = field(default_factory=lambda: str(uuid4()))
    acquired_at: float = field(default_factory=time.monotonic)


class PagePool:
    """Fixed-capacity pool of browser pages.

    Lifecycle
    ---------
    1. ``acquire(request_id, priority, timeout)``: wait for a slot, open a page.
    2. ``refresh(handle)``: replace the page after a browser rotation.
    3. ``release(handle)``: close the page and hand the slot to the next waiter.
    """

    def __init__(
        self,
        browser: "BrowserManager",
        *,
        max_tabs: int = 3,
        acquire_timeout: float = 60.0,
    ) -> None:
        if max_tabs < 1:
            raise ValueError("max_tabs must be >= 1")
        self._browser = browser
        self._max_tabs = max_tabs
        self._acquire_timeout = acquire_timeout
        self._free_slots = max_tabs
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._in_use: dict[str, PageHandle] = {}
        self._pages_served = 0
        self._timeouts = 0

    # ------------------------------------------------------------------
    # acquire
    # ------------------------------------------------------------------

    async def acquire(
        self,
        request_id: str,
        *,
        proxy: "Proxy | None" = None,
        priority: bool = False,
        timeout: float | None = None,
    ) -> PageHandle:
        """Return a handle with an open page.

        Blocks up to *timeout* seconds (default ``acquire_timeout``). Raises
        :class:`ResourceAcquisitionFailedError` if no slot frees up in time or
        the page cannot be opened.
        """
        wait = self._acquire_timeout if timeout is None else timeout
        started = time.monotonic()
        await self._take_slot(wait, priority)

        lease = None
        try:
            remaining = max(0.0, wait - (time.monotonic() - started))
            lease = await self._browser.acquire_lease(timeout=remaining)
            page = await self._browser.new_page(proxy)
        except BaseException as exc:
            await self._browser.release_lease(lease)
            self._give_slot()
            if isinstance(exc, BridgeError) or not isinstance(exc, Exception):
                raise
            raise ResourceAcquisitionFailedError(f"Could not open a page: {exc}") from exc

        handle = PageHandle(request_id=request_id, page=page, lease=lease, proxy=proxy)
        self._in_use[handle.id] = handle
        self._pages_served += 1
        logger.debug("Acquired page %s for request %s", handle.id, request_id,
                     extra={"request_id": request_id})
        return handle

    # ------------------------------------------------------------------
    # refresh
    # ------------------------------------------------------------------

    async def refresh(self, handle: PageHandle) -> PageHandle:
        """Close *handle*'s page and open a fresh one in the same slot."""
        await self._browser.close_page(handle.page)
        handle.page = None
        try:
            handle.page = await self._browser.new_page(handle.proxy)
        except BridgeError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ResourceAcquisitionFailedError(f"Could not open a page: {exc}") from exc
        return handle

    # ------------------------------------------------------------------
    # release
    # ------------------------------------------------------------------

    async def release(self, handle: PageHandle | None) -> None:
        """Close the page and free the slot. Safe to call more than once."""
        if handle is None or self._in_use.pop(handle.id, None) is None:
            return
        try:
            await self._browser.close_page(handle.page)
        finally:
            handle.page = None
            self._give_slot()
            await self._browser.release_lease(handle.lease)
        logger.debug("Released page %s", handle.id, extra={"request_id": handle.request_id})

    # ------------------------------------------------------------------
    # get_stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Return pool statistics for the health endpoint."""
        return {
            "max_tabs": self._max_tabs,
            "available": self._free_slots,
            "in_use": len(self._in_use),
            "waiting": sum(1 for w in self._waiters if not w.done()),
            "pages_served": self._pages_served,
            "timeouts": self._timeouts,
        }

    # ------------------------------------------------------------------
    # Slot bookkeeping
    # ------------------------------------------------------------------

    async def _take_slot(self, timeout: float, priority: bool) -> None:
        if self._free_slots > 0 and not self._waiters:
            self._free_slots -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        if priority:
            self._waiters.appendleft(waiter)
        else:
            self._waiters.append(waiter)

        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError) as exc:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over while we were giving up
                self._give_slot()
            else:
                waiter.cancel()
                self._discard_waiter(waiter)
            if isinstance(exc, asyncio.CancelledError):
                raise
            self._timeouts += 1
            raise ResourceAcquisitionFailedError(
                f"No page available within {timeout}s timeout"
            )

    def _give_slot(self) -> None:
        """Hand the slot to the oldest live waiter, or return it to the pool."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._free_slots += 1

    def _discard_waiter(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass
