"""Challenge detection and resolution.

``resolve`` first tries the automated solver (when enabled), then falls back
to waiting for a human: it emits a ``user_action_required`` event and waits
until the challenge clears, the human signals completion for the request, or
the timeout elapses. Either way the answer comes from a fresh ``detect`` of
the page. A solver's claim of success is never taken on its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from arenabridge.middleware.error_handler import CaptchaUnresolvedError
from arenabridge.session.events import ProgressEvent, ProgressSink, ProgressType, null_sink

if TYPE_CHECKING:
    from arenabridge.adapters.base import SiteAdapter
    from arenabridge.captcha.solver import CaptchaSolver

logger = logging.getLogger(__name__)


class CaptchaSignals:
    """Per-request events a human sets once they solved the challenge."""

    def __init__(self) -> None:
        self._events: dict[str, asyncio.Event] = {}

    def register(self, request_id: str) -> asyncio.Event:
        return self._events.setdefault(request_id, asyncio.Event())

    def signal(self, request_id: str) -> bool:
        """Wake the session waiting on *request_id*. ``False`` if none is waiting."""
        event = self._events.get(request_id)
        if event is None:
            return False
        event.set()
        return True

    def discard(self, request_id: str) -> None:
        self._events.pop(request_id, None)

    def pending(self) -> list[str]:
        return [rid for rid, event in self._events.items() if not event.is_set()]


class CaptchaGate:
    """Detects challenge pages and gets past them."""

    def __init__(
        self,
        adapter: "SiteAdapter",
        solver: "CaptchaSolver | None" = None,
        signals: CaptchaSignals | None = None,
        *,
        poll_interval: float = 1.0,
        default_timeout: float = 60.0,
    ) -> None:
        self._adapter = adapter
        self._solver = solver
        self._signals = signals or CaptchaSignals()
        self._poll_interval = poll_interval
        self._default_timeout = default_timeout

    @property
    def signals(self) -> CaptchaSignals:
        return self._signals

    async def detect(self, page: Any) -> bool:
        """``True`` if a challenge is showing. Inspection errors count as no challenge."""
        try:
            return await self._adapter.detect_challenge_markers(page)
        except Exception:  # noqa: BLE001
            logger.warning("Challenge detection failed, assuming none", exc_info=True)
            return False

    async def resolve(
        self,
        page: Any,
        *,
        auto_solve: bool = True,
        timeout: float | None = None,
        request_id: str = "",
        sink: ProgressSink = null_sink,
    ) -> bool:
        """Try to clear the challenge within *timeout* seconds.

        Returns ``True`` only if a fresh inspection afterwards finds no challenge.
        """
        loop = asyncio.get_running_loop()
        budget = self._default_timeout if timeout is None else timeout
        deadline = loop.time() + budget

        if auto_solve and self._solver is not None:
            sink(ProgressEvent(ProgressType.STATUS, "Captcha detected, attempting to solve..."))
            if await self._solve(page, budget, request_id):
                remaining = max(0.0, deadline - loop.time())
                if await self._wait_clear(page, min(remaining, self._poll_interval * 5)):
                    sink(ProgressEvent(ProgressType.SUCCESS, "Captcha solved."))
                    return True
            sink(ProgressEvent(ProgressType.WARNING, "Automatic captcha solving failed."))

        remaining = max(0.0, deadline - loop.time())
        if remaining <= 0:
            return not await self._still_challenged(page)

        sink(
            ProgressEvent(
                ProgressType.USER_ACTION_REQUIRED,
                "Captcha detected. Please solve it in the browser window.",
            )
        )
        logger.info(
            "Waiting up to %.0fs for manual captcha resolution",
            remaining,
            extra={"request_id": request_id},
        )
        event = self._signals.register(request_id) if request_id else None
        try:
            cleared = await self._wait_clear(page, remaining, event)
        finally:
            if request_id:
                self._signals.discard(request_id)

        if cleared:
            sink(ProgressEvent(ProgressType.SUCCESS, "Captcha solved."))
        return cleared

    async def ensure_clear(
        self,
        page: Any,
        *,
        auto_solve: bool = True,
        timeout: float | None = None,
        request_id: str = "",
        sink: ProgressSink = null_sink,
    ) -> bool:
        """Resolve a challenge if one is showing. Returns whether one was present.

        Raises :class:`CaptchaUnresolvedError` when it persists.
        """
        if not await self.detect(page):
            return False
        logger.warning("Captcha challenge detected", extra={"request_id": request_id})
        if not await self.resolve(
            page, auto_solve=auto_solve, timeout=timeout, request_id=request_id, sink=sink
        ):
            raise CaptchaUnresolvedError(request_id=request_id)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _solve(self, page: Any, timeout: float, request_id: str) -> bool:
        """Run the automated solver and inject its token. ``True`` if applied."""
        try:
            params = await self._adapter.challenge_parameters(page)
            token = await asyncio.wait_for(
                self._solver.solve(page.url, params, timeout), timeout=timeout
            )
            return await self._adapter.apply_challenge_token(page, token, params)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Automated captcha solving failed: %s",
                exc,
                extra={"request_id": request_id, "error_reason": str(exc)},
            )
            return False

    async def _still_challenged(self, page: Any) -> bool:
        try:
            return await self._adapter.detect_challenge_markers(page)
        except Exception:  # noqa: BLE001
            logger.debug("Challenge re-check failed, treating as unresolved", exc_info=True)
            return True

    async def _wait_clear(
        self,
        page: Any,
        timeout: float,
        event: asyncio.Event | None = None,
    ) -> bool:
        """Poll until the challenge clears, *event* is set or *timeout* elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if not await self._still_challenged(page):
                return True
            remaining = deadline - loop.time()
            if remaining <= 0 or (event is not None and event.is_set()):
                break
            wait = min(self._poll_interval, remaining)
            if event is None:
                await asyncio.sleep(wait)
                continue
            try:
                await asyncio.wait_for(event.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
        return not await self._still_challenged(page)
