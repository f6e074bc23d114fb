"""Shared Chromium process with profile rotation.

All sessions share one browser. Each session holds a *lease* for as long as
it has a page open. Rotating to another profile tears the browser down and
relaunches it, so ``rotate()`` is an exclusive writer: it waits until the
caller's lease is the only one left and blocks new leases meanwhile. A second
rotation requested while one is pending fails fast with "rotation in
progress".
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse
from uuid import uuid4

from arenabridge.browser.profiles import (
    BrowserProfile,
    WEBDRIVER_OVERRIDE_JS,
    next_profile,
)
from arenabridge.logging_config import redact_url
from arenabridge.middleware.error_handler import ResourceAcquisitionFailedError

if TYPE_CHECKING:
    from playwright.async_api import Page
    from arenabridge.proxy.types import Proxy

logger = logging.getLogger(__name__)

# Chromium flags for containerized / headless operation
CHROMIUM_ARGS: list[str] = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

Launcher = Callable[[BrowserProfile, "str | None"], Awaitable[Any]]


@dataclass
class BrowserLease:
    """Shared hold on the current browser."""

    id: str = field(default_factory=lambda: str(uuid4()))
    generation: int = 0


def playwright_proxy(url: str) -> dict:
    """Translate a proxy URL into Playwright's ``proxy`` option."""
    parsed = urlparse(url)
    option: dict = {"server": f"{parsed.scheme}://{parsed.hostname}:{parsed.port}"}
    if parsed.username:
        option["username"] = parsed.username
        option["password"] = parsed.password or ""
    return option


class BrowserManager:
    """Owns Playwright, the shared browser and the rotation lock."""

    def __init__(
        self,
        profiles: list[BrowserProfile],
        *,
        headless: bool = True,
        upstream_proxy: str | None = None,
        rotation_wait_seconds: float = 30.0,
        launcher: Launcher | None = None,
    ) -> None:
        if not profiles:
            raise ValueError("at least one browser profile is required")
        self._profiles = list(profiles)
        self._headless = headless
        self._upstream_proxy = upstream_proxy
        self._rotation_wait_seconds = rotation_wait_seconds
        self._launcher = launcher or self._launch_chromium

        self._playwright: Any = None
        self._browser: Any = None
        self._profile: BrowserProfile = self._profiles[0]
        self._generation = 0
        self._rotations = 0

        self._cond = asyncio.Condition()
        self._leases: set[str] = set()
        self._rotating = False
        self._rotation_pending = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def profile(self) -> BrowserProfile:
        return self._profile

    @property
    def profiles(self) -> list[BrowserProfile]:
        return list(self._profiles)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def rotating(self) -> bool:
        return self._rotating or self._rotation_pending

    # ------------------------------------------------------------------
    # start / shutdown
    # ------------------------------------------------------------------

    async def start(self, profile: BrowserProfile | None = None) -> None:
        """Launch the shared browser with *profile* (default: the first one)."""
        self._profile = profile or self._profiles[0]
        self._browser = await self._launcher(self._profile, self._upstream_proxy)
        self._generation += 1
        logger.info(
            "Browser started with profile %s",
            self._profile.name,
            extra={"profile": self._profile.name},
        )

    async def shutdown(self) -> None:
        """Close the browser and stop Playwright."""
        await self._close_browser()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser manager shut down")

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    async def acquire_lease(self, timeout: float | None = None) -> BrowserLease:
        """Hold the current browser. Waits while a rotation is pending or running."""
        wait = self._rotation_wait_seconds if timeout is None else timeout
        async with self._cond:
            try:
                await asyncio.wait_for(
                    self._cond.wait_for(lambda: not self.rotating),
                    timeout=wait,
                )
            except asyncio.TimeoutError:
                raise ResourceAcquisitionFailedError("Browser rotation in progress")
            lease = BrowserLease(generation=self._generation)
            self._leases.add(lease.id)
        return lease

    async def release_lease(self, lease: BrowserLease | None) -> None:
        if lease is None:
            return
        async with self._cond:
            self._leases.discard(lease.id)
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # rotate
    # ------------------------------------------------------------------

    async def rotate(
        self,
        profile: BrowserProfile | None = None,
        *,
        lease: BrowserLease | None = None,
    ) -> BrowserProfile:
        """Relaunch the browser with *profile* (default: the next profile).

        Waits up to ``rotation_wait_seconds`` for every other lease to be
        released. Raises :class:`ResourceAcquisitionFailedError` when another
        rotation is already pending or the wait times out.
        """
        own = lease.id if lease is not None else None
        async with self._cond:
            if self.rotating:
                raise ResourceAcquisitionFailedError("Browser rotation in progress")
            self._rotation_pending = True
            try:
                await asyncio.wait_for(
                    self._cond.wait_for(lambda: not (self._leases - {own})),
                    timeout=self._rotation_wait_seconds,
                )
            except BaseException as exc:
                # Timed out or cancelled: let queued acquirers through again
                self._rotation_pending = False
                self._cond.notify_all()
                if isinstance(exc, asyncio.TimeoutError):
                    raise ResourceAcquisitionFailedError(
                        "Browser rotation in progress", active_sessions=len(self._leases)
                    ) from None
                raise
            self._rotation_pending = False
            self._rotating = True

        target = profile or next_profile(self._profiles, self._profile)
        try:
            logger.info(
                "Rotating browser profile %s -> %s",
                self._profile.name,
                target.name,
                extra={"profile": target.name},
            )
            await self._close_browser()
            await self.start(target)
            self._rotations += 1
            if lease is not None:
                lease.generation = self._generation
        finally:
            async with self._cond:
                self._rotating = False
                self._cond.notify_all()
        return target

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def new_page(self, proxy: "Proxy | None" = None) -> "Page":
        """Open a page in a fresh context, optionally routed through *proxy*."""
        if self._browser is None:
            raise ResourceAcquisitionFailedError("Browser is not running")
        context_kwargs = self._profile.context_options()
        if proxy is not None:
            context_kwargs["proxy"] = playwright_proxy(proxy.url)
        context = await self._browser.new_context(**context_kwargs)
        await context.add_init_script(WEBDRIVER_OVERRIDE_JS)
        return await context.new_page()

    @staticmethod
    async def close_page(page: "Page | None") -> None:
        """Close *page* and its context. Never raises."""
        if page is None:
            return
        try:
            await page.context.close()
        except Exception:  # noqa: BLE001
            logger.debug("Error closing page (may already be closed)", exc_info=True)

    def get_stats(self) -> dict:
        return {
            "running": self._browser is not None,
            "profile": self._profile.name,
            "generation": self._generation,
            "rotations": self._rotations,
            "leases": len(self._leases),
            "rotating": self.rotating,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _launch_chromium(self, profile: BrowserProfile, upstream_proxy: str | None) -> Any:
        """Launch Chromium through Playwright (started lazily)."""
        if self._playwright is None:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()

        launch_kwargs: dict = {"headless": self._headless, "args": CHROMIUM_ARGS}
        if upstream_proxy:
            launch_kwargs["proxy"] = playwright_proxy(upstream_proxy)
            logger.info("Launching browser via proxy %s", redact_url(upstream_proxy))
        return await self._playwright.chromium.launch(**launch_kwargs)

    async def _close_browser(self) -> None:
        """Safely close the current browser."""
        browser, self._browser = self._browser, None
        if browser is None:
            return
        try:
            await browser.close()
        except Exception:  # noqa: BLE001
            logger.debug("Error closing browser (may already be closed)", exc_info=True)
