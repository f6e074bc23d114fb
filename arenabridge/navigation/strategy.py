"""Exhaustive navigation search over (browser profile x path variant).

The search space is materialized up front as an ordered list and walked with
an index cursor, so the order is deterministic and every combination is
tried at most once. The caller's current profile comes first. Moving to a
new profile rotates the shared browser, waits a cooldown and reopens the
page. The first combination whose page shows the interactive surface wins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from arenabridge.browser.profiles import BrowserProfile
from arenabridge.middleware.error_handler import (
    CancellationRequestedError,
    CaptchaUnresolvedError,
    NavigationFailedError,
)
from arenabridge.resilience.retry import (
    Deadline,
    RetryConfig,
    RetryOrchestrator,
    race_cancellation,
)
from arenabridge.session.events import ProgressEvent, ProgressSink, ProgressType, null_sink

if TYPE_CHECKING:
    from arenabridge.adapters.base import SiteAdapter
    from arenabridge.browser.manager import BrowserManager
    from arenabridge.browser.pool import PageHandle, PagePool
    from arenabridge.captcha.gate import CaptchaGate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationPath:
    """A URL variant under the base URL. ``cache_bust`` appends ``t=<epoch ms>``."""

    name: str
    path: str
    cache_bust: bool = False

    def url(self, base_url: str, now_ms: int | None = None) -> str:
        full = base_url.rstrip("/") + "/" + self.path.lstrip("/")
        if self.cache_bust:
            stamp = now_ms if now_ms is not None else int(time.time() * 1000)
            full += ("&" if "?" in full else "?") + f"t={stamp}"
        return full


DEFAULT_PATHS: tuple[NavigationPath, ...] = (
    NavigationPath("Direct mode", "/?mode=direct"),
    NavigationPath("Default mode", "/"),
    NavigationPath("Side-by-side mode", "/?mode=side-by-side"),
    NavigationPath("Chat path", "/chat"),
    NavigationPath("Default with cache bypass", "/", cache_bust=True),
    NavigationPath("Direct with cache bypass", "/?mode=direct", cache_bust=True),
)


def parse_paths(entries: list[str] | None) -> list[NavigationPath]:
    """Paths from settings: ``"/chat"`` or ``"/chat#bust"`` for a cache-busted variant."""
    if not entries:
        return list(DEFAULT_PATHS)
    paths = []
    for entry in entries:
        path, _, flag = entry.partition("#")
        paths.append(NavigationPath(name=entry, path=path or "/", cache_bust=flag == "bust"))
    return paths


class NavigationOutcome(str, Enum):
    SUCCESS = "success"
    CHALLENGE_UNRESOLVED = "challenge_unresolved"
    SURFACE_MISSING = "surface_missing"
    ERROR = "error"
    ROTATION_FAILED = "rotation_failed"


@dataclass
class NavigationAttempt:
    """Diagnostic record of one tried combination."""

    profile: str
    path: str
    outcome: NavigationOutcome
    elapsed_ms: int = 0
    challenge_detected: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "path": self.path,
            "outcome": self.outcome.value,
            "elapsed_ms": self.elapsed_ms,
            "challenge_detected": self.challenge_detected,
            "error": self.error,
        }


@dataclass
class NavigationResult:
    profile: BrowserProfile
    path: NavigationPath
    attempts: list[NavigationAttempt] = field(default_factory=list)


class NavigationStrategySelector:
    """Finds a (profile, path) combination that yields a usable chat page."""

    def __init__(
        self,
        browser: "BrowserManager",
        page_pool: "PagePool",
        adapter: "SiteAdapter",
        captcha_gate: "CaptchaGate",
        retry: RetryOrchestrator,
        *,
        base_url: str,
        paths: list[NavigationPath] | None = None,
        navigation_timeout_ms: int = 30_000,
        rotation_cooldown: float = 2.0,
        pacing_seconds: float = 1.0,
        captcha_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._browser = browser
        self._page_pool = page_pool
        self._adapter = adapter
        self._gate = captcha_gate
        self._retry = retry
        self._base_url = base_url
        self._paths = list(paths) if paths else list(DEFAULT_PATHS)
        self._navigation_timeout_ms = navigation_timeout_ms
        self._rotation_cooldown = rotation_cooldown
        self._pacing = RetryConfig(
            max_attempts=1,
            initial_delay=pacing_seconds,
            max_delay=pacing_seconds,
            factor=1.0,
        )
        self._captcha_timeout = captcha_timeout
        self._sleep = sleep

    @property
    def paths(self) -> list[NavigationPath]:
        return list(self._paths)

    def combinations(self, first: BrowserProfile | None = None) -> list[tuple[BrowserProfile, NavigationPath]]:
        """Every (profile, path) pair in search order, *first* profile leading."""
        profiles = self._browser.profiles
        if first is not None:
            profiles = [first] + [p for p in profiles if p.name != first.name]
        return [(profile, path) for profile in profiles for path in self._paths]

    # ------------------------------------------------------------------
    # navigate
    # ------------------------------------------------------------------

    async def navigate(
        self,
        handle: "PageHandle",
        *,
        request_id: str = "",
        sink: ProgressSink = null_sink,
        auto_solve: bool = True,
        deadline: Deadline | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> NavigationResult:
        """Walk the combinations until one succeeds.

        Raises :class:`NavigationFailedError` (carrying every attempt) when
        all are exhausted, or :class:`CancellationRequestedError`.
        """
        current = self._browser.profile
        combos = self.combinations(current)
        attempts: list[NavigationAttempt] = []
        index = 0

        while index < len(combos):
            profile, path = combos[index]

            if profile.name != current.name:
                try:
                    await self._switch_profile(handle, profile, request_id, sink, deadline, cancel_event)
                except CancellationRequestedError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Rotating to profile %s failed: %s",
                        profile.name,
                        exc,
                        extra={"request_id": request_id, "profile": profile.name},
                    )
                    sink(ProgressEvent(ProgressType.ERROR, f"Error rotating browser profile: {exc}"))
                    attempts.append(
                        NavigationAttempt(
                            profile=profile.name,
                            path="*",
                            outcome=NavigationOutcome.ROTATION_FAILED,
                            error=str(exc),
                        )
                    )
                    while index < len(combos) and combos[index][0].name == profile.name:
                        index += 1
                    continue
                current = profile

            attempt = await self._try_path(
                handle, profile, path, request_id, sink, auto_solve, deadline, cancel_event
            )
            attempts.append(attempt)
            if attempt.outcome is NavigationOutcome.SUCCESS:
                logger.info(
                    "Navigation succeeded via %s / %s",
                    profile.name,
                    path.name,
                    extra={"request_id": request_id, "profile": profile.name, "path": path.name},
                )
                return NavigationResult(profile=profile, path=path, attempts=attempts)

            index += 1
            if index < len(combos) and combos[index][0].name == profile.name:
                await self._retry.pause(1, self._pacing, deadline=deadline, cancel_event=cancel_event)

        if attempts and all(a.outcome is NavigationOutcome.CHALLENGE_UNRESOLVED for a in attempts):
            sink(ProgressEvent(ProgressType.ERROR, "Captcha challenge persisted on every path"))
            raise CaptchaUnresolvedError(
                attempts=[a.to_dict() for a in attempts],
                profiles_tried=sorted({a.profile for a in attempts}),
            )
        sink(ProgressEvent(ProgressType.ERROR, "All navigation attempts failed"))
        raise NavigationFailedError(
            attempts=[a.to_dict() for a in attempts],
            profiles_tried=sorted({a.profile for a in attempts}),
        )

    async def check_page(
        self,
        page: Any,
        *,
        request_id: str = "",
        sink: ProgressSink = null_sink,
        auto_solve: bool = True,
    ) -> tuple[NavigationOutcome, bool]:
        """Judge a loaded page by its content. Returns (outcome, challenge_detected)."""
        challenged = await self._gate.detect(page)
        if challenged and not await self._gate.resolve(
            page,
            auto_solve=auto_solve,
            timeout=self._captcha_timeout,
            request_id=request_id,
            sink=sink,
        ):
            return NavigationOutcome.CHALLENGE_UNRESOLVED, True

        await self._adapter.dismiss_dialogs(page)
        try:
            usable = await self._adapter.detect_success_markers(page)
        except Exception:  # noqa: BLE001
            logger.debug("Success marker check failed", exc_info=True)
            usable = False
        outcome = NavigationOutcome.SUCCESS if usable else NavigationOutcome.SURFACE_MISSING
        return outcome, challenged

    async def goto(
        self,
        page: Any,
        url: str,
        *,
        deadline: Deadline | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str | None:
        """Load *url*. Returns the error text if loading failed, else ``None``."""
        try:
            await race_cancellation(
                page.goto(url, timeout=self._navigation_timeout_ms, wait_until="domcontentloaded"),
                deadline=deadline,
                cancel_event=cancel_event,
            )
        except CancellationRequestedError:
            raise
        except Exception as exc:  # noqa: BLE001
            return str(exc) or exc.__class__.__name__
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _try_path(
        self,
        handle: "PageHandle",
        profile: BrowserProfile,
        path: NavigationPath,
        request_id: str,
        sink: ProgressSink,
        auto_solve: bool,
        deadline: Deadline | None,
        cancel_event: asyncio.Event | None,
    ) -> NavigationAttempt:
        started = time.monotonic()
        sink(ProgressEvent(ProgressType.STATUS, f"Attempting to navigate to {path.name}..."))
        logger.info(
            "Navigating to %s",
            path.name,
            extra={"request_id": request_id, "profile": profile.name, "path": path.path},
        )

        error = await self.goto(
            handle.page,
            path.url(self._base_url),
            deadline=deadline,
            cancel_event=cancel_event,
        )
        if error:
            logger.warning(
                "Navigation to %s failed: %s",
                path.name,
                error,
                extra={"request_id": request_id, "error_reason": error},
            )
            sink(ProgressEvent(ProgressType.WARNING, f"Navigation to {path.name} failed: {error}"))

        # A page can be usable even when goto timed out
        outcome, challenged = await self.check_page(
            handle.page, request_id=request_id, sink=sink, auto_solve=auto_solve
        )
        if error and outcome is NavigationOutcome.SURFACE_MISSING:
            outcome = NavigationOutcome.ERROR
        return NavigationAttempt(
            profile=profile.name,
            path=path.name,
            outcome=outcome,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            challenge_detected=challenged,
            error=error,
        )

    async def _switch_profile(
        self,
        handle: "PageHandle",
        profile: BrowserProfile,
        request_id: str,
        sink: ProgressSink,
        deadline: Deadline | None,
        cancel_event: asyncio.Event | None,
    ) -> None:
        sink(ProgressEvent(ProgressType.STATUS, f"Rotating to browser profile: {profile.name}"))
        await self._browser.rotate(profile, lease=handle.lease)
        await race_cancellation(
            self._sleep(self._rotation_cooldown), deadline=deadline, cancel_event=cancel_event
        )
        await self._page_pool.refresh(handle)
        await self._adapter.prepare_page(handle.page)
