"""One prompt/response interaction driven through the browser.

State machine::

    idle -> acquiring -> resetting -> navigating -> captcha_check
         -> [model_selecting] -> submitting -> awaiting_response -> succeeded
    (navigation, captcha, submission or response failure)
         -> retrying -> acquiring ... (once) -> succeeded | failed

The retry rotates the browser profile and starts over on a fresh page. A
second failure is terminal. The page, its browser lease and any proxy claim
are released on every exit path, including deadline expiry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from arenabridge.logging_config import redact_url
from arenabridge.middleware.error_handler import (
    BridgeError,
    CaptchaUnresolvedError,
    InvalidPromptError,
    NavigationFailedError,
    ProxyExhaustedError,
    ResponseTimeoutError,
    SubmissionFailedError,
)
from arenabridge.navigation.strategy import NavigationOutcome
from arenabridge.network.capture import CapturedResponse, NetworkCapture
from arenabridge.resilience.retry import Deadline, race_cancellation
from arenabridge.session.events import (
    ProgressEvent,
    ProgressSink,
    ProgressType,
    SessionState,
    null_sink,
)

if TYPE_CHECKING:
    from arenabridge.adapters.base import SiteAdapter
    from arenabridge.browser.manager import BrowserManager
    from arenabridge.browser.pool import PageHandle, PagePool
    from arenabridge.captcha.gate import CaptchaGate
    from arenabridge.config.settings import BridgeSettings
    from arenabridge.navigation.strategy import NavigationStrategySelector
    from arenabridge.network.replay import RequestReplayer
    from arenabridge.proxy.pool import ProxyPool
    from arenabridge.proxy.types import Proxy

logger = logging.getLogger(__name__)

# Failures that earn the single rotate-and-retry
RETRYABLE_ERRORS: tuple[type[BridgeError], ...] = (
    NavigationFailedError,
    CaptchaUnresolvedError,
    SubmissionFailedError,
    ResponseTimeoutError,
)

# Failures that may be the proxy's fault
_PROXY_FAULTS: tuple[type[BridgeError], ...] = (NavigationFailedError, ResponseTimeoutError)


@dataclass
class InteractionRequest:
    """Caller input for one interaction."""

    prompt: str
    request_id: str = field(default_factory=lambda: str(uuid4()))
    model_id: str | None = None
    auto_solve_captcha: bool = True
    sink: ProgressSink = null_sink
    verify: bool = False
    priority: bool = False
    cancel_event: asyncio.Event | None = None


@dataclass
class InteractionResult:
    request_id: str
    status: int
    body: str
    profile: str
    path: str | None = None
    proxy_id: str | None = None
    used_fallback: bool = False
    model_selected: bool | None = None
    attempts: int = 1
    navigation: list[dict] = field(default_factory=list)

    @property
    def data(self) -> Any:
        """Body parsed as JSON when possible, else the raw text."""
        try:
            return json.loads(self.body)
        except ValueError:
            return self.body

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "status": self.status,
            "data": self.data,
            "profile": self.profile,
            "path": self.path,
            "proxy_id": self.proxy_id,
            "used_fallback": self.used_fallback,
            "model_selected": self.model_selected,
            "attempts": self.attempts,
        }


@dataclass
class SessionConfig:
    """Per-session knobs taken from :class:`BridgeSettings`."""

    target_url: str
    api_url_pattern: str = "arena-api"
    api_method: str = "POST"
    response_timeout: float = 60.0
    session_timeout: float = 300.0
    captcha_timeout: float = 60.0
    page_acquire_timeout: float = 60.0
    use_proxy_pool: bool = False
    require_proxy: bool = False

    @classmethod
    def from_settings(cls, settings: "BridgeSettings") -> "SessionConfig":
        return cls(
            target_url=settings.target_url,
            api_url_pattern=settings.api_url_pattern,
            api_method=settings.api_method,
            response_timeout=settings.response_timeout_seconds,
            session_timeout=settings.session_timeout_seconds,
            captcha_timeout=settings.captcha_timeout_seconds,
            page_acquire_timeout=settings.page_acquire_timeout_seconds,
            use_proxy_pool=settings.use_proxy_pool,
            require_proxy=settings.require_proxy,
        )


@dataclass
class SessionDependencies:
    """Shared collaborators every session uses."""

    page_pool: "PagePool"
    browser: "BrowserManager"
    navigator: "NavigationStrategySelector"
    captcha_gate: "CaptchaGate"
    adapter: "SiteAdapter"
    proxy_pool: "ProxyPool | None" = None
    replayer: "RequestReplayer | None" = None
    capture_factory: Callable[[Any], NetworkCapture] = NetworkCapture


class InteractionSession:
    """Runs one :class:`InteractionRequest` to completion."""

    def __init__(
        self,
        request: InteractionRequest,
        deps: SessionDependencies,
        config: SessionConfig,
    ) -> None:
        self.request = request
        self._deps = deps
        self._config = config
        self.state = SessionState.IDLE
        self.history: list[SessionState] = [SessionState.IDLE]
        self._deadline: Deadline | None = None

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    async def run(self) -> InteractionResult:
        """Execute the interaction.

        Raises the terminal :class:`BridgeError` on failure and
        :class:`CancellationRequestedError` when the session deadline expires
        or the caller cancels.
        """
        if not self.request.prompt or not self.request.prompt.strip():
            raise InvalidPromptError(request_id=self.request.request_id)

        started = time.monotonic()
        self._deadline = Deadline(self._config.session_timeout)
        try:
            result = await race_cancellation(
                self._run_attempts(),
                deadline=self._deadline,
                cancel_event=self.request.cancel_event,
            )
        except BridgeError as exc:
            self._fail(exc.message, started)
            raise
        except Exception as exc:
            self._fail(f"Unexpected error: {exc}", started, exc_info=True)
            raise

        self._transition(SessionState.SUCCEEDED)
        self._emit(ProgressType.SUCCESS, "Response received.")
        logger.info(
            "Session succeeded",
            extra={
                "request_id": self.request.request_id,
                "profile": result.profile,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def _run_attempts(self) -> InteractionResult:
        try:
            return await self._attempt(1)
        except RETRYABLE_ERRORS as exc:
            self._transition(SessionState.RETRYING)
            self._emit(ProgressType.WARNING, f"{exc.message}. Rotating browser profile and retrying...")
            logger.warning(
                "Attempt 1 failed, rotating profile for a single retry: %s",
                exc.message,
                extra={"request_id": self.request.request_id, "attempt": 1, "error_reason": exc.message},
            )
            profile = await self._deps.browser.rotate()
            self._emit(ProgressType.STATUS, f"Rotated browser profile to {profile.name}. Retrying...")
            return await self._attempt(2)

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    async def _attempt(self, attempt: int) -> InteractionResult:
        request = self.request
        deps = self._deps
        handle: "PageHandle | None" = None
        proxy: "Proxy | None" = None
        capture: NetworkCapture | None = None

        try:
            self._transition(SessionState.ACQUIRING, attempt=attempt)
            proxy = await self._claim_proxy()
            handle = await deps.page_pool.acquire(
                request.request_id,
                proxy=proxy,
                priority=request.priority,
                timeout=min(self._config.page_acquire_timeout, self._deadline.remaining()),
            )
            await deps.adapter.prepare_page(handle.page)

            self._transition(SessionState.RESETTING, attempt=attempt)
            await self._reset(handle)

            capture = deps.capture_factory(handle.page)
            capture.begin_capture(self._config.api_url_pattern, self._config.api_method)

            self._transition(SessionState.NAVIGATING, attempt=attempt)
            path, navigation = await self._navigate(handle)

            self._transition(SessionState.CAPTCHA_CHECK, attempt=attempt)
            await deps.captcha_gate.ensure_clear(
                handle.page,
                auto_solve=request.auto_solve_captcha,
                timeout=min(self._config.captcha_timeout, self._deadline.remaining()),
                request_id=request.request_id,
                sink=request.sink,
            )

            model_selected = None
            if request.model_id:
                self._transition(SessionState.MODEL_SELECTING, attempt=attempt)
                model_selected = await self._select_model(handle)

            self._transition(SessionState.SUBMITTING, attempt=attempt)
            await self._submit(handle)
            self._emit(ProgressType.STATUS, "Prompt sent.")

            result = InteractionResult(
                request_id=request.request_id,
                status=200,
                body="",
                profile=deps.browser.profile.name,
                path=path,
                proxy_id=proxy.id if proxy else None,
                model_selected=model_selected,
                attempts=attempt,
                navigation=navigation,
            )
            if request.verify:
                result.body = json.dumps(
                    {"message": "Verification test completed successfully", "isVerificationTest": True}
                )
                return result

            self._transition(SessionState.AWAITING_RESPONSE, attempt=attempt)
            response, used_fallback = await self._await_response(handle, capture, proxy)
            result.status = response.status
            result.body = response.body
            result.used_fallback = used_fallback

            if proxy is not None and deps.proxy_pool is not None:
                await deps.proxy_pool.report_success(proxy)
            return result

        except _PROXY_FAULTS as exc:
            if proxy is not None and deps.proxy_pool is not None:
                await deps.proxy_pool.report_failure(proxy, exc.message)
            raise
        finally:
            if capture is not None:
                capture.stop()
            await deps.page_pool.release(handle)
            if proxy is not None and deps.proxy_pool is not None:
                await deps.proxy_pool.release(proxy)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _claim_proxy(self) -> "Proxy | None":
        pool = self._deps.proxy_pool
        if not self._config.use_proxy_pool or pool is None:
            return None
        proxy = await pool.claim()
        if proxy is None:
            if self._config.require_proxy:
                raise ProxyExhaustedError(request_id=self.request.request_id)
            self._emit(ProgressType.WARNING, "No active proxy available, connecting directly.")
            return None
        logger.info(
            "Using proxy %s",
            proxy.id,
            extra={"request_id": self.request.request_id, "proxy_used": redact_url(proxy.url)},
        )
        return proxy

    async def _reset(self, handle: "PageHandle") -> None:
        try:
            await self._deps.adapter.reset_session_state(handle.page)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Could not reset session state: %s",
                exc,
                extra={"request_id": self.request.request_id},
            )

    async def _navigate(self, handle: "PageHandle") -> tuple[str, list[dict]]:
        """Load the primary URL; fall back to the profile/path search."""
        navigator = self._deps.navigator
        request = self.request
        self._emit(ProgressType.STATUS, "Navigating to target site...")

        error = await navigator.goto(handle.page, self._config.target_url, deadline=self._deadline)
        outcome, _ = await navigator.check_page(
            handle.page,
            request_id=request.request_id,
            sink=request.sink,
            auto_solve=request.auto_solve_captcha,
        )
        if outcome is NavigationOutcome.SUCCESS:
            return "primary", []
        if outcome is NavigationOutcome.CHALLENGE_UNRESOLVED:
            # Other paths on the same session hit the same challenge
            raise CaptchaUnresolvedError(request_id=request.request_id, url=redact_url(self._config.target_url))

        self._emit(
            ProgressType.WARNING,
            "Primary navigation failed. Trying alternative paths...",
        )
        logger.warning(
            "Primary navigation unusable (%s): %s",
            outcome.value,
            error,
            extra={"request_id": request.request_id},
        )
        result = await navigator.navigate(
            handle,
            request_id=request.request_id,
            sink=request.sink,
            auto_solve=request.auto_solve_captcha,
            deadline=self._deadline,
        )
        return result.path.name, [a.to_dict() for a in result.attempts]

    async def _submit(self, handle: "PageHandle") -> None:
        """Type and send the prompt. Browser errors become :class:`SubmissionFailedError`."""
        try:
            await self._deps.adapter.submit_prompt(handle.page, self.request.prompt)
        except BridgeError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise SubmissionFailedError(
                f"Prompt submission failed: {exc}", request_id=self.request.request_id
            ) from exc

    async def _select_model(self, handle: "PageHandle") -> bool:
        model_id = self.request.model_id
        self._emit(ProgressType.STATUS, f"Selecting model: {model_id}...")
        try:
            await self._deps.adapter.select_model(handle.page, model_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Model selection failed, continuing with default model: %s",
                exc,
                extra={"request_id": self.request.request_id},
            )
            self._emit(ProgressType.WARNING, f"Could not select model: {model_id}. Using default model.")
            return False
        return True

    async def _await_response(
        self,
        handle: "PageHandle",
        capture: NetworkCapture,
        proxy: "Proxy | None",
    ) -> tuple[CapturedResponse, bool]:
        """Wait for the captured response; replay the request once if needed."""
        self._emit(ProgressType.STATUS, "Waiting for response...")
        timeout = min(self._config.response_timeout, self._deadline.remaining())
        try:
            response = await capture.await_match(timeout)
        except BridgeError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ResponseTimeoutError(
                f"Response capture failed: {exc}", request_id=self.request.request_id
            ) from exc
        if response is not None and response.ok:
            return response, False

        reason = (
            f"API response failed with status {response.status}"
            if response is not None
            else "No API response within timeout"
        )
        captured = capture.get_already_captured()
        if captured is None or self._deps.replayer is None:
            raise ResponseTimeoutError(f"{reason}; nothing to replay", request_id=self.request.request_id)

        self._emit(ProgressType.WARNING, f"{reason}. Attempting server-side request fallback...")
        try:
            cookies = await handle.page.context.cookies()
            replayed = await self._deps.replayer.replay(
                captured, cookies, proxy_url=proxy.url if proxy else None
            )
        except Exception as exc:  # noqa: BLE001
            raise ResponseTimeoutError(
                f"{reason}; replay failed: {exc}", request_id=self.request.request_id
            ) from exc

        if not replayed.ok:
            raise ResponseTimeoutError(
                f"{reason}; replay returned status {replayed.status}",
                request_id=self.request.request_id,
            )
        self._emit(ProgressType.STATUS, "Fallback request succeeded.")
        return replayed, True

    # ------------------------------------------------------------------
    # State and events
    # ------------------------------------------------------------------

    def _transition(self, state: SessionState, *, attempt: int | None = None) -> None:
        self.state = state
        self.history.append(state)
        extra: dict = {"request_id": self.request.request_id, "session_state": state.value}
        if attempt is not None:
            extra["attempt"] = attempt
        logger.debug("Session state -> %s", state.value, extra=extra)
        self.request.sink(ProgressEvent(ProgressType.STATUS, f"State: {state.value}", state=state))

    def _fail(self, reason: str, started: float, *, exc_info: bool = False) -> None:
        self._transition(SessionState.FAILED)
        self._emit(ProgressType.ERROR, reason)
        logger.error(
            "Session failed: %s",
            reason,
            exc_info=exc_info,
            extra={
                "request_id": self.request.request_id,
                "error_reason": reason,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )

    def _emit(self, kind: ProgressType, message: str) -> None:
        self.request.sink(ProgressEvent(kind, message, state=self.state))


__all__ = [
    "InteractionRequest",
    "InteractionResult",
    "InteractionSession",
    "RETRYABLE_ERRORS",
    "SessionConfig",
    "SessionDependencies",
]
