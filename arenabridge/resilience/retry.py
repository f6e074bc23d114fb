"""Bounded retry with exponential backoff, jitter and cancellation.

``RetryOrchestrator.retry`` runs an async action up to ``max_attempts``
times. Between failures it waits ``min(max_delay, initial_delay * factor **
(attempt - 1))`` seconds, stretched by up to ``jitter`` (a ratio). Fatal
errors are re-raised at once. A :class:`Deadline` or ``asyncio.Event``
aborts both the running action and the wait with
:class:`CancellationRequestedError`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from arenabridge.middleware.error_handler import (
    CancellationRequestedError,
    FatalError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. Delays are in seconds; ``jitter`` is a ratio in [0, 1]."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be within [0, 1]")


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """Un-jittered wait after failed *attempt* (1-based)."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    try:
        raw = config.initial_delay * config.factor ** (attempt - 1)
    except OverflowError:
        return config.max_delay
    return min(config.max_delay, raw)


def default_is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, (FatalError, asyncio.CancelledError))


class Deadline:
    """A monotonic-clock expiry point."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class RetryOrchestrator:
    """Runs actions under a :class:`RetryConfig`."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        is_retryable: Callable[[BaseException], bool] = default_is_retryable,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or RetryConfig()
        self._is_retryable = is_retryable
        self._sleep = sleep
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # retry
    # ------------------------------------------------------------------

    async def retry(
        self,
        action: Callable[[], Awaitable[T] | T],
        config: RetryConfig | None = None,
        *,
        deadline: Deadline | None = None,
        cancel_event: asyncio.Event | None = None,
        on_retry: Callable[[int, BaseException, float], Any] | None = None,
    ) -> T:
        """Run *action* until it succeeds or the policy is exhausted.

        Raises
        ------
        RetryExhaustedError
            After ``max_attempts`` retryable failures; chained from the last one.
        CancellationRequestedError
            When *deadline* expires or *cancel_event* is set.
        """
        cfg = config or self.config
        last_error: BaseException | None = None

        for attempt in range(1, cfg.max_attempts + 1):
            self._check_cancelled(deadline, cancel_event)
            try:
                return await self._guard(_call(action), deadline, cancel_event)
            except CancellationRequestedError:
                raise
            except Exception as exc:
                if not self._is_retryable(exc):
                    raise
                last_error = exc

            if attempt == cfg.max_attempts:
                break

            delay = self.jittered(cfg, attempt)
            logger.warning(
                "Attempt %d/%d failed: %s; retrying in %.2fs",
                attempt,
                cfg.max_attempts,
                last_error,
                delay,
                extra={"attempt": attempt, "error_reason": str(last_error)},
            )
            if on_retry is not None:
                on_retry(attempt, last_error, delay)
            await self._guard(self._sleep(delay), deadline, cancel_event)

        raise RetryExhaustedError(
            f"All {cfg.max_attempts} attempts failed: {last_error}",
            attempts=cfg.max_attempts,
            last_error=last_error,
        ) from last_error

    async def pause(
        self,
        attempt: int,
        config: RetryConfig | None = None,
        *,
        deadline: Deadline | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> float:
        """Wait the backoff for *attempt* without running anything. Returns the delay."""
        delay = self.jittered(config or self.config, attempt)
        await self._guard(self._sleep(delay), deadline, cancel_event)
        return delay

    def jittered(self, config: RetryConfig, attempt: int) -> float:
        delay = backoff_delay(config, attempt)
        if config.jitter:
            delay *= 1 + self._rng.uniform(0, config.jitter)
        return delay

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancelled(deadline: Deadline | None, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationRequestedError("Cancelled by caller")
        if deadline is not None and deadline.expired:
            raise CancellationRequestedError("Deadline expired")

    async def _guard(
        self,
        awaitable: Awaitable[T],
        deadline: Deadline | None,
        cancel_event: asyncio.Event | None,
    ) -> T:
        """Await *awaitable*, aborting it on deadline expiry or cancel event."""
        if deadline is None and cancel_event is None:
            return await awaitable
        return await race_cancellation(awaitable, deadline=deadline, cancel_event=cancel_event)


async def race_cancellation(
    awaitable: Awaitable[T],
    *,
    deadline: Deadline | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Await *awaitable* unless *deadline* or *cancel_event* fires first.

    The losing work is cancelled. Raises :class:`CancellationRequestedError`.
    """
    if cancel_event is not None and cancel_event.is_set():
        _close(awaitable)
        raise CancellationRequestedError("Cancelled by caller")
    if deadline is not None and deadline.expired:
        _close(awaitable)
        raise CancellationRequestedError("Deadline expired")

    task = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future] = {task}
    event_task: asyncio.Task | None = None
    if cancel_event is not None:
        event_task = asyncio.ensure_future(cancel_event.wait())
        waiters.add(event_task)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=deadline.remaining() if deadline is not None else None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if event_task is not None:
            event_task.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):  # noqa: BLE001
        pass
    if event_task is not None and event_task in done:
        raise CancellationRequestedError("Cancelled by caller")
    raise CancellationRequestedError("Deadline expired")


async def _call(action: Callable[[], Awaitable[T] | T]) -> T:
    result = action()
    if inspect.isawaitable(result):
        return await result
    return result


def _close(awaitable: Awaitable[Any]) -> None:
    if inspect.iscoroutine(awaitable):
        awaitable.close()
