"""Chat service: runs interaction sessions and keeps their counters.

The service owns the shared session dependencies and builds one
:class:`InteractionSession` per request. Counters feed ``/metrics``.
"""

from __future__ import annotations

import logging
import time

from arenabridge.middleware.error_handler import BridgeError
from arenabridge.session.interaction import (
    InteractionRequest,
    InteractionResult,
    InteractionSession,
    SessionConfig,
    SessionDependencies,
)

logger = logging.getLogger(__name__)


class ChatService:
    """Runs prompts through the browser and tracks outcomes."""

    def __init__(self, deps: SessionDependencies, config: SessionConfig) -> None:
        self._deps = deps
        self._config = config
        self._active: dict[str, InteractionSession] = {}
        self._succeeded = 0
        self._failed = 0
        self._retried = 0
        self._fallbacks = 0
        self._total_duration_ms = 0

    @property
    def deps(self) -> SessionDependencies:
        return self._deps

    def create_session(self, request: InteractionRequest) -> InteractionSession:
        return InteractionSession(request, self._deps, self._config)

    async def run(self, request: InteractionRequest) -> InteractionResult:
        """Run *request* to completion. Raises the session's terminal error."""
        session = self.create_session(request)
        self._active[request.request_id] = session
        started = time.monotonic()
        try:
            result = await session.run()
        except BridgeError:
            self._failed += 1
            raise
        finally:
            self._active.pop(request.request_id, None)
            self._total_duration_ms += int((time.monotonic() - started) * 1000)

        self._succeeded += 1
        if result.attempts > 1:
            self._retried += 1
        if result.used_fallback:
            self._fallbacks += 1
        return result

    def active_sessions(self) -> dict[str, str]:
        """Request id to current state for every running session."""
        return {rid: s.state.value for rid, s in self._active.items()}

    def get_stats(self) -> dict:
        finished = self._succeeded + self._failed
        return {
            "active": len(self._active),
            "succeeded": self._succeeded,
            "failed": self._failed,
            "retried": self._retried,
            "fallbacks": self._fallbacks,
            "avg_duration_ms": round(self._total_duration_ms / finished) if finished else 0,
        }
