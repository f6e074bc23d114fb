"""Interaction sessions and the progress events they emit."""

from arenabridge.session.events import (
    ProgressEvent,
    ProgressSink,
    ProgressType,
    QueueProgressSink,
    SessionState,
    null_sink,
)
from arenabridge.session.interaction import (
    InteractionRequest,
    InteractionResult,
    InteractionSession,
    SessionConfig,
    SessionDependencies,
)

__all__ = [
    "InteractionRequest",
    "InteractionResult",
    "InteractionSession",
    "ProgressEvent",
    "ProgressSink",
    "ProgressType",
    "QueueProgressSink",
    "SessionConfig",
    "SessionDependencies",
    "SessionState",
    "null_sink",
]
