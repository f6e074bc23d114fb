"""Session states and progress events streamed to the caller."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    """States of one interaction session."""

    IDLE = "idle"
    ACQUIRING = "acquiring"
    RESETTING = "resetting"
    NAVIGATING = "navigating"
    CAPTCHA_CHECK = "captcha_check"
    MODEL_SELECTING = "model_selecting"
    SUBMITTING = "submitting"
    AWAITING_RESPONSE = "awaiting_response"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProgressType(str, Enum):
    """Kind of progress event."""

    STATUS = "status"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"
    USER_ACTION_REQUIRED = "user_action_required"


@dataclass
class ProgressEvent:
    type: ProgressType
    message: str
    state: SessionState | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "state": self.state.value if self.state else None,
        }


ProgressSink = Callable[[ProgressEvent], None]


def null_sink(_event: ProgressEvent) -> None:
    return None


class QueueProgressSink:
    """Puts every event on an ``asyncio.Queue`` for streaming."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    def __call__(self, event: ProgressEvent) -> None:
        self.queue.put_nowait(event)
