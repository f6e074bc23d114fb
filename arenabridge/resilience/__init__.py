"""Retry, backoff and deadline helpers."""

from arenabridge.resilience.retry import (
    Deadline,
    RetryConfig,
    RetryOrchestrator,
    backoff_delay,
    race_cancellation,
)

__all__ = [
    "Deadline",
    "RetryConfig",
    "RetryOrchestrator",
    "backoff_delay",
    "race_cancellation",
]
