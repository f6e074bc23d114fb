"""Middleware package: error hierarchy and request ID."""

from arenabridge.middleware.error_handler import (
    BridgeError,
    CancellationRequestedError,
    CaptchaUnresolvedError,
    FatalError,
    InvalidPromptError,
    InvalidProxyError,
    ModelSelectionFailedError,
    NavigationFailedError,
    ProxyExhaustedError,
    ProxyNotFoundError,
    ProxySourceError,
    ResourceAcquisitionFailedError,
    ResponseTimeoutError,
    RetryExhaustedError,
    SubmissionFailedError,
    ValidationError,
    register_error_handlers,
)
from arenabridge.middleware.request_id import RequestIdMiddleware

__all__ = [
    "BridgeError",
    "CancellationRequestedError",
    "CaptchaUnresolvedError",
    "FatalError",
    "InvalidPromptError",
    "InvalidProxyError",
    "ModelSelectionFailedError",
    "NavigationFailedError",
    "ProxyExhaustedError",
    "ProxyNotFoundError",
    "ProxySourceError",
    "RequestIdMiddleware",
    "ResourceAcquisitionFailedError",
    "ResponseTimeoutError",
    "RetryExhaustedError",
    "SubmissionFailedError",
    "ValidationError",
    "register_error_handlers",
]
