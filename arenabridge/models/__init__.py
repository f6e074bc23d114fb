"""Public models for the bridge service."""

from arenabridge.models.requests import (
    AddProxyRequest,
    ChatRequest,
    TestProxiesRequest,
    VerifyRequest,
)
from arenabridge.models.responses import ApiResponse

__all__ = [
    "AddProxyRequest",
    "ApiResponse",
    "ChatRequest",
    "TestProxiesRequest",
    "VerifyRequest",
]
