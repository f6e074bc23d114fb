"""Pydantic request models for the chat and proxy endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request model for a single prompt sent through the browser."""

    prompt: str = Field(..., min_length=1)
    model_id: str | None = None
    auto_solve_captcha: bool | None = None  # None -> settings default
    priority: bool = False
    stream: bool = True


class VerifyRequest(BaseModel):
    """Request model for a verification run (stops after submitting)."""

    prompt: str = Field(default="Verification test", min_length=1)
    model_id: str | None = None
    auto_solve_captcha: bool | None = None


class AddProxyRequest(BaseModel):
    url: str = Field(..., min_length=1)
    protocol: str = Field(default="http", pattern=r"^(http|https|socks4|socks5)$")


class TestProxiesRequest(BaseModel):
    """Test specific ids, every proxy (``all``) or, by default, the untested ones."""

    __test__ = False  # not a pytest test class

    ids: list[str] | None = None
    all: bool = False
    timeout_ms: int | None = Field(default=None, ge=500, le=60_000)
