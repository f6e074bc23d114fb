"""Unit tests for the error hierarchy and FastAPI exception handlers."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

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
from arenabridge.models.responses import ApiResponse


# ---------------------------------------------------------------------------
# Test app fixture
# ---------------------------------------------------------------------------

_RAISERS: dict[str, BridgeError] = {
    "bridge": BridgeError(),
    "navigation": NavigationFailedError(),
    "captcha": CaptchaUnresolvedError(),
    "submission": SubmissionFailedError(),
    "response": ResponseTimeoutError(),
    "resource": ResourceAcquisitionFailedError(),
    "cancelled": CancellationRequestedError(),
    "proxy-missing": ProxyNotFoundError(),
    "proxy-exhausted": ProxyExhaustedError(),
    "proxy-sources": ProxySourceError(),
    "prompt": InvalidPromptError(),
}


def _make_app() -> FastAPI:
    """Build a minimal FastAPI app with error handlers registered."""
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/raise/{kind}")
    async def _raise(kind: str):
        raise _RAISERS[kind]

    @app.get("/raise-custom-message")
    async def _raise_custom():
        raise ProxyNotFoundError("Proxy abc-123 not found", proxy_id="abc-123")

    @app.get("/raise-unhandled")
    async def _raise_unhandled():
        raise RuntimeError("something unexpected")

    from pydantic import BaseModel

    class Payload(BaseModel):
        prompt: str
        priority: bool

    @app.post("/validate")
    async def _validate(payload: Payload):
        return {"ok": True}

    return app


@pytest.fixture()
def client():
    return TestClient(_make_app(), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Error hierarchy tests
# ---------------------------------------------------------------------------


class TestErrorHierarchy:
    """All custom errors are subclasses of BridgeError."""

    def test_all_subclass_bridge_error(self):
        for exc in _RAISERS.values():
            assert isinstance(exc, BridgeError)
        assert issubclass(ModelSelectionFailedError, BridgeError)
        assert issubclass(RetryExhaustedError, BridgeError)

    def test_fatal_markers(self):
        fatal = {ValidationError, InvalidPromptError, InvalidProxyError, ProxyNotFoundError, CancellationRequestedError}
        for cls in fatal:
            assert issubclass(cls, FatalError)
        for cls in (NavigationFailedError, CaptchaUnresolvedError, SubmissionFailedError, ResponseTimeoutError):
            assert not issubclass(cls, FatalError)

    def test_default_messages(self):
        assert BridgeError().message == "Internal server error"
        assert NavigationFailedError().message == "Navigation failed for every profile and path"
        assert CaptchaUnresolvedError().message == "Captcha challenge could not be resolved"
        assert ResponseTimeoutError().message == "Timed out waiting for the chat response"
        assert ResourceAcquisitionFailedError().message == "Could not acquire a browser page"
        assert InvalidPromptError().message == "Prompt must not be empty"
        assert ValidationError().message == "Validation error"

    def test_custom_message_override(self):
        err = SubmissionFailedError("Send control not found")
        assert err.message == "Send control not found"
        assert str(err) == "Send control not found"

    def test_details_kwargs(self):
        err = NavigationFailedError(attempts=[{"profile": "Chrome Mac"}], profiles_tried=["Chrome Mac"])
        assert err.details == {"attempts": [{"profile": "Chrome Mac"}], "profiles_tried": ["Chrome Mac"]}

    def test_retry_exhausted_keeps_last_error(self):
        cause = ResponseTimeoutError("no response")
        err = RetryExhaustedError(attempts=3, last_error=cause)
        assert err.attempts == 3
        assert err.last_error is cause
        assert err.details == {"attempts": 3, "last_error": "no response"}


# ---------------------------------------------------------------------------
# Exception handler tests
# ---------------------------------------------------------------------------


class TestExceptionHandlers:
    """FastAPI exception handlers return correct envelope and status codes."""

    @pytest.mark.parametrize(
        "kind,expected_status,expected_error",
        [
            ("bridge", 500, "Internal server error"),
            ("navigation", 502, "Navigation failed for every profile and path"),
            ("captcha", 502, "Captcha challenge could not be resolved"),
            ("submission", 502, "Prompt submission failed"),
            ("response", 504, "Timed out waiting for the chat response"),
            ("resource", 503, "Could not acquire a browser page"),
            ("cancelled", 504, "Request cancelled"),
            ("proxy-missing", 404, "Proxy not found"),
            ("proxy-exhausted", 503, "No usable proxy available"),
            ("proxy-sources", 502, "All proxy sources failed"),
            ("prompt", 422, "Prompt must not be empty"),
        ],
    )
    def test_bridge_error_envelope(self, client, kind, expected_status, expected_error):
        resp = client.get(f"/raise/{kind}")
        assert resp.status_code == expected_status
        body = resp.json()
        assert body["success"] is False
        assert body["data"] is None
        assert body["error"] == expected_error
        assert body["meta"] is None

    def test_custom_message_and_details(self, client):
        resp = client.get("/raise-custom-message")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "Proxy abc-123 not found"
        assert body["meta"] == {"proxy_id": "abc-123"}

    def test_pydantic_request_validation_error(self, client):
        resp = client.post("/validate", json={"prompt": 123})
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Validation error"
        assert "fields" in body["meta"]
        assert len(body["meta"]["fields"]) > 0

    def test_unhandled_exception_returns_500(self, client):
        resp = client.get("/raise-unhandled")
        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Internal server error"
        assert body["data"] is None


class TestEnvelopeHelpers:
    def test_ok(self):
        assert ApiResponse.ok({"a": 1}) == {"success": True, "data": {"a": 1}, "error": None, "meta": None}

    def test_fail_normalizes_empty_meta(self):
        assert ApiResponse.fail("boom", meta={}) == {"success": False, "data": None, "error": "boom", "meta": None}
        assert ApiResponse.fail("boom", meta={"k": 1})["meta"] == {"k": 1}
