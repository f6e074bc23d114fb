"""Unit tests for the chat, captcha, models and proxy routers."""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from arenabridge.captcha.gate import CaptchaSignals
from arenabridge.middleware.error_handler import NavigationFailedError, register_error_handlers
from arenabridge.middleware.request_id import RequestIdMiddleware
from arenabridge.proxy.pool import ProxyPool
from arenabridge.routers.captcha import create_captcha_router
from arenabridge.routers.chat import create_chat_router, format_sse
from arenabridge.routers.models import create_models_router
from arenabridge.routers.proxies import create_proxies_router
from arenabridge.services.proxy_admin import ProxyAdminService
from arenabridge.session.events import ProgressEvent, ProgressType, SessionState
from arenabridge.session.interaction import InteractionResult
from doubles import probe_ok


class StubChatService:
    """Records requests; emits one progress event, then returns or raises."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests = []

    async def run(self, interaction):
        self.requests.append(interaction)
        interaction.sink(ProgressEvent(ProgressType.STATUS, "Navigating...", SessionState.NAVIGATING))
        if self.error is not None:
            raise self.error
        return InteractionResult(
            request_id=interaction.request_id,
            status=200,
            body='{"text": "hello"}',
            profile="Chrome Mac",
            path="primary",
        )


def _chat_client(service: StubChatService, auto_solve_default: bool = True) -> TestClient:
    app = FastAPI()
    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    app.include_router(create_chat_router(chat_service=service, auto_solve_default=auto_solve_default))
    return TestClient(app)


def _sse_events(text: str) -> list[tuple[str, str]]:
    events = []
    for block in text.strip().split("\n\n"):
        name, data = None, None
        for line in block.splitlines():
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = line[len("data: "):]
        events.append((name, data))
    return events


# ---------------------------------------------------------------------------
# Chat router
# ---------------------------------------------------------------------------


class TestChatRouter:
    def test_format_sse(self):
        assert format_sse("progress", {"a": 1}) == 'event: progress\ndata: {"a": 1}\n\n'

    def test_json_mode(self):
        service = StubChatService()
        client = _chat_client(service)

        response = client.post(
            "/api/chat",
            json={"prompt": "Hi", "stream": False, "model_id": "gpt-4o"},
            headers={"X-Request-ID": "req-7"},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["data"] == {"text": "hello"}
        assert body["data"]["request_id"] == "req-7"
        assert service.requests[0].model_id == "gpt-4o"
        assert service.requests[0].auto_solve_captcha is True

    def test_auto_solve_default_from_settings(self):
        service = StubChatService()
        client = _chat_client(service, auto_solve_default=False)
        client.post("/api/chat", json={"prompt": "Hi", "stream": False})
        client.post("/api/chat", json={"prompt": "Hi", "stream": False, "auto_solve_captcha": True})
        assert [r.auto_solve_captcha for r in service.requests] == [False, True]

    def test_json_mode_error_envelope(self):
        service = StubChatService(NavigationFailedError(profiles_tried=["Chrome Mac"]))
        response = _chat_client(service).post("/api/chat", json={"prompt": "Hi", "stream": False})

        assert response.status_code == 502
        assert response.json()["error"] == "Navigation failed for every profile and path"
        assert response.json()["meta"] == {"profiles_tried": ["Chrome Mac"]}

    def test_empty_prompt_rejected(self):
        response = _chat_client(StubChatService()).post("/api/chat", json={"prompt": ""})
        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_stream_progress_then_result(self):
        response = _chat_client(StubChatService()).post("/api/chat", json={"prompt": "Hi"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(response.text)
        assert [name for name, _ in events] == ["progress", "result", None]
        assert json.loads(events[0][1]) == {
            "type": "status",
            "message": "Navigating...",
            "state": "navigating",
        }
        assert json.loads(events[1][1])["data"]["profile"] == "Chrome Mac"
        assert events[2][1] == "[DONE]"

    def test_stream_error_event(self):
        service = StubChatService(NavigationFailedError())
        response = _chat_client(service).post("/api/chat", json={"prompt": "Hi"})

        events = _sse_events(response.text)
        assert [name for name, _ in events] == ["progress", "error", None]
        payload = json.loads(events[1][1])
        assert payload["success"] is False
        assert payload["error"] == "Navigation failed for every profile and path"

    def test_stream_unexpected_error_still_sends_error_frame(self):
        service = StubChatService(RuntimeError("browser crashed"))
        response = _chat_client(service).post("/api/chat", json={"prompt": "Hi"})

        events = _sse_events(response.text)
        assert [name for name, _ in events] == ["progress", "error", None]
        payload = json.loads(events[1][1])
        assert payload["success"] is False
        assert payload["error"] == "Internal server error"
        assert "browser crashed" not in response.text

    def test_verify(self):
        service = StubChatService()
        response = _chat_client(service).post("/api/verify")

        assert response.json()["success"] is True
        assert service.requests[0].verify is True
        assert service.requests[0].prompt == "Verification test"


# ---------------------------------------------------------------------------
# Captcha router
# ---------------------------------------------------------------------------


class TestCaptchaRouter:
    @pytest.fixture
    def signals(self):
        return CaptchaSignals()

    @pytest.fixture
    def client(self, signals):
        app = FastAPI()
        app.include_router(create_captcha_router(signals=signals))
        return TestClient(app)

    def test_signal_waiting_session(self, client, signals):
        event = signals.register("r1")
        assert client.get("/api/captcha/pending").json()["data"] == {"request_ids": ["r1"]}

        body = client.post("/api/captcha/r1/resolved").json()

        assert body["success"] is True
        assert event.is_set()
        assert client.get("/api/captcha/pending").json()["data"] == {"request_ids": []}

    def test_signal_unknown_request(self, client):
        body = client.post("/api/captcha/nobody/resolved").json()
        assert body["success"] is False
        assert body["data"]["signalled"] is False


# ---------------------------------------------------------------------------
# Proxy router
# ---------------------------------------------------------------------------


class TestProxiesRouter:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_error_handlers(app)
        app.include_router(create_proxies_router(admin=ProxyAdminService(ProxyPool(prober=probe_ok))))
        return TestClient(app)

    def test_add_list_and_delete(self, client):
        added = client.post("/api/proxy/add", json={"url": "http://user:pw@10.0.0.1:8080"}).json()
        assert added["success"] is True
        proxy_id = added["data"]["proxy"]["id"]

        listing = client.get("/api/proxy/list", params={"type": "all"}).json()
        assert listing["data"]["count"] == 1
        assert "pw@" not in json.dumps(listing)

        assert client.get("/api/proxy/stats").json()["data"]["total"] == 1
        assert client.delete(f"/api/proxy/{proxy_id}").json()["success"] is True
        assert client.delete(f"/api/proxy/{proxy_id}").json()["success"] is False

    def test_rotate_without_proxies(self, client):
        body = client.post("/api/proxy/rotate").json()
        assert body["success"] is False
        assert body["data"]["rotated"] is False

    def test_reset_unknown_proxy(self, client):
        response = client.post("/api/proxy/missing/reset")
        assert response.status_code == 404
        assert response.json()["error"] == "Proxy not found"

    def test_invalid_protocol(self, client):
        response = client.post("/api/proxy/add", json={"url": "10.0.0.1:80", "protocol": "ftp"})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Models router
# ---------------------------------------------------------------------------


class StubModelCatalog:
    def __init__(self) -> None:
        self.calls = []

    async def get_models(self, *, force_refresh=False, request_id=""):
        self.calls.append((force_refresh, request_id))
        return {
            "models": [{"id": "gpt-4o", "name": "GPT-4o", "available": True, "source": "ui"}],
            "metadata": {"count": 1, "cached": not force_refresh},
        }


class TestModelsRouter:
    @pytest.fixture
    def catalog(self):
        return StubModelCatalog()

    @pytest.fixture
    def client(self, catalog):
        app = FastAPI()
        app.add_middleware(RequestIdMiddleware)
        app.include_router(create_models_router(model_catalog=catalog))
        return TestClient(app)

    def test_list_models(self, client, catalog):
        body = client.get("/api/models", headers={"X-Request-ID": "req-9"}).json()
        assert body["success"] is True
        assert body["data"]["models"][0]["id"] == "gpt-4o"
        assert catalog.calls == [(False, "req-9")]

    def test_force_refresh_query_flag(self, client, catalog):
        body = client.get("/api/models", params={"forceRefresh": "true"}).json()
        assert body["data"]["metadata"]["cached"] is False
        assert catalog.calls[0][0] is True
