"""Property tests for the readiness endpoint.

# Feature: arena-bridge, Property 2: Readiness reflects browser, page pool and proxy state
"""

from __future__ import annotations

from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient
from hypothesis import given, settings, strategies as st

from arenabridge.routers.health import create_health_router


def _make_app(running: bool, pages_available: int, proxies_active: int, require_proxy: bool) -> FastAPI:
    """Create a minimal FastAPI app with mocked component stats."""
    browser = MagicMock()
    browser.get_stats.return_value = {"running": running, "profile": "Chrome Mac", "leases": 0}

    page_pool = MagicMock()
    page_pool.get_stats.return_value = {"max_tabs": 3, "available": pages_available, "in_use": 0}

    proxy_pool = MagicMock()
    proxy_pool.stats.return_value = {"total": proxies_active, "active": proxies_active}

    app = FastAPI()
    app.include_router(
        create_health_router(
            browser=browser,
            page_pool=page_pool,
            proxy_pool=proxy_pool,
            require_proxy=require_proxy,
        )
    )
    return app


@settings(max_examples=100)
@given(
    running=st.booleans(),
    pages_available=st.integers(min_value=0, max_value=10),
    proxies_active=st.integers(min_value=0, max_value=10),
    require_proxy=st.booleans(),
)
def test_readiness_reflects_component_state(
    running: bool,
    pages_available: int,
    proxies_active: int,
    require_proxy: bool,
) -> None:
    """Ready iff the browser runs, a page slot is free and, when proxies are
    required, at least one proxy is active."""
    # Feature: arena-bridge, Property 2: Readiness reflects browser, page pool and proxy state

    client = TestClient(_make_app(running, pages_available, proxies_active, require_proxy))
    response = client.get("/readiness")
    body = response.json()

    expected_ready = running and pages_available > 0 and (proxies_active > 0 or not require_proxy)

    assert body["data"]["ready"] is expected_ready
    assert body["data"]["pages_available"] == pages_available
    assert body["data"]["proxies_active"] == proxies_active
    if expected_ready:
        assert response.status_code == 200
        assert body["success"] is True
    else:
        assert response.status_code == 503
        assert body["success"] is False
        assert body["error"] == "Service not ready"
