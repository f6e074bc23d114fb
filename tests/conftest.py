"""Shared test fixtures for the bridge test suite."""

from __future__ import annotations

import pytest
import pytest_asyncio

from arenabridge.browser.manager import BrowserManager
from arenabridge.browser.pool import PagePool
from arenabridge.browser.profiles import DEFAULT_PROFILES
from arenabridge.captcha.gate import CaptchaGate
from arenabridge.config.settings import BridgeSettings
from arenabridge.navigation.strategy import NavigationPath, NavigationStrategySelector
from arenabridge.proxy.pool import ProxyPool
from arenabridge.resilience.retry import RetryOrchestrator
from arenabridge.session.interaction import SessionConfig, SessionDependencies
from doubles import (
    FakeAdapter,
    FakeCapture,
    FakeLauncher,
    FakeReplayer,
    ScriptedCaptures,
    no_sleep,
    ok_response,
    probe_ok,
)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> BridgeSettings:
    """Test settings with safe defaults."""
    return BridgeSettings(
        max_tabs=2,
        page_acquire_timeout_seconds=1.0,
        rotation_cooldown_seconds=0.0,
        rotation_wait_seconds=1.0,
        navigation_pacing_seconds=0.0,
        captcha_timeout_seconds=0.2,
        captcha_poll_interval_seconds=0.01,
        response_timeout_seconds=0.5,
        session_timeout_seconds=5.0,
        proxy_cache_path="unused.json",
        proxy_sources=[],
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest_asyncio.fixture
async def browser(launcher: FakeLauncher) -> BrowserManager:
    manager = BrowserManager(list(DEFAULT_PROFILES), rotation_wait_seconds=1.0, launcher=launcher)
    await manager.start()
    return manager


@pytest_asyncio.fixture
async def page_pool(browser: BrowserManager) -> PagePool:
    return PagePool(browser, max_tabs=2, acquire_timeout=1.0)


@pytest.fixture
def captcha_gate(adapter: FakeAdapter) -> CaptchaGate:
    return CaptchaGate(adapter, poll_interval=0.01, default_timeout=0.2)


@pytest.fixture
def retry() -> RetryOrchestrator:
    return RetryOrchestrator(sleep=no_sleep)


@pytest.fixture
def paths() -> list[NavigationPath]:
    return [
        NavigationPath("Direct", "/?mode=direct"),
        NavigationPath("Default", "/"),
        NavigationPath("Chat", "/chat"),
    ]


@pytest_asyncio.fixture
async def navigator(browser, page_pool, adapter, captcha_gate, retry, paths) -> NavigationStrategySelector:
    return NavigationStrategySelector(
        browser,
        page_pool,
        adapter,
        captcha_gate,
        retry,
        base_url="https://beta.lmarena.ai/",
        paths=paths,
        rotation_cooldown=0.0,
        pacing_seconds=0.0,
        captcha_timeout=0.2,
        sleep=no_sleep,
    )


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        target_url="https://beta.lmarena.ai/",
        response_timeout=0.5,
        session_timeout=5.0,
        captcha_timeout=0.2,
        page_acquire_timeout=1.0,
    )


@pytest_asyncio.fixture
async def deps(page_pool, browser, navigator, captcha_gate, adapter) -> SessionDependencies:
    return SessionDependencies(
        page_pool=page_pool,
        browser=browser,
        navigator=navigator,
        captcha_gate=captcha_gate,
        adapter=adapter,
        replayer=FakeReplayer(),
        capture_factory=ScriptedCaptures(FakeCapture(ok_response())),
    )


@pytest.fixture
def proxy_pool() -> ProxyPool:
    """In-memory pool (no sources, no cache) whose probes always succeed."""
    return ProxyPool(prober=probe_ok)

