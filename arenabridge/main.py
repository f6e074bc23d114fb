"""FastAPI application entry point with lifespan management.

Startup: configure logging, restore/fetch/test the proxy pool, launch the
shared browser, wire the page pool, navigation, captcha gate, chat service
and model catalog, mount routers.
Shutdown: stop background tasks, persist the proxy catalog, close the browser.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from arenabridge.adapters.arena import ArenaSiteAdapter
from arenabridge.browser.manager import BrowserManager
from arenabridge.browser.pool import PagePool
from arenabridge.browser.profiles import select_profiles
from arenabridge.captcha.gate import CaptchaGate
from arenabridge.captcha.solver import CapSolverClient
from arenabridge.config.settings import BridgeSettings
from arenabridge.logging_config import configure_logging
from arenabridge.middleware.error_handler import register_error_handlers
from arenabridge.middleware.request_id import RequestIdMiddleware
from arenabridge.navigation.strategy import NavigationStrategySelector, parse_paths
from arenabridge.network.replay import RequestReplayer
from arenabridge.proxy.cache import ProxyCache
from arenabridge.proxy.pool import ProxyPool
from arenabridge.proxy.sources import build_sources
from arenabridge.resilience.retry import RetryConfig, RetryOrchestrator
from arenabridge.routers.captcha import create_captcha_router
from arenabridge.routers.chat import create_chat_router
from arenabridge.routers.health import create_health_router
from arenabridge.routers.models import create_models_router
from arenabridge.routers.proxies import create_proxies_router
from arenabridge.services.chat_service import ChatService
from arenabridge.services.model_catalog import ModelCatalogService
from arenabridge.services.proxy_admin import ProxyAdminService
from arenabridge.session.interaction import SessionConfig, SessionDependencies

logger = logging.getLogger(__name__)

# Shared state for the application, populated during lifespan startup
_state: dict = {}


def build_proxy_pool(settings: BridgeSettings) -> ProxyPool:
    return ProxyPool(
        build_sources(settings.proxy_sources, settings.proxy_endpoints),
        ProxyCache(settings.proxy_cache_path),
        blacklist_threshold=settings.proxy_blacklist_threshold,
        test_concurrency=settings.proxy_test_concurrency,
        probe_url=settings.proxy_probe_url,
        default_timeout_ms=settings.proxy_test_timeout_ms,
        restore_fresh_seconds=settings.proxy_restore_fresh_seconds,
    )


def build_retry(settings: BridgeSettings) -> RetryOrchestrator:
    return RetryOrchestrator(
        RetryConfig(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            factor=settings.retry_factor,
            jitter=settings.retry_jitter,
        )
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings: BridgeSettings = app.state.settings
    configure_logging(settings.log_level)
    logger.info("Starting bridge service on port %d", settings.port)

    # Proxy pool
    proxy_pool = build_proxy_pool(settings)
    await proxy_pool.initialize(
        fetch_if_empty=settings.use_proxy_pool and settings.proxy_fetch_on_start,
        test_on_start=settings.use_proxy_pool,
    )
    background: list[asyncio.Task] = []
    if settings.use_proxy_pool and settings.proxy_retest_interval_seconds > 0:
        background.append(
            asyncio.create_task(proxy_pool.retest_loop(settings.proxy_retest_interval_seconds))
        )

    # Browser and pages
    browser = BrowserManager(
        select_profiles(settings.profile_names),
        headless=settings.headless,
        upstream_proxy=settings.upstream_proxy_url,
        rotation_wait_seconds=settings.rotation_wait_seconds,
    )
    await browser.start()
    page_pool = PagePool(
        browser,
        max_tabs=settings.max_tabs,
        acquire_timeout=settings.page_acquire_timeout_seconds,
    )

    # Site adapter, captcha gate, navigation
    adapter = ArenaSiteAdapter()
    solver = CapSolverClient(settings.capsolver_api_key) if settings.capsolver_api_key else None
    captcha_gate = CaptchaGate(
        adapter,
        solver,
        poll_interval=settings.captcha_poll_interval_seconds,
        default_timeout=settings.captcha_timeout_seconds,
    )
    navigator = NavigationStrategySelector(
        browser,
        page_pool,
        adapter,
        captcha_gate,
        build_retry(settings),
        base_url=settings.target_url,
        paths=parse_paths(settings.navigation_paths),
        navigation_timeout_ms=settings.navigation_timeout_ms,
        rotation_cooldown=settings.rotation_cooldown_seconds,
        pacing_seconds=settings.navigation_pacing_seconds,
        captcha_timeout=settings.captcha_timeout_seconds,
    )

    # Chat service
    chat_service = ChatService(
        SessionDependencies(
            page_pool=page_pool,
            browser=browser,
            navigator=navigator,
            captcha_gate=captcha_gate,
            adapter=adapter,
            proxy_pool=proxy_pool,
            replayer=RequestReplayer(timeout=settings.response_timeout_seconds),
        ),
        SessionConfig.from_settings(settings),
    )

    model_catalog = ModelCatalogService(
        page_pool,
        navigator,
        adapter,
        target_url=settings.target_url,
        default_models=settings.default_models,
        ttl_seconds=settings.models_cache_ttl_seconds,
        acquire_timeout=settings.page_acquire_timeout_seconds,
    )

    # Mount routers
    app.include_router(
        create_health_router(
            browser=browser,
            page_pool=page_pool,
            proxy_pool=proxy_pool,
            chat_service=chat_service,
            require_proxy=settings.require_proxy,
        )
    )
    app.include_router(
        create_chat_router(chat_service=chat_service, auto_solve_default=settings.captcha_auto_solve)
    )
    app.include_router(create_models_router(model_catalog=model_catalog))
    app.include_router(create_captcha_router(signals=captcha_gate.signals))
    app.include_router(create_proxies_router(admin=ProxyAdminService(proxy_pool)))

    _state.update({
        "settings": settings,
        "browser": browser,
        "page_pool": page_pool,
        "proxy_pool": proxy_pool,
        "chat_service": chat_service,
        "model_catalog": model_catalog,
    })

    logger.info("Bridge service started successfully")

    yield

    # --- Shutdown ---
    logger.info("Shutting down bridge service…")

    for task in background:
        task.cancel()
    for task in background:
        try:
            await task
        except asyncio.CancelledError:
            pass

    await proxy_pool.shutdown()
    await browser.shutdown()

    logger.info("Bridge service shut down")


def create_app(settings: BridgeSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Arena Bridge",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or BridgeSettings()

    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)

    return app


app = create_app()
