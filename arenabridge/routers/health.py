"""Health, readiness, and metrics endpoints.

- GET /health: service status + browser, page pool and proxy stats
- GET /readiness: 200 only when the browser runs, a page slot is free and,
  if proxies are required, an active proxy exists
- GET /metrics: operational metrics
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Response

from arenabridge.models.responses import ApiResponse


def create_health_router(
    *,
    browser: Any = None,
    page_pool: Any = None,
    proxy_pool: Any = None,
    chat_service: Any = None,
    require_proxy: bool = False,
) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with component statistics."""
        return ApiResponse(
            success=True,
            data={
                "status": "healthy",
                "browser": browser.get_stats() if browser else {},
                "page_pool": page_pool.get_stats() if page_pool else {},
                "proxy_pool": proxy_pool.stats() if proxy_pool else {},
            },
        ).model_dump()

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe."""
        browser_stats = browser.get_stats() if browser else {"running": False}
        pool_stats = page_pool.get_stats() if page_pool else {"available": 0}
        proxy_stats = proxy_pool.stats() if proxy_pool else {"active": 0}

        browser_running = bool(browser_stats.get("running"))
        pages_available = pool_stats.get("available", 0)
        proxies_active = proxy_stats.get("active", 0)

        is_ready = browser_running and pages_available > 0
        if require_proxy:
            is_ready = is_ready and proxies_active > 0

        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={
                "ready": is_ready,
                "browser_running": browser_running,
                "pages_available": pages_available,
                "proxies_active": proxies_active,
            },
            error=None if is_ready else "Service not ready",
        ).model_dump()

    @health_router.get("/metrics")
    async def metrics() -> dict:
        """Operational metrics endpoint."""
        return ApiResponse(
            success=True,
            data={
                "browser": browser.get_stats() if browser else {},
                "page_pool": page_pool.get_stats() if page_pool else {},
                "proxy_pool": proxy_pool.stats() if proxy_pool else {},
                "sessions": chat_service.get_stats() if chat_service else {},
            },
        ).model_dump()

    return health_router
