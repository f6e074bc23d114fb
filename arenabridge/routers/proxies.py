"""Proxy administration endpoints.

- GET    /api/proxy/stats
- GET    /api/proxy/list?type=active&limit=50
- POST   /api/proxy/fetch
- POST   /api/proxy/test
- POST   /api/proxy/rotate
- POST   /api/proxy/add
- DELETE /api/proxy/{proxy_id}
- POST   /api/proxy/{proxy_id}/reset
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from arenabridge.models.requests import AddProxyRequest, TestProxiesRequest
from arenabridge.models.responses import ApiResponse
from arenabridge.services.proxy_admin import DEFAULT_LIST_LIMIT, ProxyAdminService

logger = logging.getLogger(__name__)


def create_proxies_router(*, admin: ProxyAdminService) -> APIRouter:
    """Factory that creates the proxy admin router."""
    proxies_router = APIRouter(prefix="/api/proxy", tags=["proxy"])

    @proxies_router.get("/stats")
    async def get_stats() -> dict:
        return ApiResponse.ok(admin.get_stats())

    @proxies_router.get("/list")
    async def list_proxies(
        type: str = Query(default="active"),  # noqa: A002
        limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=1000),
    ) -> dict:
        return ApiResponse.ok(admin.list_proxies(type, limit))

    @proxies_router.post("/fetch")
    async def fetch_proxies() -> dict:
        return ApiResponse.ok(await admin.fetch_proxies())

    @proxies_router.post("/test")
    async def test_proxies(body: TestProxiesRequest | None = None) -> dict:
        body = body or TestProxiesRequest()
        data = await admin.test_proxies(
            body.ids,
            scope="all" if body.all else "untested",
            timeout_ms=body.timeout_ms,
        )
        return ApiResponse.ok(data)

    @proxies_router.post("/rotate")
    async def rotate() -> dict:
        data = await admin.rotate()
        return ApiResponse(
            success=data["rotated"],
            data=data,
            error=None if data["rotated"] else data["message"],
        ).model_dump()

    @proxies_router.post("/add")
    async def add_proxy(body: AddProxyRequest) -> dict:
        data = await admin.add_proxy(body.url, body.protocol)
        return ApiResponse.ok(data)

    @proxies_router.delete("/{proxy_id}")
    async def delete_proxy(proxy_id: str) -> dict:
        data = await admin.delete_proxy(proxy_id)
        return ApiResponse(
            success=data["deleted"],
            data=data,
            error=None if data["deleted"] else data["message"],
        ).model_dump()

    @proxies_router.post("/{proxy_id}/reset")
    async def reset_proxy(proxy_id: str) -> dict:
        return ApiResponse.ok(await admin.reset_proxy(proxy_id))

    return proxies_router
