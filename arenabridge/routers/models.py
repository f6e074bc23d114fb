"""Model discovery endpoint.

- GET /api/models?forceRefresh=true: models offered by the target site
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from arenabridge.models.responses import ApiResponse
from arenabridge.services.model_catalog import ModelCatalogService


def create_models_router(*, model_catalog: ModelCatalogService) -> APIRouter:
    """Factory that creates the models router."""
    models_router = APIRouter(prefix="/api", tags=["models"])

    @models_router.get("/models")
    async def list_models(
        request: Request,
        force_refresh: bool = Query(default=False, alias="forceRefresh"),
    ) -> dict:
        data = await model_catalog.get_models(
            force_refresh=force_refresh,
            request_id=getattr(request.state, "request_id", "") or "",
        )
        return ApiResponse.ok(data)

    return models_router
