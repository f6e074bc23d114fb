"""Model discovery: the models the target site offers, cached with a TTL.

The list is read from the site's model picker on a pooled page and merged
with the configured default models. A failed refresh never fails the
request: the previous list (or the defaults) is served and marked stale.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from arenabridge.middleware.error_handler import BridgeError, NavigationFailedError
from arenabridge.navigation.strategy import NavigationOutcome

if TYPE_CHECKING:
    from arenabridge.adapters.base import SiteAdapter
    from arenabridge.browser.pool import PagePool
    from arenabridge.navigation.strategy import NavigationStrategySelector

logger = logging.getLogger(__name__)

# Listing order: available first, then picker entries before defaults
_SOURCE_ORDER = {"ui": 0, "default": 1}


@dataclass
class ModelInfo:
    id: str
    name: str
    available: bool = True
    source: str = "ui"

    def to_dict(self) -> dict:
        return asdict(self)


class ModelCatalogService:
    """Serves the model list behind ``GET /api/models``."""

    def __init__(
        self,
        page_pool: "PagePool",
        navigator: "NavigationStrategySelector",
        adapter: "SiteAdapter",
        *,
        target_url: str,
        default_models: list[str] | None = None,
        ttl_seconds: float = 3600.0,
        acquire_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._page_pool = page_pool
        self._navigator = navigator
        self._adapter = adapter
        self._target_url = target_url
        self._defaults = [ModelInfo(m, m, True, "default") for m in default_models or []]
        self._ttl = ttl_seconds
        self._acquire_timeout = acquire_timeout
        self._clock = clock

        self._models: list[ModelInfo] = []
        self._fetched_at: float | None = None
        self._stale = False
        self._refreshes = 0
        self._lock = asyncio.Lock()

    def is_fresh(self) -> bool:
        return (
            self._fetched_at is not None
            and not self._stale
            and self._clock() - self._fetched_at < self._ttl
        )

    async def get_models(self, *, force_refresh: bool = False, request_id: str = "") -> dict:
        """Return the cached list, refreshing it when expired or forced.

        Concurrent callers share a single refresh.
        """
        if not force_refresh and self.is_fresh():
            return self._payload(cached=True)

        seen = self._refreshes
        async with self._lock:
            if self._refreshes == seen:
                await self.refresh(request_id=request_id)
        return self._payload(cached=False)

    async def refresh(self, *, request_id: str = "") -> None:
        try:
            scraped = await self._scrape(request_id)
        except BridgeError as exc:
            logger.warning("Model discovery failed: %s", exc.message, extra={"request_id": request_id})
            scraped = []
        except Exception:  # noqa: BLE001
            logger.warning("Model discovery failed", exc_info=True, extra={"request_id": request_id})
            scraped = []
        finally:
            self._refreshes += 1

        if scraped:
            self._models = self._merge(scraped)
            self._fetched_at = self._clock()
            self._stale = False
            logger.info("Model catalog refreshed: %d models", len(self._models), extra={"request_id": request_id})
        else:
            # Keep whatever we had; retry on the next call
            if not self._models:
                self._models = list(self._defaults)
            self._stale = True

    async def _scrape(self, request_id: str) -> list[ModelInfo]:
        handle = await self._page_pool.acquire(
            request_id or "model-catalog",
            priority=True,
            timeout=self._acquire_timeout,
        )
        try:
            error = await self._navigator.goto(handle.page, self._target_url)
            outcome, _ = await self._navigator.check_page(handle.page, request_id=request_id)
            if outcome is not NavigationOutcome.SUCCESS:
                raise NavigationFailedError(
                    f"Model page unusable ({outcome.value})", error=error, request_id=request_id
                )
            options = await self._adapter.list_models(handle.page)
        finally:
            await self._page_pool.release(handle)
        return [ModelInfo(o.id, o.name, o.available, "ui") for o in options]

    def _merge(self, scraped: list[ModelInfo]) -> list[ModelInfo]:
        known = {m.id for m in scraped}
        merged = scraped + [d for d in self._defaults if d.id not in known]
        return sorted(merged, key=lambda m: (not m.available, _SOURCE_ORDER.get(m.source, 99)))

    def _payload(self, *, cached: bool) -> dict:
        fetched_at = (
            datetime.fromtimestamp(self._fetched_at, timezone.utc).isoformat()
            if self._fetched_at is not None
            else None
        )
        return {
            "models": [m.to_dict() for m in self._models],
            "metadata": {
                "count": len(self._models),
                "available_count": sum(1 for m in self._models if m.available),
                "sources": sorted({m.source for m in self._models}),
                "cached": cached,
                "stale": self._stale,
                "fetched_at": fetched_at,
            },
        }
