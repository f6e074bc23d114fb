"""Administrative operations over the proxy pool.

Every operation returns plain dicts ready for the response envelope. Proxy
URLs are always redacted. "Nothing to do" outcomes (no active proxy to rotate
to, unknown id on delete) are reported in the result, not raised.
"""

from __future__ import annotations

import logging

from arenabridge.proxy.pool import LIST_KINDS, ProxyPool
from arenabridge.proxy.types import ProxyStatus

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


class ProxyAdminService:
    """Operation-level facade used by the ``/api/proxy`` routes."""

    def __init__(self, pool: ProxyPool) -> None:
        self._pool = pool

    def get_stats(self) -> dict:
        return self._pool.stats()

    def list_proxies(self, kind: str | None = "active", limit: int | None = DEFAULT_LIST_LIMIT) -> dict:
        """List proxies of *kind*. Unknown kinds fall back to ``active``."""
        if kind not in LIST_KINDS:
            logger.debug("Unknown proxy list type %r, using active", kind)
            kind = "active"
        proxies = self._pool.list(kind, limit)
        return {
            "type": kind,
            "count": len(proxies),
            "proxies": [p.to_public_dict() for p in proxies],
        }

    async def fetch_proxies(self) -> dict:
        added = await self._pool.fetch()
        return {"added": len(added), "stats": self._pool.stats()}

    async def test_proxies(
        self,
        ids: list[str] | None = None,
        *,
        scope: str = "untested",
        timeout_ms: int | None = None,
    ) -> dict:
        """Test the given ids, or every proxy (``scope="all"``), or the untested ones."""
        if ids:
            targets = [p for p in (self._pool.get(i) for i in ids) if p is not None]
        elif scope == "all":
            targets = self._pool.list("all")
        else:
            targets = self._pool.list("untested")
        # Blacklisted proxies are never re-tested; only a reset re-admits them
        skipped = sum(1 for p in targets if p.status is ProxyStatus.BLACKLISTED)
        targets = [p for p in targets if p.status is not ProxyStatus.BLACKLISTED]
        valid = await self._pool.test(targets, timeout_ms=timeout_ms)
        return {
            "tested": len(targets),
            "skipped": skipped,
            "valid": len(valid),
            "proxies": [p.to_public_dict() for p in valid],
        }

    async def rotate(self) -> dict:
        proxy = await self._pool.rotate()
        if proxy is None:
            return {"rotated": False, "message": "No active proxies available"}
        return {"rotated": True, "proxy": proxy.to_public_dict()}

    async def add_proxy(self, url: str, protocol: str = "http") -> dict:
        """Parse and insert a proxy, then test it straight away.

        Raises :class:`InvalidProxyError` for malformed input.
        """
        proxy = await self._pool.add(url, protocol)
        valid = await self._pool.test([proxy])
        return {"proxy": proxy.to_public_dict(), "working": bool(valid)}

    async def delete_proxy(self, proxy_id: str) -> dict:
        if not await self._pool.remove(proxy_id):
            return {"deleted": False, "message": f"Proxy {proxy_id} not found"}
        return {"deleted": True, "id": proxy_id}

    async def reset_proxy(self, proxy_id: str) -> dict:
        """Raises :class:`ProxyNotFoundError` for an unknown id."""
        proxy = await self._pool.reset(proxy_id)
        return {"proxy": proxy.to_public_dict()}
