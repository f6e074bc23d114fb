"""Public proxy list fetchers.

Each source turns one upstream list into :class:`ProxyCandidate` objects.
Malformed lines or entries are dropped; network and HTTP errors propagate so
the pool can decide whether the fetch as a whole failed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from arenabridge.middleware.error_handler import InvalidProxyError
from arenabridge.proxy.types import ProxyCandidate, parse_proxy_url

logger = logging.getLogger(__name__)

PROXYSCRAPE_URL = (
    "https://api.proxyscrape.com/v2/?request=getproxies&protocol=http"
    "&timeout=10000&country=all&ssl=all&anonymity=all"
)
PROXIFLY_URL = "https://proxifly.dev/api/proxy-list?format=json"
GEONODE_URL = (
    "https://proxylist.geonode.com/api/proxy-list?limit=500&page=1"
    "&sort_by=lastChecked&sort_type=desc&filterUpTime=90&protocols=http,https"
)

_FETCH_TIMEOUT = httpx.Timeout(15.0)


class ProxySource(ABC):
    """A named upstream list of proxies."""

    name: str = "source"

    @abstractmethod
    async def fetch(self) -> list[ProxyCandidate]:
        """Return the candidates currently published by the source."""


class _HttpProxySource(ProxySource):
    url: str = ""

    def __init__(self, *, client: httpx.AsyncClient | None = None, url: str | None = None) -> None:
        self._client = client
        if url:
            self.url = url

    async def _get(self) -> httpx.Response:
        if self._client is not None:
            response = await self._client.get(self.url, timeout=_FETCH_TIMEOUT)
        else:
            async with httpx.AsyncClient(timeout=_FETCH_TIMEOUT) as client:
                response = await client.get(self.url)
        response.raise_for_status()
        return response

    def _candidate(self, host: object, port: object, protocol: object = "http", country: object = None) -> ProxyCandidate | None:
        try:
            candidate = parse_proxy_url(f"{host}:{port}", protocol=str(protocol or "http"), source=self.name)
        except InvalidProxyError:
            return None
        candidate.country = str(country) if country else None
        return candidate


class ProxyScrapeSource(_HttpProxySource):
    """Plain-text ``host:port`` list, one per line."""

    name = "proxyscrape"
    url = PROXYSCRAPE_URL

    async def fetch(self) -> list[ProxyCandidate]:
        response = await self._get()
        candidates = []
        for line in response.text.splitlines():
            line = line.strip()
            if not line or ":" not in line:
                continue
            host, _, port = line.partition(":")
            candidate = self._candidate(host, port)
            if candidate:
                candidates.append(candidate)
        logger.info("Fetched %d proxies from %s", len(candidates), self.name)
        return candidates


class ProxiflySource(_HttpProxySource):
    """JSON array of ``{ip, port, protocol, country}`` objects."""

    name = "proxifly"
    url = PROXIFLY_URL

    async def fetch(self) -> list[ProxyCandidate]:
        payload = (await self._get()).json()
        entries = payload if isinstance(payload, list) else []
        candidates = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("ip") or not entry.get("port"):
                continue
            candidate = self._candidate(
                entry["ip"], entry["port"], entry.get("protocol"), entry.get("country")
            )
            if candidate:
                candidates.append(candidate)
        logger.info("Fetched %d proxies from %s", len(candidates), self.name)
        return candidates


class GeoNodeSource(_HttpProxySource):
    """JSON object whose ``data`` array holds ``{ip, port, protocols, country}``."""

    name = "geonode"
    url = GEONODE_URL

    async def fetch(self) -> list[ProxyCandidate]:
        payload = (await self._get()).json()
        entries = payload.get("data", []) if isinstance(payload, dict) else []
        candidates = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("ip") or not entry.get("port"):
                continue
            protocols = entry.get("protocols") or ["http"]
            candidate = self._candidate(
                entry["ip"], entry["port"], protocols[0], entry.get("country")
            )
            if candidate:
                candidates.append(candidate)
        logger.info("Fetched %d proxies from %s", len(candidates), self.name)
        return candidates


class StaticProxySource(ProxySource):
    """Proxies configured up front (``BRIDGE_PROXY_ENDPOINTS``)."""

    name = "static"

    def __init__(self, endpoints: list[str]) -> None:
        self._endpoints = list(endpoints)

    async def fetch(self) -> list[ProxyCandidate]:
        candidates = []
        for raw in self._endpoints:
            try:
                candidates.append(parse_proxy_url(raw, source=self.name))
            except InvalidProxyError:
                logger.warning("Ignoring malformed static proxy endpoint")
        return candidates


_SOURCES: dict[str, type[_HttpProxySource]] = {
    ProxyScrapeSource.name: ProxyScrapeSource,
    ProxiflySource.name: ProxiflySource,
    GeoNodeSource.name: GeoNodeSource,
}


def build_sources(names: list[str], endpoints: list[str] | None = None) -> list[ProxySource]:
    """Instantiate the named sources, plus a static source when *endpoints* is set."""
    sources: list[ProxySource] = []
    for name in names:
        cls = _SOURCES.get(name.lower())
        if cls is None:
            logger.warning("Unknown proxy source %r ignored", name)
            continue
        sources.append(cls())
    if endpoints:
        sources.append(StaticProxySource(endpoints))
    return sources
