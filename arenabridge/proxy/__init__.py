"""Proxy pool package: sourcing, testing, rotation and the JSON cache."""

from arenabridge.proxy.cache import ProxyCache
from arenabridge.proxy.pool import ProxyPool
from arenabridge.proxy.sources import ProxySource, build_sources
from arenabridge.proxy.types import Proxy, ProxyCandidate, ProxyStatus, parse_proxy_url

__all__ = [
    "Proxy",
    "ProxyCache",
    "ProxyCandidate",
    "ProxyPool",
    "ProxySource",
    "ProxyStatus",
    "build_sources",
    "parse_proxy_url",
]
