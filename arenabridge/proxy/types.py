"""Proxy data models for the proxy pool."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from arenabridge.logging_config import redact_url
from arenabridge.middleware.error_handler import InvalidProxyError

_SCHEMED = re.compile(
    r"^(?P<protocol>https?|socks[45]?)://(?:(?P<auth>[^@/\s]+)@)?(?P<host>[^:/\s@]+)(?::(?P<port>\d+))?/?$",
    re.IGNORECASE,
)
_BARE = re.compile(r"^(?P<host>[^:/\s@]+):(?P<port>\d+)$")

_DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}


class ProxyStatus(str, Enum):
    """Health status of a proxy. Each proxy has exactly one."""

    UNTESTED = "untested"
    ACTIVE = "active"
    FAILED = "failed"
    BLACKLISTED = "blacklisted"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ProxyCandidate:
    """A raw proxy returned by a source, before it enters the catalog."""

    host: str
    port: int
    protocol: str = "http"
    source: str = "manual"
    country: str | None = None
    auth: str | None = None  # "user:pass"

    @property
    def url(self) -> str:
        auth = f"{self.auth}@" if self.auth else ""
        return f"{self.protocol}://{auth}{self.host}:{self.port}"

    @property
    def key(self) -> tuple[str, int]:
        return (self.host.lower(), self.port)


@dataclass
class Proxy:
    """A catalogued proxy with health and usage tracking."""

    url: str
    host: str
    port: int
    protocol: str = "http"
    source: str = "manual"
    id: str = field(default_factory=lambda: str(uuid4()))
    status: ProxyStatus = ProxyStatus.UNTESTED
    response_time_ms: int | None = None
    fail_count: int = 0
    last_tested: datetime | None = None
    last_used: datetime | None = None
    added: datetime = field(default_factory=_utcnow)
    capacity: int = 1
    country: str | None = None

    @classmethod
    def from_candidate(cls, candidate: ProxyCandidate) -> "Proxy":
        return cls(
            url=candidate.url,
            host=candidate.host,
            port=candidate.port,
            protocol=candidate.protocol,
            source=candidate.source,
            country=candidate.country,
        )

    @property
    def key(self) -> tuple[str, int]:
        return (self.host.lower(), self.port)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_record(self) -> dict:
        """Cache record. Keeps credentials so the proxy stays usable after restart."""
        return {
            "id": self.id,
            "url": self.url,
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "source": self.source,
            "status": self.status.value,
            "responseTime": self.response_time_ms,
            "failCount": self.fail_count,
            "lastTested": self.last_tested.isoformat() if self.last_tested else None,
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
            "added": self.added.isoformat(),
            "capacity": self.capacity,
            "country": self.country,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Proxy":
        """Build a Proxy from a cache record. Raises KeyError/ValueError on bad input."""
        return cls(
            id=str(record["id"]),
            url=str(record["url"]),
            host=str(record["host"]),
            port=int(record["port"]),
            protocol=str(record.get("protocol") or "http"),
            source=str(record.get("source") or "cache"),
            status=ProxyStatus(record.get("status") or ProxyStatus.UNTESTED.value),
            response_time_ms=record.get("responseTime"),
            fail_count=int(record.get("failCount") or 0),
            last_tested=_parse_time(record.get("lastTested")),
            last_used=_parse_time(record.get("lastUsed")),
            added=_parse_time(record.get("added")) or _utcnow(),
            capacity=max(1, int(record.get("capacity") or 1)),
            country=record.get("country"),
        )

    def to_public_dict(self) -> dict:
        """Externally visible view. Credentials are always redacted."""
        data = self.to_record()
        data["url"] = redact_url(self.url)
        return data


def parse_proxy_url(raw: str, protocol: str = "http", source: str = "manual") -> ProxyCandidate:
    """Parse ``protocol://[user:pass@]host:port`` or ``host:port``.

    Raises :class:`InvalidProxyError` for anything else.
    """
    text = (raw or "").strip()
    match = _SCHEMED.match(text)
    if match:
        scheme = match.group("protocol").lower()
        port = match.group("port")
        if port is None:
            if scheme not in _DEFAULT_PORTS:
                raise InvalidProxyError(url=redact_url(text))
            port_num = _DEFAULT_PORTS[scheme]
        else:
            port_num = int(port)
        _check_port(port_num, text)
        return ProxyCandidate(
            host=match.group("host"),
            port=port_num,
            protocol=scheme,
            source=source,
            auth=match.group("auth"),
        )

    match = _BARE.match(text)
    if match:
        port_num = int(match.group("port"))
        _check_port(port_num, text)
        return ProxyCandidate(
            host=match.group("host"),
            port=port_num,
            protocol=(protocol or "http").lower(),
            source=source,
        )

    raise InvalidProxyError(url=redact_url(text))


def _check_port(port: int, text: str) -> None:
    if not 0 < port < 65536:
        raise InvalidProxyError(url=redact_url(text))
