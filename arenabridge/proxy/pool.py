"""Proxy pool with health scoring, LRU rotation, exclusive claims and a JSON cache.

Every proxy lives in one catalog keyed by id; the ``active``, ``failed``,
``blacklisted`` and ``untested`` views are derived from each proxy's
``status`` so they can never disagree with it. All mutations run under a
single ``asyncio.Lock`` which makes ``rotate()``/``claim()`` atomic with
respect to each other. Cache writes happen after the lock is released, in a
worker thread; claims and rotations only touch in-memory usage order and are
persisted with the next catalog change or at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import httpx

from arenabridge.logging_config import redact_url
from arenabridge.middleware.error_handler import (
    ProxyNotFoundError,
    ProxySourceError,
)
from arenabridge.proxy.cache import ProxyCache
from arenabridge.proxy.sources import ProxySource
from arenabridge.proxy.types import Proxy, ProxyCandidate, ProxyStatus, parse_proxy_url

logger = logging.getLogger(__name__)

DEFAULT_PROBE_URL = "https://api.ipify.org?format=json"

LIST_KINDS: tuple[str, ...] = ("active", "failed", "blacklisted", "untested", "all")

Prober = Callable[[Proxy, float], Awaitable[None]]


class ProxyPool:
    """Catalog of outbound proxies.

    Lifecycle
    ---------
    1. ``initialize()``: restore the cache, fetch when empty, test untested entries.
    2. ``claim()`` / ``release()``: per-session exclusive use of a proxy.
    3. ``report_failure()`` / ``report_success()``: live-use feedback.
    4. ``shutdown()``: persist the catalog.
    """

    def __init__(
        self,
        sources: list[ProxySource] | None = None,
        cache: ProxyCache | None = None,
        *,
        blacklist_threshold: int = 3,
        test_concurrency: int = 5,
        probe_url: str = DEFAULT_PROBE_URL,
        default_timeout_ms: int = 5000,
        restore_fresh_seconds: int = 0,
        prober: Prober | None = None,
    ) -> None:
        self._sources = list(sources or [])
        self._cache = cache
        self._blacklist_threshold = blacklist_threshold
        self._test_concurrency = test_concurrency
        self._probe_url = probe_url
        self._default_timeout_ms = default_timeout_ms
        self._restore_fresh_seconds = restore_fresh_seconds
        self._prober = prober or self._probe

        self._proxies: dict[str, Proxy] = {}
        self._claims: dict[str, int] = {}
        self._use_seq: dict[str, int] = {}
        self._use_counter = 0
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()

        self._total_fetched = 0
        self._total_tested = 0
        self._total_valid = 0
        self._total_failed = 0
        self._last_fetch_time: datetime | None = None
        self._last_rotation_time: datetime | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, *, fetch_if_empty: bool = True, test_on_start: bool = True) -> None:
        """Restore the cached catalog and bring it to a usable state."""
        await self.restore()

        if fetch_if_empty and not self._proxies and self._sources:
            try:
                await self.fetch()
            except ProxySourceError:
                logger.warning("Initial proxy fetch failed, pool starts empty")

        if test_on_start and self._view(ProxyStatus.UNTESTED):
            await self.test()

        logger.info("Proxy pool initialized: %s", self.stats())

    async def shutdown(self) -> None:
        await self.persist()
        logger.info("Proxy pool shut down")

    # ------------------------------------------------------------------
    # fetch
    # ------------------------------------------------------------------

    async def fetch(self) -> list[Proxy]:
        """Pull candidates from every source and insert the unseen ones as untested.

        Raises :class:`ProxySourceError` only when every source fails.
        """
        candidates: list[ProxyCandidate] = []
        failures = 0
        for source in self._sources:
            try:
                candidates.extend(await source.fetch())
            except Exception as exc:  # noqa: BLE001
                failures += 1
                logger.warning("Proxy source %s failed: %s", source.name, exc)

        if self._sources and failures == len(self._sources):
            raise ProxySourceError(sources=[s.name for s in self._sources])

        added: list[Proxy] = []
        async with self._lock:
            known = {p.key for p in self._proxies.values()}
            for candidate in candidates:
                if candidate.key in known:
                    continue
                known.add(candidate.key)
                proxy = Proxy.from_candidate(candidate)
                self._proxies[proxy.id] = proxy
                added.append(proxy)

            self._total_fetched += len(added)
            self._last_fetch_time = datetime.now(timezone.utc)
        await self._save()

        logger.info(
            "Fetched %d candidates, %d new proxies added", len(candidates), len(added)
        )
        return added

    # ------------------------------------------------------------------
    # test
    # ------------------------------------------------------------------

    async def test(
        self,
        proxies: list[Proxy] | None = None,
        timeout_ms: int | None = None,
    ) -> list[Proxy]:
        """Probe *proxies* (default: all untested) and return the valid subset.

        Probes run concurrently, bounded by ``test_concurrency``. Blacklisted
        proxies are skipped; only an administrative ``reset`` re-admits them.
        """
        if proxies is None:
            targets = self._view(ProxyStatus.UNTESTED)
        else:
            catalogued = (self._proxies.get(p.id) for p in proxies)
            targets = [
                p for p in catalogued
                if p is not None and p.status is not ProxyStatus.BLACKLISTED
            ]
        if not targets:
            return []

        timeout = (timeout_ms or self._default_timeout_ms) / 1000
        semaphore = asyncio.Semaphore(self._test_concurrency)

        async def _one(proxy: Proxy) -> bool:
            async with semaphore:
                started = time.monotonic()
                try:
                    await self._prober(proxy, timeout)
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Proxy %s failed probe: %s", redact_url(proxy.url), exc)
                    ok, elapsed_ms = False, None
                else:
                    ok, elapsed_ms = True, int((time.monotonic() - started) * 1000)

            async with self._lock:
                if proxy.id not in self._proxies:
                    return False
                proxy.last_tested = datetime.now(timezone.utc)
                self._total_tested += 1
                if ok:
                    proxy.status = ProxyStatus.ACTIVE
                    proxy.response_time_ms = elapsed_ms
                    proxy.fail_count = 0
                    self._total_valid += 1
                else:
                    self._record_failure(proxy)
                    self._total_failed += 1
            return ok

        results = await asyncio.gather(*(_one(p) for p in targets))
        valid = [p for p, ok in zip(targets, results) if ok]

        await self._save()

        logger.info("Tested %d proxies: %d valid", len(targets), len(valid))
        return valid

    async def retest_loop(self, interval: float) -> None:
        """Periodically re-test failed proxies so they can recover.

        Blacklisted proxies are never re-tested. Runs until cancelled.
        """
        while True:
            await asyncio.sleep(interval)
            failed = self._view(ProxyStatus.FAILED)
            if failed:
                recovered = await self.test(failed)
                logger.info("Re-tested %d failed proxies, %d recovered", len(failed), len(recovered))

    async def _probe(self, proxy: Proxy, timeout: float) -> None:
        """Fetch the probe URL through *proxy*; raises on any failure."""
        async with httpx.AsyncClient(
            proxy=proxy.url,
            timeout=httpx.Timeout(timeout),
        ) as client:
            response = await client.get(self._probe_url)
            response.raise_for_status()

    # ------------------------------------------------------------------
    # rotate / claim / release
    # ------------------------------------------------------------------

    async def rotate(self) -> Proxy | None:
        """Return the least recently used active proxy with spare capacity."""
        async with self._lock:
            proxy = self._next_available()
            if proxy is not None:
                self._mark_used(proxy)
        return proxy

    async def claim(self) -> Proxy | None:
        """Atomically select and claim an active proxy, or ``None``."""
        async with self._lock:
            proxy = self._next_available()
            if proxy is None:
                return None
            self._claims[proxy.id] = self._claims.get(proxy.id, 0) + 1
            self._mark_used(proxy)
        logger.debug("Claimed proxy %s", proxy.id)
        return proxy

    async def release(self, proxy: Proxy | str | None) -> None:
        """Release one claim on *proxy*. Unknown or unclaimed proxies are ignored."""
        if proxy is None:
            return
        proxy_id = proxy if isinstance(proxy, str) else proxy.id
        async with self._lock:
            held = self._claims.get(proxy_id, 0)
            if held <= 1:
                self._claims.pop(proxy_id, None)
            else:
                self._claims[proxy_id] = held - 1

    def _next_available(self) -> Proxy | None:
        candidates = [
            p for p in self._proxies.values()
            if p.status is ProxyStatus.ACTIVE and self._claims.get(p.id, 0) < p.capacity
        ]
        if not candidates:
            return None
        # dict order is insertion order, and min() keeps the first of equal keys
        return min(candidates, key=self._rotation_key)

    def _rotation_key(self, proxy: Proxy) -> tuple:
        # Uses in this process are ordered by sequence number, not wall clock
        seq = self._use_seq.get(proxy.id)
        last_used = proxy.last_used.timestamp() if proxy.last_used else 0.0
        response = proxy.response_time_ms if proxy.response_time_ms is not None else float("inf")
        return (seq is not None, seq or 0, proxy.last_used is not None, last_used, response)

    def _mark_used(self, proxy: Proxy) -> None:
        now = datetime.now(timezone.utc)
        proxy.last_used = now
        self._last_rotation_time = now
        self._use_counter += 1
        self._use_seq[proxy.id] = self._use_counter

    # ------------------------------------------------------------------
    # Live-use feedback
    # ------------------------------------------------------------------

    async def report_failure(self, proxy: Proxy | str, reason: str = "") -> None:
        """A session failed through *proxy*: ``active -> failed`` (or blacklisted)."""
        proxy_id = proxy if isinstance(proxy, str) else proxy.id
        async with self._lock:
            current = self._proxies.get(proxy_id)
            if current is None or current.status is ProxyStatus.BLACKLISTED:
                return
            self._record_failure(current)
        await self._save()
        logger.warning(
            "Proxy %s reported failing: %s",
            proxy_id,
            reason,
            extra={"proxy_used": redact_url(current.url), "error_reason": reason},
        )

    async def report_success(self, proxy: Proxy | str) -> None:
        proxy_id = proxy if isinstance(proxy, str) else proxy.id
        async with self._lock:
            current = self._proxies.get(proxy_id)
            if current is not None:
                current.last_used = datetime.now(timezone.utc)

    def _record_failure(self, proxy: Proxy) -> None:
        proxy.fail_count += 1
        if proxy.fail_count >= self._blacklist_threshold:
            if proxy.status is not ProxyStatus.BLACKLISTED:
                logger.info("Blacklisting proxy %s after %d failures", proxy.id, proxy.fail_count)
            proxy.status = ProxyStatus.BLACKLISTED
        else:
            proxy.status = ProxyStatus.FAILED

    # ------------------------------------------------------------------
    # Catalog administration
    # ------------------------------------------------------------------

    def get(self, proxy_id: str) -> Proxy | None:
        return self._proxies.get(proxy_id)

    async def add(self, url: str, protocol: str = "http") -> Proxy:
        """Insert a manually supplied proxy as untested.

        An existing entry with the same ``(host, port)`` is returned unchanged.
        Raises :class:`InvalidProxyError` for malformed input.
        """
        candidate = parse_proxy_url(url, protocol=protocol, source="manual")
        async with self._lock:
            for existing in self._proxies.values():
                if existing.key == candidate.key:
                    return existing
            proxy = Proxy.from_candidate(candidate)
            self._proxies[proxy.id] = proxy
        await self._save()
        logger.info("Added proxy %s", redact_url(proxy.url))
        return proxy

    async def remove(self, proxy_id: str) -> bool:
        async with self._lock:
            proxy = self._proxies.pop(proxy_id, None)
            if proxy is None:
                return False
            self._claims.pop(proxy_id, None)
            self._use_seq.pop(proxy_id, None)
        await self._save()
        logger.info("Removed proxy %s", proxy_id)
        return True

    async def reset(self, proxy_id: str) -> Proxy:
        """Administrative reset: clear failures and return the proxy to untested."""
        async with self._lock:
            proxy = self._proxies.get(proxy_id)
            if proxy is None:
                raise ProxyNotFoundError(proxy_id=proxy_id)
            proxy.status = ProxyStatus.UNTESTED
            proxy.fail_count = 0
            proxy.response_time_ms = None
        await self._save()
        return proxy

    # ------------------------------------------------------------------
    # Views and stats
    # ------------------------------------------------------------------

    def _view(self, status: ProxyStatus) -> list[Proxy]:
        return [p for p in self._proxies.values() if p.status is status]

    def list(self, kind: str = "active", limit: int | None = None) -> list[Proxy]:
        """Return proxies of *kind* (active, failed, blacklisted, untested, all)."""
        if kind == "all":
            items = list(self._proxies.values())
        elif kind in LIST_KINDS:
            items = self._view(ProxyStatus(kind))
        else:
            raise ValueError(f"Unknown proxy list kind: {kind}")
        if kind == "active":
            items.sort(key=lambda p: (p.response_time_ms is None, p.response_time_ms or 0))
        return items[:limit] if limit is not None else items

    def stats(self) -> dict:
        counts = {status.value: 0 for status in ProxyStatus}
        for proxy in self._proxies.values():
            counts[proxy.status.value] += 1
        return {
            "total": len(self._proxies),
            **counts,
            "claimed": sum(self._claims.values()),
            "total_fetched": self._total_fetched,
            "total_tested": self._total_tested,
            "total_valid": self._total_valid,
            "total_failed": self._total_failed,
            "last_fetch_time": self._last_fetch_time.isoformat() if self._last_fetch_time else None,
            "last_rotation_time": self._last_rotation_time.isoformat() if self._last_rotation_time else None,
        }

    # ------------------------------------------------------------------
    # persist / restore
    # ------------------------------------------------------------------

    async def persist(self) -> None:
        await self._save()

    async def restore(self) -> int:
        """Load the cached catalog. Returns the number of proxies restored.

        Restored proxies are untested, except blacklisted ones (kept) and
        active ones tested within ``restore_fresh_seconds``.
        """
        if self._cache is None:
            return 0

        loaded = await asyncio.to_thread(self._cache.load)
        fresh_after = datetime.now(timezone.utc) - timedelta(seconds=self._restore_fresh_seconds)

        restored = 0
        async with self._lock:
            known = {p.key for p in self._proxies.values()}
            for proxy in loaded:
                if proxy.id in self._proxies or proxy.key in known:
                    continue
                known.add(proxy.key)
                restored += 1
                if proxy.status is not ProxyStatus.BLACKLISTED and not self._is_fresh(proxy, fresh_after):
                    proxy.status = ProxyStatus.UNTESTED
                self._proxies[proxy.id] = proxy

        logger.info("Restored %d proxies from cache", restored)
        return restored

    def _is_fresh(self, proxy: Proxy, fresh_after: datetime) -> bool:
        return (
            self._restore_fresh_seconds > 0
            and proxy.status is ProxyStatus.ACTIVE
            and proxy.last_tested is not None
            and proxy.last_tested >= fresh_after
        )

    async def _save(self) -> None:
        """Snapshot the catalog under the lock and write it off the event loop.

        Must not be called with ``_lock`` held. Writes are serialized so a
        later snapshot never lands before an earlier one.
        """
        if self._cache is None:
            return
        async with self._save_lock:
            async with self._lock:
                records = [p.to_record() for p in self._proxies.values()]
            try:
                await asyncio.to_thread(self._cache.save_records, records)
            except OSError:
                logger.error("Failed to persist proxy cache", exc_info=True)

