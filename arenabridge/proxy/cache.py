"""JSON file cache for the proxy catalog.

The file holds a JSON array of proxy records. Writes go to a temporary file
first and are moved into place with ``os.replace`` so a crash mid-write never
leaves a truncated cache.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from arenabridge.proxy.types import Proxy

logger = logging.getLogger(__name__)


class ProxyCache:
    """Loads and saves proxy records at *path*."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Proxy]:
        """Return the cached proxies. Missing or unreadable files yield ``[]``."""
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Proxy cache %s is unreadable, starting empty", self._path, exc_info=True)
            return []

        if not isinstance(raw, list):
            logger.warning("Proxy cache %s is not a JSON array, starting empty", self._path)
            return []

        proxies: list[Proxy] = []
        for record in raw:
            try:
                proxies.append(Proxy.from_record(record))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping invalid proxy cache record: %r", record)
        return proxies

    def save(self, proxies: list[Proxy]) -> None:
        """Write *proxies* as a JSON array."""
        self.save_records([p.to_record() for p in proxies])

    def save_records(self, records: list[dict]) -> None:
        """Write already-serialized records. Blocking; pool callers run it in a thread."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(records, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp, self._path)
        logger.debug("Saved %d proxies to %s", len(records), self._path)
