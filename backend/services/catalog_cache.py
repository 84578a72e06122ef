from __future__ import annotations

import logging
import threading
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CatalogCache:
    """TTL cache for top-N-by-usage catalog candidate lists.

    Owned by the application composition root and injected into the
    resolution cascade; entries reload lazily once older than ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] | None = None) -> None:
        self._ttl = max(int(ttl_seconds), 0)
        self._clock = clock or time.monotonic
        self._entries: dict[str, tuple[float, object]] = {}
        self._lock = threading.Lock()

    def get_or_load(self, key: str, loader: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < self._ttl:
                return entry[1]  # type: ignore[return-value]

        value = loader()
        with self._lock:
            self._entries[key] = (now, value)
        logger.debug(f"Catalog cache reloaded key={key}")
        return value

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() - entry[0] < self._ttl
