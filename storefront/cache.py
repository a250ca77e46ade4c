"""Read-through cache for catalog reads.

The order engine and every catalog mutation receive a ``CacheService`` and
invalidate by key prefix before returning. Invalidation is coarse on purpose:
any product-affecting write drops every ``products:`` key.
"""

from __future__ import annotations

import copy
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from .log import get_logger

logger = get_logger(__name__)

ALL_CATEGORIES = "categories:all"
ALL_PRODUCTS = "products:all"
FEATURED_PRODUCTS = "products:featured"

CATEGORY_PREFIX = "categories:"
PRODUCT_PREFIX = "products:"
RESPONSE_PREFIX = "response:"

CATEGORIES_TTL = 600
PRODUCTS_TTL = 300
PRODUCT_DETAIL_TTL = 300


def category_key(category_id: int) -> str:
    return f"categories:{category_id}"


def product_key(product_id: int) -> str:
    return f"products:{product_id}"


def products_by_category_key(category_id: int) -> str:
    return f"products:category:{category_id}"


def response_key(url: str) -> str:
    return f"{RESPONSE_PREFIX}{url}"


class CacheService(ABC):
    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the cached value, or ``None`` when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def invalidate_by_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` and return how many were dropped."""

    @abstractmethod
    def clear(self) -> None:
        ...

    def get_or_set(self, key: str, fetch: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = fetch()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def invalidate_products(self) -> None:
        self.invalidate_by_prefix(PRODUCT_PREFIX)
        self.invalidate_by_prefix(response_key("/products"))

    def invalidate_categories(self) -> None:
        self.invalidate_by_prefix(CATEGORY_PREFIX)
        self.invalidate_by_prefix(response_key("/categories"))

    def invalidate_catalog(self) -> None:
        # category payloads embed product stock, so both namespaces go
        self.invalidate_products()
        self.invalidate_categories()


class MemoryCache(CacheService):
    """Process-local TTL cache. Values are deep-copied in and out."""

    def __init__(self, default_ttl: int = 300) -> None:
        self.default_ttl = default_ttl
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if expires_at and expires_at <= time.monotonic():
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = time.monotonic() + ttl if ttl > 0 else 0.0
        with self._lock:
            self._data[key] = (expires_at, copy.deepcopy(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_by_prefix(self, prefix: str) -> int:
        with self._lock:
            matching = [k for k in self._data if k.startswith(prefix)]
            for key in matching:
                del self._data[key]
        if matching:
            logger.debug("cache_invalidated", prefix=prefix, keys=len(matching))
        return len(matching)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def keys(self) -> list:
        with self._lock:
            return list(self._data.keys())

    def evict_expired(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (exp, _) in self._data.items() if exp and exp <= now]
            for key in expired:
                del self._data[key]
        return len(expired)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"keys": len(self._data), "hits": self.hits, "misses": self.misses}


def safe_invalidate(action: Callable[[], None]) -> None:
    """Run a post-commit invalidation; failures are logged, never raised."""
    try:
        action()
    except Exception:
        logger.exception("cache_invalidation_failed")


def start_eviction_sweeper(cache: MemoryCache, interval: int, *, daemon: bool = True) -> threading.Event:
    """Evict expired entries every ``interval`` seconds until the returned event is set."""
    stop = threading.Event()

    def _run() -> None:
        while not stop.wait(interval):
            try:
                evicted = cache.evict_expired()
                if evicted:
                    logger.debug("cache_sweep", evicted=evicted)
            except Exception:
                logger.exception("cache_sweep_failed")

    t = threading.Thread(target=_run, name="cache-sweeper", daemon=daemon)
    t.start()
    return stop
