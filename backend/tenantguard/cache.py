"""
Shared cache for access and quota aggregates.

Provides:
- CacheBackend: minimal key/value interface with per-key TTL
- RedisCacheBackend: Redis-backed implementation (JSON values)
- InMemoryCacheBackend: thread-safe process-local fallback
- get_cache_backend(): singleton, Redis when REDIS_URL is reachable

Backends raise CacheError on infrastructure failure. Callers treat the
cache as an optimisation and fall back to the durable store.

Key layout:
    quota:usage:{tenant_id}:{metric}:{YYYY-MM}
    access:plan-modules:{tenant_id}
    access:feature-tree
"""

import fnmatch
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)

QUOTA_CACHE_TTL_SECONDS = int(os.getenv("QUOTA_CACHE_TTL_SECONDS", "300"))
PLAN_MODULES_CACHE_TTL_SECONDS = int(os.getenv("PLAN_MODULES_CACHE_TTL_SECONDS", "300"))
FEATURE_TREE_CACHE_TTL_SECONDS = int(os.getenv("FEATURE_TREE_CACHE_TTL_SECONDS", "300"))


def usage_key(tenant_id: str, metric: str, period_key: str) -> str:
    return f"quota:usage:{tenant_id}:{metric}:{period_key}"


def plan_modules_key(tenant_id: str) -> str:
    return f"access:plan-modules:{tenant_id}"


FEATURE_TREE_KEY = "access:feature-tree"


class CacheError(Exception):
    """Raised when the cache backend cannot serve a request."""
    pass


class CacheBackend(ABC):
    """Abstract key/value cache with TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None on miss."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern."""
        pass


class RedisCacheBackend(CacheBackend):
    """
    Redis-backed cache.

    Values are stored as JSON strings so every process reads the same
    representation.
    """

    def __init__(self, client: "redis.Redis"):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        return cls(client)

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.RedisError as e:
            raise CacheError(f"Redis PING failed: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        try:
            data = self._redis.get(key)
        except redis.RedisError as e:
            raise CacheError(f"Redis GET failed: {e}") from e
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            logger.warning("Discarding undecodable cache entry", extra={"key": key})
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._redis.setex(key, ttl_seconds, json.dumps(value))
        except redis.RedisError as e:
            raise CacheError(f"Redis SET failed: {e}") from e

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return self._redis.delete(*keys)
        except redis.RedisError as e:
            raise CacheError(f"Redis DELETE failed: {e}") from e

    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self._redis.scan_iter(pattern))
            if keys:
                return self._redis.delete(*keys)
            return 0
        except redis.RedisError as e:
            raise CacheError(f"Redis DELETE pattern failed: {e}") from e


class InMemoryCacheBackend(CacheBackend):
    """
    In-memory fallback cache when Redis is unavailable.

    Thread-safe with per-entry expiry. Values are round-tripped through
    JSON so callers see the same types as with Redis.
    """

    def __init__(self, max_size: int = 10000):
        self._cache: Dict[str, tuple[str, datetime]] = {}
        self._lock = Lock()
        self._max_size = max_size

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if datetime.now(timezone.utc) >= expires_at:
                del self._cache[key]
                return None
            return json.loads(value)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        with self._lock:
            # Evict the entry closest to expiry if at capacity
            if key not in self._cache and len(self._cache) >= self._max_size:
                oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                del self._cache[oldest_key]
            self._cache[key] = (json.dumps(value), expires_at)

    def delete(self, *keys: str) -> int:
        count = 0
        with self._lock:
            for key in keys:
                if self._cache.pop(key, None) is not None:
                    count += 1
        return count

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys_to_delete = [k for k in self._cache if fnmatch.fnmatch(k, pattern)]
            for key in keys_to_delete:
                del self._cache[key]
            return len(keys_to_delete)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


_backend_instance: Optional[CacheBackend] = None
_backend_lock = Lock()


def _create_backend() -> CacheBackend:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        logger.info("REDIS_URL not configured - using in-memory cache")
        return InMemoryCacheBackend()

    backend = RedisCacheBackend.from_url(redis_url)
    try:
        backend.ping()
    except CacheError as e:
        logger.warning(f"Redis connection failed: {e} - using in-memory cache")
        return InMemoryCacheBackend()

    logger.info("Redis connection established for access/quota cache")
    return backend


def get_cache_backend() -> CacheBackend:
    """Get the singleton cache backend."""
    global _backend_instance
    if _backend_instance is None:
        with _backend_lock:
            if _backend_instance is None:
                _backend_instance = _create_backend()
    return _backend_instance


def set_cache_backend(backend: Optional[CacheBackend]) -> None:
    """Replace the singleton backend (tests, app startup)."""
    global _backend_instance
    with _backend_lock:
        _backend_instance = backend
