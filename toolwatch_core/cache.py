"""Redis caching layer for ToolWatch Core

Caches completed analytics evaluations keyed by request window,
environment filter, as-of date and a digest of the supplied history, so
repeated dashboard requests over the same data skip recomputation.
"""

import hashlib
import json
import logging
import pickle
import time
from collections import OrderedDict
from typing import Any, Optional, Dict

import redis
from redis.exceptions import RedisError, ConnectionError

from .config import settings

logger = logging.getLogger("toolwatch.cache")


class CacheClient:
    """Redis-based cache client with fallback to memory"""

    def __init__(
        self,
        enabled: Optional[bool] = None,
        redis_enabled: Optional[bool] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        default_ttl: Optional[int] = None,
        max_entries: Optional[int] = None,
    ):
        self._redis: Optional[redis.Redis] = None
        self._memory_cache: "OrderedDict[str, tuple[Any, Optional[float]]]" = OrderedDict()
        self._max_entries = max_entries or settings.CACHE_MAX_ENTRIES
        self._enabled = settings.CACHE_ENABLED if enabled is None else enabled
        self._key_prefix = key_prefix or settings.REDIS_KEY_PREFIX
        self._default_ttl = default_ttl or settings.CACHE_TTL
        redis_enabled = settings.REDIS_ENABLED if redis_enabled is None else redis_enabled
        redis_url = redis_url or settings.REDIS_URL

        if self._enabled and redis_enabled:
            try:
                self._redis = redis.from_url(
                    redis_url,
                    decode_responses=False,  # We handle serialization manually
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30,
                )
                self._redis.ping()
                logger.info(f"Redis cache connected: {redis_url}")
            except (RedisError, ConnectionError) as e:
                logger.warning(f"Redis connection failed, falling back to memory cache: {e}")
                self._redis = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _make_key(self, key: str) -> str:
        """Create a prefixed key"""
        return f"{self._key_prefix}:{key}"

    def _serialize(self, value: Any) -> bytes:
        return pickle.dumps(value)

    def _deserialize(self, data: bytes) -> Any:
        return pickle.loads(data)

    def get(self, key: str) -> Optional[Any]:
        """Get a value from cache"""
        if not self._enabled:
            return None

        if self._redis:
            try:
                data = self._redis.get(self._make_key(key))
                if data:
                    return self._deserialize(data)
            except (RedisError, ConnectionError) as e:
                logger.debug(f"Redis get failed, trying memory: {e}")

        if key in self._memory_cache:
            value, expiry = self._memory_cache[key]
            if expiry is None or expiry > time.time():
                self._memory_cache.move_to_end(key)
                return value
            del self._memory_cache[key]

        return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a value in cache with optional TTL (seconds)"""
        if not self._enabled:
            return False

        ttl = ttl or self._default_ttl

        if self._redis:
            try:
                self._redis.setex(self._make_key(key), ttl, self._serialize(value))
                return True
            except (RedisError, ConnectionError) as e:
                logger.debug(f"Redis set failed, using memory: {e}")

        self._memory_cache.pop(key, None)
        self._purge_memory()
        self._memory_cache[key] = (value, time.time() + ttl if ttl else None)
        return True

    def _purge_memory(self) -> None:
        """Drop expired entries, then the least recently used ones, to make room for one more"""
        now = time.time()
        expired = [
            key for key, (_, expiry) in self._memory_cache.items()
            if expiry is not None and expiry <= now
        ]
        for key in expired:
            del self._memory_cache[key]

        while len(self._memory_cache) >= self._max_entries:
            evicted, _ = self._memory_cache.popitem(last=False)
            logger.debug(f"Memory cache full, evicted {evicted}")

    def delete(self, key: str) -> bool:
        """Delete a key from cache"""
        if not self._enabled:
            return False

        if self._redis:
            try:
                self._redis.delete(self._make_key(key))
                return True
            except (RedisError, ConnectionError) as e:
                logger.debug(f"Redis delete failed: {e}")

        if key in self._memory_cache:
            del self._memory_cache[key]
            return True

        return False

    def clear(self) -> int:
        """Clear every key under this cache's prefix"""
        if not self._enabled:
            return 0

        if self._redis:
            try:
                keys = self._redis.keys(f"{self._key_prefix}:*")
                return self._redis.delete(*keys) if keys else 0
            except (RedisError, ConnectionError) as e:
                logger.debug(f"Redis clear failed, using memory: {e}")

        count = len(self._memory_cache)
        self._memory_cache.clear()
        return count

    def health_check(self) -> Dict[str, Any]:
        """Check cache health"""
        health = {
            "status": "healthy",
            "enabled": self._enabled,
            "backend": "unknown",
        }

        if not self._enabled:
            health["status"] = "disabled"
            return health

        if self._redis:
            try:
                start = time.time()
                self._redis.ping()
                health["backend"] = "redis"
                health["latency_ms"] = round((time.time() - start) * 1000, 2)
            except (RedisError, ConnectionError) as e:
                health["status"] = "degraded"
                health["backend"] = "memory"
                health["redis_error"] = str(e)
        else:
            health["backend"] = "memory"
            health["memory_keys"] = len(self._memory_cache)
            health["memory_max_entries"] = self._max_entries

        return health


# Global cache instance
cache = CacheClient()


def get_cache() -> CacheClient:
    """Get the global cache instance"""
    return cache


def generate_cache_key(*parts: str) -> str:
    """Generate a cache key from parts"""
    combined = ":".join(parts)
    return hashlib.sha256(combined.encode()).hexdigest()[:32]


def payload_digest(payload: Any) -> str:
    """Stable digest of a JSON-compatible payload"""
    encoded = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()


def evaluation_cache_key(
    window_days: int,
    environment: Optional[str],
    as_of: Optional[str],
    digest: str,
) -> str:
    """Cache key for one evaluation request"""
    return "eval:" + generate_cache_key(
        str(window_days), environment or "*", as_of or "latest", digest
    )
