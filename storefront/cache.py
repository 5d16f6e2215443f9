"""Cache backends.

Services only talk to ``CacheBackend``; which store sits behind it is a
deployment choice (``CACHE_BACKEND``). Redis is shared across instances,
``LocalCache`` lives in one process and is meant for single-instance
deployments and tests.
"""
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Minimal key/value interface with TTLs."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the decoded value or None."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> None:
        """Store a JSON-serialisable value for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key if present."""


class RedisCache(CacheBackend):
    """Cache backed by a Redis server."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize Redis cache.

        Args:
            redis_client: Redis connection (decode_responses=True)
        """
        self.redis = redis_client

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.redis.get(key)
        except redis.RedisError as e:
            # A cache miss is always a safe answer
            logger.error("Redis cache read failed", extra={"key": key, "error": str(e)})
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self.redis.set(key, json.dumps(value, default=str), ex=ttl)
        except redis.RedisError as e:
            logger.error("Redis cache write failed", extra={"key": key, "error": str(e)})

    def delete(self, key: str) -> None:
        try:
            self.redis.delete(key)
        except redis.RedisError as e:
            logger.error("Redis cache delete failed", extra={"key": key, "error": str(e)})


class LocalCache(CacheBackend):
    """In-process cache with lazy TTL expiry."""

    def __init__(self):
        self._data: Dict[str, Tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, raw = entry
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        raw = json.dumps(value, default=str)
        with self._lock:
            self._data[key] = (time.monotonic() + ttl, raw)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def create_cache(backend: str, redis_url: str) -> CacheBackend:
    """Build the configured cache backend."""
    if backend == "memory":
        logger.info("Using in-process cache")
        return LocalCache()
    if backend == "redis":
        logger.info("Using Redis cache", extra={"redis_url": redis_url})
        return RedisCache(redis.from_url(redis_url, decode_responses=True))
    raise ValueError(f"Unknown cache backend: {backend}")
