"""Time-bounded key-value store.

Backs short-lived bookkeeping such as replayed peer-token ids. Redis is used
when ``REDIS_URL`` is configured; otherwise entries live in a process-local
dict that sweeps expired keys on every insert.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from threading import Lock

import redis

logger = logging.getLogger(__name__)


class TTLStore:
    """Key-value store whose entries expire after a per-key TTL."""

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        namespace: str = "karma",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.namespace = namespace
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = Lock()
        self._redis: redis.Redis | None = None
        if redis_url:
            self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _drop_redis(self, exc: redis.RedisError) -> None:
        logger.warning("Redis unavailable for TTL store, using process memory: %s", exc)
        self._redis = None

    def sweep(self) -> int:
        """Remove expired in-process entries and return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expiry) in self._entries.items() if expiry <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def set(self, key: str, value: str = "1", *, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self._redis is not None:
            try:
                self._redis.set(self._key(key), value, ex=int(ttl_seconds))
                return
            except redis.RedisError as exc:
                self._drop_redis(exc)

        self.sweep()
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def claim(self, key: str, *, ttl_seconds: int) -> bool:
        """Set `key` only if absent; True when this call created it."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self._redis is not None:
            try:
                return bool(self._redis.set(self._key(key), "1", ex=int(ttl_seconds), nx=True))
            except redis.RedisError as exc:
                self._drop_redis(exc)

        self.sweep()
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = ("1", self._clock() + ttl_seconds)
            return True

    def get(self, key: str) -> str | None:
        if self._redis is not None:
            try:
                value = self._redis.get(self._key(key))
                return None if value is None else str(value)
            except redis.RedisError as exc:
                self._drop_redis(exc)

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if expiry <= self._clock():
                del self._entries[key]
                return None
            return value

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(self._key(key))
                return
            except redis.RedisError as exc:
                self._drop_redis(exc)

        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
