"""
cache/store.py -- Key-value cache with per-key TTL for the auth core.

Two interchangeable backends implement the CacheStore contract:
  MemoryCache -- in-process dict guarded by a lock. Used by tests and by
                 single-worker deployments with no REDIS_URL configured.
  RedisCache  -- redis-py client shared by every worker. Counter increments
                 run in a Lua script so the "set TTL only on first hit" rule
                 is atomic at the server.

Values must be JSON-serialisable. MemoryCache round-trips them through JSON
as well, so a value that works in tests also works against Redis.

Usage:
    cache = MemoryCache()
    cache.put("user:auth:1", {"id": 1}, 3600)
    cache.remember("user:auth:email:a@b.c", 3600, lambda: load_user())
    cache.hit("login:1.2.3.4", 60)          # -> new attempt count
    cache.remaining_ttl("login:1.2.3.4")    # -> seconds until the window resets
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from redis import Redis

logger = logging.getLogger("authgate.cache")


class CacheStore(Protocol):
    """Contract shared by every cache backend."""

    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: int) -> None: ...

    def remember(self, key: str, ttl: int, supplier: Callable[[], Any]) -> Any | None: ...

    def forget(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def add(self, key: str, value: Any, ttl: int) -> bool: ...

    def hit(self, key: str, window: int) -> int: ...

    def remaining_ttl(self, key: str) -> int: ...

    def close(self) -> None: ...


class _BaseCache:
    """Cache-aside helper shared by both backends."""

    def remember(self, key: str, ttl: int, supplier: Callable[[], Any]) -> Any | None:
        """Return the cached value for key, or compute it with supplier and store it.

        A None result from supplier is returned but not cached, so a miss for
        a record that does not exist yet cannot hide it once it is created.
        supplier must be idempotent: two racing misses may both call it.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = supplier()
        if value is not None:
            self.put(key, value, ttl)
        return value

    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def put(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------


class MemoryCache(_BaseCache):
    """Thread-safe in-memory cache with lazy expiry.

    clock is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        # Caller must hold the lock.
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(key)
        return json.loads(entry[0]) if entry is not None else None

    def put(self, key: str, value: Any, ttl: int) -> None:
        encoded = json.dumps(value)
        with self._lock:
            self._entries[key] = (encoded, self._clock() + ttl)

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def add(self, key: str, value: Any, ttl: int) -> bool:
        encoded = json.dumps(value)
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (encoded, self._clock() + ttl)
            return True

    def hit(self, key: str, window: int) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                self._entries[key] = ("1", self._clock() + window)
                return 1
            count = int(json.loads(entry[0])) + 1
            # Keep the original expiry: later hits never extend the window.
            self._entries[key] = (str(count), entry[1])
            return count

    def remaining_ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return 0
            return max(0, math.ceil(entry[1] - self._clock()))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        self.clear()


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCache(_BaseCache):
    """Redis-backed cache shared across workers.

    Every key is namespaced with prefix so the auth core can share a Redis
    database with other applications.
    """

    # INCR and EXPIRE in one script: a window's TTL is set only by the hit
    # that creates the key, and no other client can interleave between them.
    _HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""

    def __init__(self, redis_url: str, *, prefix: str = "authgate:", socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.prefix = prefix
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._hit = self.client.register_script(self._HIT_SCRIPT)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        self.client.ping()
        logger.info("Redis cache connected")

    def get(self, key: str) -> Any | None:
        raw = self.client.get(self._k(key))
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: Any, ttl: int) -> None:
        self.client.set(self._k(key), json.dumps(value), ex=max(1, int(ttl)))

    def forget(self, key: str) -> None:
        self.client.delete(self._k(key))

    def exists(self, key: str) -> bool:
        return bool(self.client.exists(self._k(key)))

    def add(self, key: str, value: Any, ttl: int) -> bool:
        return bool(self.client.set(self._k(key), json.dumps(value), ex=max(1, int(ttl)), nx=True))

    def hit(self, key: str, window: int) -> int:
        return int(self._hit(keys=[self._k(key)], args=[max(1, int(window))]))

    def remaining_ttl(self, key: str) -> int:
        # TTL returns -2 for a missing key and -1 for a key without expiry.
        return max(0, int(self.client.ttl(self._k(key))))

    def close(self) -> None:
        self.client.close()
