# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Tessera Contributors

"""Key-value backends for credentials, challenges and revocation markers.

Provides pluggable storage with native or emulated TTL expiry and the two
atomic primitives the identity core depends on:

- ``get_and_delete``: single-use challenge consumption (exactly one caller wins)
- ``compare_and_set``: conditional write for signature counter updates

Default is in-memory; the Redis backend is required in production so that
revocation markers survive process restarts.

Configure via environment variables:
    TESSERA_STORE_BACKEND=memory|redis  (default: memory)
    TESSERA_REDIS_URL=redis://localhost:6379/0
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import redis

from ..core.config import CoreSettings
from ..core.exceptions import ConfigException, StoreUnavailableError

logger = logging.getLogger(__name__)

# Returned by ttl() for a key that exists without an expiry
NO_EXPIRY = -1

# Atomic compare-and-set that keeps the key's remaining TTL
_CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current == ARGV[1] then
    redis.call('SET', KEYS[1], ARGV[2], 'KEEPTTL')
    return 1
end
return 0
"""


class KeyValueBackend(ABC):
    """Abstract keyed store with TTL support.

    Values are strings (callers serialise JSON). Every method raises
    :class:`StoreUnavailableError` when the backend cannot be reached.
    """

    name: str = "abstract"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the value for ``key`` or None if absent or expired."""
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store ``value``, replacing any previous value and TTL."""
        ...

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Store ``value`` only if ``key`` does not exist.

        Returns:
            True if the value was written.
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed."""
        ...

    @abstractmethod
    def get_and_delete(self, key: str) -> str | None:
        """Atomically read and remove ``key``.

        Of any number of concurrent callers, at most one receives the value.
        """
        ...

    @abstractmethod
    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        """Replace the value of ``key`` only if it currently equals ``expected``.

        The key's TTL is preserved. Returns True if the write happened.
        """
        ...

    @abstractmethod
    def ttl(self, key: str) -> int | None:
        """Remaining lifetime in whole seconds.

        Returns:
            None if the key does not exist, NO_EXPIRY if it never expires.
        """
        ...

    @abstractmethod
    def scan(self, prefix: str) -> list[str]:
        """List keys starting with ``prefix``."""
        ...

    @abstractmethod
    def ping(self) -> float:
        """Round-trip the backend and return latency in milliseconds."""
        ...


class MemoryBackend(KeyValueBackend):
    """In-memory backend with emulated TTL.

    Suitable for development, tests and single-process deployments.
    Everything is lost on restart. Thread-safe: every operation runs under
    one lock, which makes get_and_delete and compare_and_set atomic.

    Args:
        clock: Monotonic time source in seconds (injectable for tests).
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def _expires_at(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def _live(self, key: str) -> tuple[str, float | None] | None:
        """Return the entry for key, dropping it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expires_at(ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expires_at(ttl_seconds))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            del self._data[key]
            return True

    def get_and_delete(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            del self._data[key]
            return entry[0]

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != expected:
                return False
            self._data[key] = (value, entry[1])
            return True

    def ttl(self, key: str) -> int | None:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            if entry[1] is None:
                return NO_EXPIRY
            return max(0, int(entry[1] - self._clock()))

    def scan(self, prefix: str) -> list[str]:
        with self._lock:
            return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]

    def ping(self) -> float:
        return 0.0

    def sweep(self) -> int:
        """Drop expired entries proactively. Returns number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, exp) in self._data.items() if exp is not None and now >= exp]
            for key in expired:
                del self._data[key]
            return len(expired)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        """Clear all entries (useful for testing)."""
        with self._lock:
            self._data.clear()


class RedisBackend(KeyValueBackend):
    """Redis-backed store.

    Uses native Redis TTLs, GETDEL for atomic consumption and a Lua script
    for compare-and-set. Survives process restarts when Redis persistence
    (AOF/RDB) is enabled on the server.

    Connection errors and timeouts surface as StoreUnavailableError so the
    revocation gate can apply its failure policy.
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        key_prefix: str = "tessera:",
        socket_timeout: float = 0.5,
    ) -> None:
        self._prefix = key_prefix
        self._client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._cas = self._client.register_script(_CAS_SCRIPT)
        try:
            self._client.ping()
        except redis.RedisError:
            logger.warning("Redis connection failed at init - will retry on use")

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except (redis.ConnectionError, redis.TimeoutError) as e:
            raise StoreUnavailableError(f"Redis unavailable: {e}", backend=self.name) from e

    def get(self, key: str) -> str | None:
        with self._guard():
            return self._client.get(self._key(key))

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._guard():
            self._client.set(self._key(key), value, ex=ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        with self._guard():
            return bool(self._client.set(self._key(key), value, ex=ttl_seconds, nx=True))

    def delete(self, key: str) -> bool:
        with self._guard():
            return bool(self._client.delete(self._key(key)))

    def get_and_delete(self, key: str) -> str | None:
        with self._guard():
            return self._client.getdel(self._key(key))

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        with self._guard():
            return bool(self._cas(keys=[self._key(key)], args=[expected, value]))

    def ttl(self, key: str) -> int | None:
        with self._guard():
            remaining = self._client.ttl(self._key(key))
        if remaining == -2:
            return None
        if remaining == -1:
            return NO_EXPIRY
        return int(remaining)

    def scan(self, prefix: str) -> list[str]:
        strip = len(self._prefix)
        with self._guard():
            return [k[strip:] for k in self._client.scan_iter(match=f"{self._key(prefix)}*", count=100)]

    def ping(self) -> float:
        start = time.perf_counter()
        with self._guard():
            self._client.ping()
        return (time.perf_counter() - start) * 1000


# =============================================================================
# FACTORY
# =============================================================================


def create_backend(settings: CoreSettings) -> KeyValueBackend:
    """Build the backend named by ``settings.store_backend``.

    Returns a new instance on every call; callers own the handle and pass
    it explicitly to the stores built on top of it.
    """
    backend = settings.store_backend.lower()

    if backend == "redis":
        logger.info("Using Redis key-value backend")
        return RedisBackend(redis_url=settings.redis_url, key_prefix=settings.redis_key_prefix)
    if backend == "memory":
        logger.info("Using in-memory key-value backend")
        return MemoryBackend()
    raise ConfigException(f"Unknown store backend '{settings.store_backend}'", missing_vars=["TESSERA_STORE_BACKEND"])
