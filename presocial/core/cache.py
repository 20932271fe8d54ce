"""
TTL cache for upstream forum responses.

The store talks to one of two backends: Redis when a URL is configured and
reachable, otherwise an in-process expiring map. The backend is chosen once,
on first use, and never re-evaluated for the lifetime of the store. Every
operation fails open: storage errors are logged and surface as a miss or a
no-op so that cache trouble never fails the surrounding request.
"""
import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

# Characters with special meaning in a Redis MATCH pattern.
_REDIS_GLOB_CHARS = "\\*?[]"


@dataclass(frozen=True)
class CacheTTL:
    """Per-resource cache lifetimes in seconds."""
    search: int = 300
    post: int = 900
    communities: int = 3600
    trending: int = 1800

    @classmethod
    def from_settings(cls, settings) -> "CacheTTL":
        return cls(
            search=settings.CACHE_TTL_SEARCH,
            post=settings.CACHE_TTL_POST,
            communities=settings.CACHE_TTL_COMMUNITIES,
            trending=settings.CACHE_TTL_TRENDING,
        )


@dataclass
class CacheEntry:
    """A cached value together with the moment it was stored and its lifetime."""
    data: Any
    stored_at_millis: int
    ttl_seconds: int

    def is_expired(self, now_millis: int) -> bool:
        return now_millis > self.stored_at_millis + self.ttl_seconds * 1000


class CacheBackend(ABC):
    """Storage contract shared by the Redis and in-process backends."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with the literal ``prefix``; return the count."""

    @abstractmethod
    async def size(self) -> int:
        """Number of keys currently held."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryCacheBackend(CacheBackend):
    """
    In-process expiring map.

    Expired entries are evicted when read, and a full sweep runs after a
    ``set`` pushes the entry count above ``sweep_threshold``.
    """

    name = "memory"

    def __init__(self, sweep_threshold: int = 1000, clock: Callable[[], float] = time.time):
        """
        Args:
            sweep_threshold: Entry count above which ``set`` reaps expired entries.
            clock: Returns the current time in seconds; injectable for tests.
        """
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _now_millis(self) -> int:
        return int(self._clock() * 1000)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._now_millis()):
            del self._entries[key]
            return None
        return entry.data

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = CacheEntry(
            data=value,
            stored_at_millis=self._now_millis(),
            ttl_seconds=ttl_seconds,
        )
        if len(self._entries) > self.sweep_threshold:
            self.sweep()

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    async def size(self) -> int:
        return len(self._entries)

    def sweep(self) -> int:
        """Drop every expired entry in one pass; return how many were removed."""
        now = self._now_millis()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheBackend(CacheBackend):
    """Redis-backed cache storing JSON documents with ``SETEX``."""

    name = "redis"

    def __init__(self, client: aioredis.Redis, namespace: str = "", scan_count: int = 500):
        """
        Args:
            client: Connected Redis client.
            namespace: Key prefix owned by this cache; ``size`` counts only these keys.
            scan_count: ``SCAN`` batch size, also used to batch deletes.
        """
        self.client = client
        self.namespace = namespace
        self.scan_count = scan_count

    def _match_prefix(self, prefix: str) -> str:
        escaped = "".join(f"\\{char}" if char in _REDIS_GLOB_CHARS else char for char in prefix)
        return f"{escaped}*"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache value for {key}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.setex(key, ttl_seconds, json.dumps(value, default=str))

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [key async for key in self.client.scan_iter(match=self._match_prefix(prefix), count=self.scan_count)]
        if not keys:
            return 0
        deleted = 0
        for i in range(0, len(keys), self.scan_count):
            deleted += await self.client.delete(*keys[i:i + self.scan_count])
        return deleted

    async def size(self) -> int:
        if not self.namespace:
            return await self.client.dbsize()
        pattern = self._match_prefix(f"{self.namespace}:")
        count = 0
        async for _ in self.client.scan_iter(match=pattern, count=self.scan_count):
            count += 1
        return count

    async def close(self) -> None:
        await self.client.aclose()


class CacheStore:
    """
    Namespaced, fail-open cache facade.

    Every key is prefixed with ``<namespace>:`` before it reaches the backend
    so other users of the same Redis database cannot collide with us.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        namespace: str = "presocial",
        sweep_threshold: int = 1000,
        connect_timeout: float = 3.0,
        backend: Optional[CacheBackend] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            redis_url: Redis connection URL; None selects the in-process backend.
            namespace: Service-wide key prefix.
            sweep_threshold: Entry count that triggers an in-process sweep.
            connect_timeout: Seconds allowed for the initial Redis connection.
            backend: Pre-built backend, skipping selection (mainly for tests).
            clock: Time source for the in-process backend.
        """
        self.redis_url = redis_url
        self.namespace = namespace
        self.sweep_threshold = sweep_threshold
        self.connect_timeout = connect_timeout
        self._clock = clock
        self._backend: Optional[CacheBackend] = backend
        self._select_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "CacheStore":
        return cls(
            redis_url=settings.REDIS_URL,
            namespace=settings.CACHE_NAMESPACE,
            sweep_threshold=settings.CACHE_SWEEP_THRESHOLD,
            connect_timeout=settings.REDIS_CONNECT_TIMEOUT_SECONDS,
        )

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def _get_backend(self) -> CacheBackend:
        if self._backend is not None:
            return self._backend
        async with self._select_lock:
            if self._backend is None:
                self._backend = await self._select_backend()
        return self._backend

    async def _select_backend(self) -> CacheBackend:
        memory = MemoryCacheBackend(sweep_threshold=self.sweep_threshold, clock=self._clock)
        if not self.redis_url:
            logger.info("No REDIS_URL configured, using in-memory cache")
            return memory

        client = None
        try:
            client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.connect_timeout,
                socket_timeout=self.connect_timeout,
            )
            await asyncio.wait_for(client.ping(), timeout=self.connect_timeout)
            logger.info("Connected to Redis")
            return RedisCacheBackend(client, namespace=self.namespace)
        except Exception as e:
            logger.warning(f"Failed to connect to Redis, using in-memory cache: {e}")
            if client is not None:
                try:
                    await client.aclose()
                except Exception:
                    logger.debug("Ignoring error while closing failed Redis client", exc_info=True)
            return memory

    @property
    def backend_name(self) -> Optional[str]:
        """Name of the selected backend, or None before first use."""
        return self._backend.name if self._backend is not None else None

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value for ``key`` or None on miss, expiry or error."""
        try:
            backend = await self._get_backend()
            return await backend.get(self._key(key))
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``; errors are logged."""
        try:
            backend = await self._get_backend()
            await backend.set(self._key(key), value, ttl_seconds)
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            backend = await self._get_backend()
            await backend.delete(self._key(key))
        except Exception as e:
            logger.error(f"Cache delete error for {key}: {e}")

    async def invalidate(self, pattern: str) -> int:
        """
        Delete every key starting with ``pattern`` minus one trailing ``*``.

        Matching is on the literal prefix, so ``communities:*`` removes
        ``communities:all`` but leaves ``search:communities:x`` alone.

        Returns:
            int: Number of keys removed (0 on error).
        """
        prefix = pattern[:-1] if pattern.endswith("*") else pattern
        try:
            backend = await self._get_backend()
            removed = await backend.delete_prefix(self._key(prefix))
            logger.debug(f"Invalidated {removed} cache keys with prefix {prefix!r}")
            return removed
        except Exception as e:
            logger.error(f"Cache invalidate error for {pattern}: {e}")
            return 0

    async def stats(self) -> Dict[str, Any]:
        """Backend type, key count and connectivity for health reporting."""
        backend = await self._get_backend()
        try:
            size = await backend.size()
            return {"type": backend.name, "size": size, "connected": True}
        except Exception as e:
            logger.error(f"Cache stats error: {e}")
            return {"type": backend.name, "size": 0, "connected": False}

    async def close(self) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.close()
        except Exception as e:
            logger.error(f"Error closing cache backend: {e}")
