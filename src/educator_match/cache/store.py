"""Key-value cache stores with per-key TTL.

Two interchangeable backends implement the same async interface:

- :class:`InMemoryCacheStore` — process-local dict, for tests, the CLI and
  single-process deployments.  Takes an injectable clock so TTL expiry can
  be tested without sleeping.
- :class:`RedisCacheStore` — shared Redis via ``redis.asyncio``.  Redis
  failures are converted to CONNECTION :class:`ActionableError` so callers
  handle one error type regardless of backend.

Patterns for :meth:`delete_pattern` use Redis glob syntax (``*``, ``?``,
``[...]``).
"""

from __future__ import annotations

import fnmatch
import time
from typing import TYPE_CHECKING, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from educator_match.errors import ActionableError
from educator_match.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable


class CacheStore(Protocol):
    """Minimal async key-value interface the match cache depends on."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class InMemoryCacheStore:
    """Dict-backed store; expired entries are dropped lazily on access."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._data)

    async def get(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ActionableError.validation(
                field_name="ttl_seconds",
                reason=f"is {ttl_seconds} — must be > 0",
            )
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
        for key in doomed:
            del self._data[key]
        return len(doomed)

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._data.items() if now >= expires_at]:
            del self._data[key]


class RedisCacheStore:
    """Redis-backed store shared across processes.

    Usage::

        store = RedisCacheStore("redis://localhost:6379/0")
        await store.set("matches:job:42:ab12", payload, ttl_seconds=3600)
        await store.close()
    """

    def __init__(self, url: str, *, client: aioredis.Redis | None = None) -> None:
        self.url = url
        self._client = client or aioredis.Redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise self._connection_error(exc) from None
        if value is None:
            return None
        return value if isinstance(value, str) else value.decode("utf-8")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as exc:
            raise self._connection_error(exc) from None

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as exc:
            raise self._connection_error(exc) from None

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching *pattern* using SCAN (never KEYS)."""
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
        except (RedisError, OSError) as exc:
            raise self._connection_error(exc) from None
        logger.debug("Deleted %d Redis keys matching '%s'", deleted, pattern)
        return deleted

    async def close(self) -> None:
        await self._client.aclose()

    def _connection_error(self, exc: Exception) -> ActionableError:
        return ActionableError.connection(service="Redis", url=self.url, raw_error=str(exc))
