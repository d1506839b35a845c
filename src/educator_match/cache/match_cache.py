"""Match-result and embedding cache.

Wraps a :class:`~educator_match.cache.store.CacheStore` with:

- **Typed entries** — every cached value is a JSON object tagged with its
  :class:`CacheEntryKind` and a schema version.  A value with the wrong tag
  or an older version is treated as a miss, so a deploy that changes the
  result shape never deserialises stale payloads.
- **Non-fatal failures** — a store that is down or returns garbage is logged
  and treated as a miss (reads) or skipped (writes).  The cache only saves
  work; it never decides results.
- **Injected statistics** — hits and misses go to the :class:`CacheStats`
  passed in, so independent caches (and tests) never share counters.

Keys are ``<prefix>:<key>``; the service layer builds ``<key>`` as
``<kind>:<entity id>:<parameter digest>`` so one entity's entries can be
dropped with a single pattern delete.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from educator_match.errors import ActionableError
from educator_match.logging import logger
from educator_match.matching.ranker import RankedResult
from educator_match.models import EntityKind

if TYPE_CHECKING:
    from educator_match.cache.store import CacheStore

# Bump when the serialised shape of an entry changes
CACHE_SCHEMA_VERSION = 1

_GLOB_SPECIAL = re.compile(r"([*?\[])")

DEFAULT_MATCH_TTL = 3600  # 1 hour
EMBEDDING_TTL = {
    EntityKind.JOB: 86_400,  # 24 hours
    EntityKind.TEACHER: 604_800,  # 7 days
}
_EMBEDDING_PREFIX = {
    EntityKind.JOB: "job-embed",
    EntityKind.TEACHER: "teacher-embed",
}


def escape_glob(text: str) -> str:
    """Bracket glob metacharacters so *text* only matches itself in a pattern."""
    return _GLOB_SPECIAL.sub(r"[\1]", text)


class CacheEntryKind(StrEnum):
    MATCHES = "matches"
    EMBEDDING = "embedding"


@dataclass
class CacheStats:
    """Hit/miss counters for one cache instance."""

    hits: int = 0
    misses: int = 0
    errors: int = 0

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def record_error(self) -> None:
        self.errors += 1

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of lookups, to two decimals."""
        total = self.hits + self.misses
        return round(self.hits / total * 100.0, 2) if total else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.errors = 0

    def to_dict(self) -> dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": self.hit_rate,
        }


# ---------------------------------------------------------------------------
# Entry schemas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchesEntry:
    """A ranked result list for one query key."""

    query_key: str
    results: list[RankedResult]
    cached_at: datetime

    kind = CacheEntryKind.MATCHES

    def encode(self) -> str:
        return json.dumps(
            {
                "kind": self.kind.value,
                "version": CACHE_SCHEMA_VERSION,
                "query_key": self.query_key,
                "cached_at": self.cached_at.isoformat(),
                "results": [r.to_dict() for r in self.results],
            }
        )

    @classmethod
    def decode(cls, payload: dict[str, Any]) -> MatchesEntry:
        return cls(
            query_key=str(payload["query_key"]),
            results=[RankedResult.from_dict(r) for r in payload["results"]],
            cached_at=datetime.fromisoformat(payload["cached_at"]),
        )


@dataclass(frozen=True)
class EmbeddingEntry:
    """A stored embedding vector for one entity."""

    entity_kind: EntityKind
    entity_id: str
    vector: list[float]
    model: str

    kind = CacheEntryKind.EMBEDDING

    def encode(self) -> str:
        return json.dumps(
            {
                "kind": self.kind.value,
                "version": CACHE_SCHEMA_VERSION,
                "entity_kind": self.entity_kind.value,
                "entity_id": self.entity_id,
                "model": self.model,
                "vector": self.vector,
            }
        )

    @classmethod
    def decode(cls, payload: dict[str, Any]) -> EmbeddingEntry:
        return cls(
            entity_kind=EntityKind(payload["entity_kind"]),
            entity_id=str(payload["entity_id"]),
            vector=[float(v) for v in payload["vector"]],
            model=str(payload["model"]),
        )


def _unwrap(raw: str, expected: CacheEntryKind) -> dict[str, Any] | None:
    """Parse *raw* and check its tag and version; ``None`` if unusable."""
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        return None
    if payload.get("kind") != expected.value or payload.get("version") != CACHE_SCHEMA_VERSION:
        return None
    return payload


# ---------------------------------------------------------------------------
# Cache facade
# ---------------------------------------------------------------------------


class MatchCache:
    """Caches ranked match lists and embeddings on top of a store."""

    def __init__(
        self,
        store: CacheStore,
        *,
        stats: CacheStats | None = None,
        ttl_seconds: int = DEFAULT_MATCH_TTL,
        prefix: str = CacheEntryKind.MATCHES.value,
    ) -> None:
        self.store = store
        self.stats = stats if stats is not None else CacheStats()
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    # -- match results -------------------------------------------------------

    async def get_cached_matches(self, key: str) -> list[RankedResult] | None:
        """Return the cached list for *key*, or ``None`` on miss/error."""
        full_key = self._key(key)
        try:
            raw = await self.store.get(full_key)
        except ActionableError as exc:
            self.stats.record_error()
            self.stats.record_miss()
            logger.warning("Cache read failed for %s (treating as miss): %s", full_key, exc.error)
            return None

        entry: MatchesEntry | None = None
        if raw is not None:
            try:
                payload = _unwrap(raw, CacheEntryKind.MATCHES)
                entry = MatchesEntry.decode(payload) if payload is not None else None
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                self.stats.record_error()
                logger.warning("Discarding unreadable cache entry %s: %s", full_key, exc)

        if entry is None:
            self.stats.record_miss()
            logger.debug("Cache miss: %s", full_key)
            return None

        self.stats.record_hit()
        logger.debug("Cache hit: %s (%d results)", full_key, len(entry.results))
        return entry.results

    async def cache_matches(self, key: str, results: list[RankedResult]) -> None:
        """Store *results* under *key* with the configured TTL.

        Concurrent writers for the same key simply overwrite each other —
        the value is a pure function of the query and the corpus snapshot.
        """
        full_key = self._key(key)
        entry = MatchesEntry(
            query_key=key,
            results=list(results),
            cached_at=datetime.now(timezone.utc),
        )
        try:
            await self.store.set(full_key, entry.encode(), self.ttl_seconds)
        except ActionableError as exc:
            self.stats.record_error()
            logger.warning("Cache write failed for %s (continuing): %s", full_key, exc.error)
            return
        logger.debug("Cache set: %s (TTL %ds)", full_key, self.ttl_seconds)

    # -- invalidation --------------------------------------------------------

    async def invalidate_match_cache(
        self, entity_id: str, *, kind: EntityKind | None = None
    ) -> None:
        """Drop every cached list whose key belongs to *entity_id*.

        With *kind*, only that kind's keys (``<prefix>:<kind>:<id>:*``) go, so
        a same-id entity of the other kind keeps its lists.  Without
        it, plain keys (``<prefix>:<id>``), parameterised keys
        (``<prefix>:<id>:*``) and kind-qualified keys of either kind go.
        """
        literal = escape_glob(entity_id)
        if kind is not None:
            await self._delete_pattern(self._key(f"{kind.value}:{literal}:*"))
            return
        await self._delete(self._key(entity_id))
        await self._delete_pattern(self._key(f"{literal}:*"))
        await self._delete_pattern(self._key(f"*:{literal}:*"))

    async def invalidate_kind(self, kind: EntityKind) -> None:
        """Drop every cached list produced by queries of *kind*."""
        await self._delete_pattern(self._key(f"{kind.value}:*"))

    async def invalidate_all_match_caches(self) -> None:
        """Drop every cached match list (algorithm, weight or bulk-index change)."""
        await self._delete_pattern(self._key("*"))

    # -- embeddings ----------------------------------------------------------

    async def get_cached_embedding(
        self,
        kind: EntityKind,
        entity_id: str,
        *,
        model: str | None = None,
    ) -> list[float] | None:
        """Return the cached vector, or ``None``.

        With *model* given, a vector produced by a different model is a miss.
        """
        key = f"{_EMBEDDING_PREFIX[kind]}:{entity_id}"
        try:
            raw = await self.store.get(key)
            payload = _unwrap(raw, CacheEntryKind.EMBEDDING) if raw is not None else None
            if payload is None:
                return None
            entry = EmbeddingEntry.decode(payload)
            if model is not None and entry.model != model:
                return None
            return entry.vector
        except ActionableError as exc:
            self.stats.record_error()
            logger.warning("Embedding cache read failed for %s: %s", key, exc.error)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            self.stats.record_error()
            logger.warning("Discarding unreadable embedding entry %s: %s", key, exc)
        return None

    async def cache_embedding(
        self,
        kind: EntityKind,
        entity_id: str,
        vector: list[float],
        *,
        model: str,
    ) -> None:
        key = f"{_EMBEDDING_PREFIX[kind]}:{entity_id}"
        entry = EmbeddingEntry(entity_kind=kind, entity_id=entity_id, vector=vector, model=model)
        try:
            await self.store.set(key, entry.encode(), EMBEDDING_TTL[kind])
        except ActionableError as exc:
            self.stats.record_error()
            logger.warning("Embedding cache write failed for %s: %s", key, exc.error)

    async def invalidate_embedding(self, kind: EntityKind, entity_id: str) -> None:
        await self._delete(f"{_EMBEDDING_PREFIX[kind]}:{entity_id}")

    # -- internals -----------------------------------------------------------

    async def _delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except ActionableError as exc:
            self.stats.record_error()
            logger.warning("Cache delete failed for %s: %s", key, exc.error)
            return
        logger.debug("Cache delete: %s", key)

    async def _delete_pattern(self, pattern: str) -> None:
        try:
            count = await self.store.delete_pattern(pattern)
        except ActionableError as exc:
            self.stats.record_error()
            logger.warning("Cache pattern delete failed for %s: %s", pattern, exc.error)
            return
        logger.debug("Cache delete pattern: %s (%d keys)", pattern, count)
