"""Cache layer — TTL key-value stores and the match-result cache."""

from educator_match.cache.match_cache import CacheEntryKind, CacheStats, MatchCache
from educator_match.cache.store import CacheStore, InMemoryCacheStore, RedisCacheStore

__all__ = [
    "CacheEntryKind",
    "CacheStats",
    "CacheStore",
    "InMemoryCacheStore",
    "MatchCache",
    "RedisCacheStore",
]
