"""Match service — orchestrates cache → embed → corpus → rank.

The MatchService is the top-level orchestrator behind every caller (CLI,
web handlers, background jobs):

1. Build a cache key from the query id and its parameters
2. Return cached results on a hit
3. On a miss, obtain the query vector: the stored corpus vector if the
   record is indexed, else a cached embedding, else a fresh provider call
4. Load the opposite-kind corpus, apply search filters, rank and cache

It also owns the invalidation triggers (record updated / deleted) and the
hybrid keyword + vector search.  Domain logic stays in the matching package;
the service only wires components together.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING

from educator_match.cache.match_cache import MatchCache
from educator_match.cache.store import InMemoryCacheStore, RedisCacheStore
from educator_match.errors import ActionableError, EmbeddingProviderError, ErrorType
from educator_match.matching.constraints import ConstraintEvaluator
from educator_match.matching.keyword import NO_FILTERS, KeywordRanker, SearchFilters
from educator_match.matching.ranker import MatchRanker
from educator_match.matching.rrf import DEFAULT_RRF_K, reciprocal_rank_fusion
from educator_match.matching.visa import load_visa_rules
from educator_match.models import CorpusEntry, EntityKind, JobPosting, TeacherProfile
from educator_match.rag.embedder import Embedder
from educator_match.rag.indexer import record_text
from educator_match.rag.store import CorpusStore

if TYPE_CHECKING:
    from educator_match.config import Settings
    from educator_match.matching.ranker import RankedResult
    from educator_match.models import Record

logger = logging.getLogger(__name__)

_OPPOSITE = {EntityKind.JOB: EntityKind.TEACHER, EntityKind.TEACHER: EntityKind.JOB}


def match_cache_key(
    query: Record,
    filters: SearchFilters,
    top_n: int,
    min_similarity: float,
) -> str:
    """``<kind>:<id>:<digest>`` — distinct parameters never share an entry."""
    params = json.dumps(
        {"filters": filters.cache_token(), "top_n": top_n, "min_similarity": min_similarity},
        sort_keys=True,
    )
    digest = hashlib.sha256(params.encode("utf-8")).hexdigest()[:16]
    return f"{query.kind.value}:{query.id}:{digest}"


class MatchService:
    """Cached ranking, hybrid search and invalidation over one corpus.

    Usage::

        service = MatchService.from_settings(load_settings())
        results = await service.rank_candidates(teacher, top_n=10)
        await service.on_job_updated(job)
        await service.close()
    """

    def __init__(
        self,
        *,
        store: CorpusStore,
        embedder: Embedder,
        cache: MatchCache,
        ranker: MatchRanker,
        keyword_ranker: KeywordRanker | None = None,
        default_top_n: int = 20,
        min_similarity: float = 0.0,
        rrf_k: int = DEFAULT_RRF_K,
        hybrid_search_limit: int = 50,
        embed_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.cache = cache
        self.ranker = ranker
        self.keyword_ranker = keyword_ranker or KeywordRanker()
        self.default_top_n = default_top_n
        self.min_similarity = min_similarity
        self.rrf_k = rrf_k
        self.hybrid_search_limit = hybrid_search_limit
        self.embed_timeout = embed_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> MatchService:
        """Wire every component from validated settings."""
        rule_book = load_visa_rules(settings.visa_rules_path)
        if settings.cache.backend == "redis":
            cache_store: InMemoryCacheStore | RedisCacheStore = RedisCacheStore(
                settings.cache.redis_url
            )
        else:
            cache_store = InMemoryCacheStore()
        return cls(
            store=CorpusStore(persist_dir=settings.chroma.persist_dir),
            embedder=Embedder(
                base_url=settings.ollama.base_url,
                embed_model=settings.ollama.embed_model,
            ),
            cache=MatchCache(
                cache_store,
                ttl_seconds=settings.cache.match_ttl_seconds,
                prefix=settings.cache.key_prefix,
            ),
            ranker=MatchRanker(
                ConstraintEvaluator(rule_book),
                weights=settings.scoring.to_weights(),
            ),
            default_top_n=settings.matching.default_top_n,
            min_similarity=settings.matching.min_similarity,
            rrf_k=settings.matching.rrf_k,
            hybrid_search_limit=settings.matching.hybrid_search_limit,
            embed_timeout=settings.ollama.timeout_seconds,
        )

    async def close(self) -> None:
        if isinstance(self.cache.store, RedisCacheStore):
            await self.cache.store.close()

    # -- Ranking -------------------------------------------------------------

    async def rank_candidates(
        self,
        query: Record,
        *,
        filters: SearchFilters = NO_FILTERS,
        top_n: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RankedResult]:
        """Return the top matches for *query*, serving from cache when possible.

        A teacher query ranks active jobs; a job query ranks teachers.

        Raises:
            ActionableError: UNAVAILABLE if the embedding provider fails —
                callers should say "matching temporarily unavailable" rather
                than "no matches".
        """
        top_n = self.default_top_n if top_n is None else top_n
        min_similarity = self.min_similarity if min_similarity is None else min_similarity

        key = match_cache_key(query, filters, top_n, min_similarity)
        cached = await self.cache.get_cached_matches(key)
        if cached is not None:
            return cached

        query_entry = await self._query_entry(query)
        candidates = self._candidates(_OPPOSITE[query.kind], filters)
        results = self.ranker.rank_candidates(query_entry, candidates, top_n, min_similarity)

        await self.cache.cache_matches(key, results)
        return results

    async def hybrid_search(
        self,
        query_text: str,
        *,
        teacher: TeacherProfile | None = None,
        filters: SearchFilters = NO_FILTERS,
        limit: int | None = None,
    ) -> list[RankedResult]:
        """Search jobs by keywords, fused with *teacher*'s vector matches.

        Without a teacher only the keyword ranking is available and is
        returned unchanged.  With one, both lists are merged by reciprocal
        rank fusion so a job strong on either signal surfaces, and one strong
        on both rises to the top.
        """
        limit = self.hybrid_search_limit if limit is None else limit
        jobs = self._candidates(EntityKind.JOB, filters)
        keyword_results = self.keyword_ranker.rank(query_text, jobs, filters=filters, limit=limit)

        if teacher is None:
            return keyword_results

        vector_results = await self.rank_candidates(teacher, filters=filters, top_n=limit)
        fused = reciprocal_rank_fusion([keyword_results, vector_results], k=self.rrf_k)[:limit]
        logger.info(
            "Hybrid search '%s': %d keyword + %d vector → %d fused",
            query_text,
            len(keyword_results),
            len(vector_results),
            len(fused),
        )
        return fused

    # -- Invalidation triggers -----------------------------------------------

    async def on_job_updated(self, job: JobPosting) -> None:
        """Re-embed *job* and drop every cached list it could appear in."""
        embedding = await self.embedder.embed_job(job, timeout=self.embed_timeout)
        self.store.upsert_entry(job, embedding=embedding, document=record_text(job))
        await self._invalidate_entity(EntityKind.JOB, job.id)

    async def on_job_deleted(self, job_id: str) -> None:
        self.store.delete_entry(EntityKind.JOB, job_id)
        await self._invalidate_entity(EntityKind.JOB, job_id)

    async def on_teacher_updated(self, teacher: TeacherProfile) -> None:
        """Re-embed *teacher* (profile and video) and invalidate."""
        embedding = await self.embedder.embed_teacher(teacher, timeout=self.embed_timeout)
        video_embedding = None
        if teacher.video_transcript:
            video_embedding = await self.embedder.embed(
                teacher.video_transcript, timeout=self.embed_timeout
            )
        self.store.upsert_entry(
            teacher,
            embedding=embedding,
            document=record_text(teacher),
            video_embedding=video_embedding,
        )
        await self._invalidate_entity(EntityKind.TEACHER, teacher.id)

    async def on_teacher_deleted(self, teacher_id: str) -> None:
        self.store.delete_entry(EntityKind.TEACHER, teacher_id)
        await self._invalidate_entity(EntityKind.TEACHER, teacher_id)

    async def invalidate_match_cache(self, entity_id: str) -> None:
        await self.cache.invalidate_match_cache(entity_id)

    async def invalidate_all_match_caches(self) -> None:
        await self.cache.invalidate_all_match_caches()

    # -- Internal helpers ----------------------------------------------------

    async def _invalidate_entity(self, kind: EntityKind, entity_id: str) -> None:
        # The entity's own lists, plus every opposite-kind list that may rank it
        await self.cache.invalidate_embedding(kind, entity_id)
        await self.cache.invalidate_match_cache(entity_id, kind=kind)
        await self.cache.invalidate_kind(_OPPOSITE[kind])
        logger.info("Invalidated match caches for %s '%s'", kind.value, entity_id)

    def _candidates(self, kind: EntityKind, filters: SearchFilters) -> list[CorpusEntry]:
        corpus = self.store.load_corpus(kind)
        return [
            entry
            for entry in corpus
            if filters.accepts(entry)
            and not (isinstance(entry.record, JobPosting) and entry.record.status != "active")
        ]

    async def _query_entry(self, query: Record) -> CorpusEntry:
        """The query record with its vectors, embedding only when necessary."""
        stored = self._stored_entry(query)
        if stored is not None:
            return CorpusEntry(
                record=query,
                embedding=stored.embedding,
                document=stored.document,
                video_embedding=stored.video_embedding,
            )

        model = self.embedder.embed_model
        try:
            embedding = await self.cache.get_cached_embedding(query.kind, query.id, model=model)
            if embedding is None:
                embedding = await self.embedder.embed(
                    record_text(query), timeout=self.embed_timeout
                )
                await self.cache.cache_embedding(query.kind, query.id, embedding, model=model)

            video_embedding = None
            if isinstance(query, TeacherProfile) and query.video_transcript:
                video_embedding = await self.embedder.embed(
                    query.video_transcript, timeout=self.embed_timeout
                )
        except EmbeddingProviderError as exc:
            logger.error(
                "Embedding provider failed for %s '%s': %s", query.kind.value, query.id, exc.error
            )
            raise ActionableError.matching_unavailable(reason=exc.error) from None

        return CorpusEntry(
            record=query,
            embedding=embedding,
            document=record_text(query),
            video_embedding=video_embedding,
        )

    def _stored_entry(self, query: Record) -> CorpusEntry | None:
        try:
            return self.store.get_entry(query.kind, query.id)
        except ActionableError as exc:
            if exc.error_type is not ErrorType.INDEX:
                raise
            return None
