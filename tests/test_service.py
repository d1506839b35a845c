"""Match service tests — caching, query vectors, invalidation, hybrid search.

ChromaDB and the cache are real (temp directory, in-memory store driven by
a fake clock); Ollama is stubbed through ``mock_embedder``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from conftest import EMBED_FAKE
from educator_match.errors import ActionableError, ErrorType
from educator_match.matching.keyword import SearchFilters
from educator_match.models import EntityKind
from educator_match.pipeline.service import match_cache_key
from educator_match.rag.indexer import record_text

if TYPE_CHECKING:
    from collections.abc import Callable

    from educator_match.cache.match_cache import CacheStats, MatchCache
    from educator_match.models import JobPosting, Record, TeacherProfile
    from educator_match.pipeline.service import MatchService
    from educator_match.rag.embedder import Embedder
    from educator_match.rag.store import CorpusStore

OTHER = [0.5, 0.4, 0.3, 0.2, 0.1]


def _index(store: CorpusStore, record: Record, embedding: list[float] = EMBED_FAKE) -> None:
    store.upsert_entry(record, embedding=embedding, document=record_text(record))


@pytest.fixture
def indexed_jobs(
    corpus_store: CorpusStore, make_job: Callable[..., JobPosting]
) -> list[JobPosting]:
    """Two active jobs: one aligned with EMBED_FAKE, one less so."""
    jobs = [
        make_job(id="job-a", title="Geometry Teacher", description="Teach geometry."),
        make_job(id="job-b", title="History Teacher", description="Teach history."),
    ]
    _index(corpus_store, jobs[0], EMBED_FAKE)
    _index(corpus_store, jobs[1], OTHER)
    return jobs


# ---------------------------------------------------------------------------
# TestCacheKey
# ---------------------------------------------------------------------------


class TestCacheKey:
    """REQUIREMENT: Cache keys identify the query entity and its parameters.

    WHO: The service reading and invalidating cached match lists
    WHAT: Keys start with '<kind>:<id>:'; equal parameters give equal keys;
          a different top_n, similarity floor or filter gives a new key
    WHY: Serving a top-5 list to a top-20 request is a wrong answer
    """

    def test_key_names_kind_and_id(self, make_teacher: Callable[..., TeacherProfile]) -> None:
        """A teacher query key is prefixed 'teacher:teacher-1:'."""
        key = match_cache_key(make_teacher(), SearchFilters(), 20, 0.0)
        assert key.startswith("teacher:teacher-1:")

    def test_equal_parameters_share_a_key(
        self, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """Two identical requests hit the same entry."""
        teacher = make_teacher()
        assert match_cache_key(teacher, SearchFilters(), 20, 0.0) == match_cache_key(
            teacher, SearchFilters(), 20, 0.0
        )

    def test_parameters_change_the_key(self, make_teacher: Callable[..., TeacherProfile]) -> None:
        """top_n, floor and filters each produce a distinct key."""
        teacher = make_teacher()
        base = match_cache_key(teacher, SearchFilters(), 20, 0.0)
        variants = {
            match_cache_key(teacher, SearchFilters(), 5, 0.0),
            match_cache_key(teacher, SearchFilters(), 20, 50.0),
            match_cache_key(teacher, SearchFilters(location="Japan"), 20, 0.0),
        }
        assert base not in variants
        assert len(variants) == 3


# ---------------------------------------------------------------------------
# TestRankCandidates
# ---------------------------------------------------------------------------


class TestRankCandidates:
    """REQUIREMENT: rank_candidates ranks the opposite kind and caches the answer.

    WHO: Teachers viewing recommended jobs; recruiters viewing teachers
    WHAT: A miss embeds the query, ranks, and caches; a repeat request is
          served from cache without embedding again; inactive jobs are
          never returned; filters narrow the candidates
    WHY: Embedding is the slow step; repeat views must be cheap
    """

    async def test_teacher_query_ranks_jobs(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """The aligned job ranks above the less similar one."""
        results = await service.rank_candidates(make_teacher(), top_n=10)
        assert [r.candidate_id for r in results] == ["job-a", "job-b"]
        assert all(r.kind is EntityKind.JOB for r in results)

    async def test_repeat_request_is_served_from_cache(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        cache_stats: CacheStats,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """The second call embeds nothing and records a hit."""
        teacher = make_teacher()
        first = await service.rank_candidates(teacher, top_n=10)
        second = await service.rank_candidates(teacher, top_n=10)
        assert first == second
        assert mock_embedder.embed.await_count == 1  # type: ignore[attr-defined]
        assert (cache_stats.hits, cache_stats.misses) == (1, 1)

    async def test_inactive_jobs_are_excluded(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        indexed_jobs: list[JobPosting],
        make_job: Callable[..., JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A closed posting never appears, however similar."""
        _index(corpus_store, make_job(id="job-closed", status="closed"))
        results = await service.rank_candidates(make_teacher(), top_n=10)
        assert "job-closed" not in {r.candidate_id for r in results}

    async def test_filters_narrow_candidates(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        indexed_jobs: list[JobPosting],
        make_job: Callable[..., JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A Japan location filter leaves only the Tokyo posting."""
        _index(corpus_store, make_job(id="job-tokyo", city="Tokyo", country="Japan"))
        results = await service.rank_candidates(
            make_teacher(), filters=SearchFilters(location="japan"), top_n=10
        )
        assert [r.candidate_id for r in results] == ["job-tokyo"]

    async def test_default_top_n_applies(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """Without top_n the service default is used."""
        service.default_top_n = 1
        results = await service.rank_candidates(make_teacher())
        assert [r.candidate_id for r in results] == ["job-a"]

    async def test_job_query_ranks_teachers(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        make_job: Callable[..., JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A recruiter's job query returns teachers."""
        _index(corpus_store, make_teacher(id="t-near"), EMBED_FAKE)
        _index(corpus_store, make_teacher(id="t-far"), OTHER)
        results = await service.rank_candidates(make_job(), top_n=10)
        assert [r.candidate_id for r in results] == ["t-near", "t-far"]


# ---------------------------------------------------------------------------
# TestQueryVector
# ---------------------------------------------------------------------------


class TestQueryVector:
    """REQUIREMENT: The query vector is reused before the provider is called.

    WHO: The service answering requests for already-known entities
    WHAT: An indexed query record uses its stored vector; an unindexed one
          uses a cached embedding from the same model; only otherwise is
          the provider called, and the fresh vector is cached
    WHY: Each provider call costs latency and load
    """

    async def test_stored_vector_is_reused(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """An indexed teacher is ranked without an embedding call."""
        teacher = make_teacher()
        _index(corpus_store, teacher, OTHER)
        results = await service.rank_candidates(teacher, top_n=10)
        mock_embedder.embed.assert_not_awaited()  # type: ignore[attr-defined]
        assert results[0].candidate_id == "job-b"

    async def test_cached_embedding_is_reused(
        self,
        service: MatchService,
        match_cache: MatchCache,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A cached vector from the configured model skips the provider."""
        await match_cache.cache_embedding(
            EntityKind.TEACHER, "teacher-1", OTHER, model="nomic-embed-text"
        )
        await service.rank_candidates(make_teacher(), top_n=10)
        mock_embedder.embed.assert_not_awaited()  # type: ignore[attr-defined]

    async def test_fresh_embedding_is_cached(
        self,
        service: MatchService,
        match_cache: MatchCache,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """After a provider call the vector is in the embedding cache."""
        await service.rank_candidates(make_teacher(), top_n=10)
        cached = await match_cache.get_cached_embedding(EntityKind.TEACHER, "teacher-1")
        assert cached == EMBED_FAKE

    async def test_transcript_is_embedded_for_video(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """An unindexed teacher with a transcript costs two provider calls."""
        await service.rank_candidates(make_teacher(video_transcript="Hi, I teach."), top_n=10)
        assert mock_embedder.embed.await_count == 2  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# TestServiceFailures
# ---------------------------------------------------------------------------


class TestServiceFailures:
    """REQUIREMENT: Failures are distinguishable from "no matches".

    WHO: UI code deciding between "no matches" and "try again later"
    WHAT: A provider failure raises UNAVAILABLE and caches nothing; a
          corpus that was never indexed raises INDEX; an empty corpus
          returns an empty list
    WHY: Telling a teacher "no jobs match you" during an outage is false
    """

    async def test_provider_failure_is_unavailable(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        cache_stats: CacheStats,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """An embedding error becomes 'matching temporarily unavailable'."""
        mock_embedder.embed.side_effect = ActionableError.embedding(  # type: ignore[attr-defined]
            model="nomic-embed-text", raw_error="status 503: overloaded"
        )
        with pytest.raises(ActionableError) as exc_info:
            await service.rank_candidates(make_teacher(), top_n=10)
        assert exc_info.value.error_type == ErrorType.UNAVAILABLE
        assert "503" in exc_info.value.error

    async def test_failure_is_not_cached(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        mock_embedder: Embedder,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """Once the provider recovers, the next request succeeds."""
        mock_embedder.embed.side_effect = ActionableError.embedding(  # type: ignore[attr-defined]
            model="nomic-embed-text", raw_error="timeout"
        )
        with pytest.raises(ActionableError):
            await service.rank_candidates(make_teacher(), top_n=10)
        mock_embedder.embed.side_effect = None  # type: ignore[attr-defined]
        results = await service.rank_candidates(make_teacher(), top_n=10)
        assert len(results) == 2

    async def test_unindexed_corpus_raises_index_error(
        self, service: MatchService, make_teacher: Callable[..., TeacherProfile]
    ) -> None:
        """No jobs collection at all is an INDEX error, not an empty list."""
        with pytest.raises(ActionableError) as exc_info:
            await service.rank_candidates(make_teacher(), top_n=10)
        assert exc_info.value.error_type == ErrorType.INDEX

    async def test_empty_corpus_returns_empty_list(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """An indexed but empty corpus legitimately has no matches."""
        corpus_store.get_or_create_collection("jobs")
        assert await service.rank_candidates(make_teacher(), top_n=10) == []


# ---------------------------------------------------------------------------
# TestInvalidationTriggers
# ---------------------------------------------------------------------------


class TestInvalidationTriggers:
    """REQUIREMENT: Record changes invalidate every list that could include them.

    WHO: Admin tools and background jobs editing jobs and teachers
    WHAT: Updating a job re-embeds it and the next teacher query reflects
          the change; deleting a job removes it from later results;
          updating a teacher drops the teacher's own cached lists and
          stores a video vector when there is a transcript
    WHY: A stale list would keep showing a filled or edited posting
    """

    async def test_job_update_is_visible_to_cached_teacher_query(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_job: Callable[..., JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A retitled job shows its new label on the next request."""
        teacher = make_teacher()
        await service.rank_candidates(teacher, top_n=10)
        await service.on_job_updated(make_job(id="job-b", title="Algebra Teacher"))
        results = await service.rank_candidates(teacher, top_n=10)
        labels = {r.candidate_id: r.label for r in results}
        assert labels["job-b"].startswith("Algebra Teacher")

    async def test_job_delete_removes_it_from_results(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A deleted posting disappears even though the list was cached."""
        teacher = make_teacher()
        await service.rank_candidates(teacher, top_n=10)
        await service.on_job_deleted("job-a")
        results = await service.rank_candidates(teacher, top_n=10)
        assert [r.candidate_id for r in results] == ["job-b"]

    async def test_teacher_update_drops_own_lists(
        self,
        service: MatchService,
        match_cache: MatchCache,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """The teacher's cached job list is gone after an update."""
        teacher = make_teacher()
        await service.rank_candidates(teacher, top_n=10)
        key = match_cache_key(teacher, SearchFilters(), 10, 0.0)
        await service.on_teacher_updated(teacher)
        assert await match_cache.get_cached_matches(key) is None

    async def test_teacher_update_stores_video_vector(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A transcript on update yields a stored video embedding."""
        await service.on_teacher_updated(make_teacher(video_transcript="Hello class."))
        entry = corpus_store.get_entry(EntityKind.TEACHER, "teacher-1")
        assert entry is not None
        assert entry.video_embedding == pytest.approx(EMBED_FAKE)

    async def test_teacher_delete_removes_from_job_queries(
        self,
        service: MatchService,
        corpus_store: CorpusStore,
        make_job: Callable[..., JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """A cached recruiter list loses the deleted teacher."""
        _index(corpus_store, make_teacher(id="t-1"))
        _index(corpus_store, make_teacher(id="t-2"))
        job = make_job()
        await service.rank_candidates(job, top_n=10)
        await service.on_teacher_deleted("t-1")
        results = await service.rank_candidates(job, top_n=10)
        assert [r.candidate_id for r in results] == ["t-2"]

    async def test_invalidate_all_forces_recompute(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        cache_stats: CacheStats,
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """After a global invalidation the next request is a miss."""
        teacher = make_teacher()
        await service.rank_candidates(teacher, top_n=10)
        await service.invalidate_all_match_caches()
        await service.rank_candidates(teacher, top_n=10)
        assert cache_stats.misses == 2


# ---------------------------------------------------------------------------
# TestHybridSearch
# ---------------------------------------------------------------------------


class TestHybridSearch:
    """REQUIREMENT: Hybrid search fuses keyword and vector rankings of jobs.

    WHO: Teachers typing a search while logged in
    WHAT: Without a teacher the keyword list is returned as-is; with a
          teacher both lists are merged by RRF so a job found by both
          comes first and jobs found by either are included
    WHY: Exact terms and semantic fit each miss things the other catches
    """

    async def test_keyword_only_without_teacher(
        self, service: MatchService, indexed_jobs: list[JobPosting]
    ) -> None:
        """'geometry' finds only the geometry posting."""
        results = await service.hybrid_search("geometry")
        assert [r.candidate_id for r in results] == ["job-a"]
        assert results[0].source == "keyword"

    async def test_teacher_fuses_vector_results(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """job-a (keyword and vector) leads; job-b (vector only) follows."""
        results = await service.hybrid_search("geometry", teacher=make_teacher())
        assert [r.candidate_id for r in results] == ["job-a", "job-b"]
        assert {r.source for r in results} == {"hybrid"}
        assert results[0].match is not None

    async def test_limit_truncates_fused_list(
        self,
        service: MatchService,
        indexed_jobs: list[JobPosting],
        make_teacher: Callable[..., TeacherProfile],
    ) -> None:
        """limit=1 keeps only the consensus hit."""
        results = await service.hybrid_search("geometry", teacher=make_teacher(), limit=1)
        assert [r.candidate_id for r in results] == ["job-a"]
