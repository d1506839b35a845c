"""Global test configuration — shared fixtures.

This conftest provides:

1. **Record factories** — ``make_job`` and ``make_teacher`` produce fully
   populated records with overridable fields, plus ``make_entry`` to pair a
   record with its vectors.

2. **Shared I/O-boundary fixtures** — ``mock_embedder`` (Embedder with
   stubbed Ollama methods), ``corpus_store`` (real ChromaDB backed by
   ``tmp_path``), and ``match_cache`` (real cache over an in-memory store
   driven by a fake clock).  Individual test files may shadow these with
   local fixtures that use different return values.

3. **Matching fixtures** — ``rule_book`` (a small in-memory visa rule book)
   and ``service`` (a MatchService wired from the fixtures above).
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from educator_match.cache.match_cache import CacheStats, MatchCache
from educator_match.cache.store import InMemoryCacheStore
from educator_match.matching.constraints import ConstraintEvaluator
from educator_match.matching.ranker import MatchRanker
from educator_match.matching.visa import Condition, Priority, VisaRule, VisaRuleBook
from educator_match.models import CorpusEntry, JobPosting, TeacherProfile
from educator_match.pipeline.service import MatchService
from educator_match.rag.embedder import Embedder
from educator_match.rag.store import CorpusStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from educator_match.models import Record

PROJECT_ROOT = Path(__file__).resolve().parent.parent
VISA_RULES_PATH = PROJECT_ROOT / "config" / "visa_rules.toml"
SETTINGS_PATH = PROJECT_ROOT / "config" / "settings.toml"

# Canonical fake embedding used across test files.  Individual tests that
# need a different vector can define their own constant.
EMBED_FAKE: list[float] = [0.1, 0.2, 0.3, 0.4, 0.5]

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_job() -> Callable[..., JobPosting]:
    """Factory fixture — returns a callable that produces a JobPosting.

    Usage::

        job = make_job()
        job = make_job(id="job-2", country="China", min_years_experience=3)
    """

    def _factory(**overrides: Any) -> JobPosting:
        fields: dict[str, Any] = {
            "id": "job-1",
            "title": "Middle School Math Teacher",
            "subject": "Mathematics",
            "city": "Seoul",
            "country": "South Korea",
            "school_type": "International",
            "requirements": "Bachelor degree, TEFL certificate",
            "benefits": "Housing, flights",
            "culture_fit": "Collaborative team",
            "description": "Teach algebra and geometry to grades 6-8.",
            "min_years_experience": 2,
            "required_certifications": ["TEFL"],
            "salary_usd": 2500.0,
            "created_at": BASE_TIME,
        }
        fields.update(overrides)
        return JobPosting(**fields)

    return _factory


@pytest.fixture
def make_teacher() -> Callable[..., TeacherProfile]:
    """Factory fixture — returns a callable that produces a TeacherProfile.

    Defaults describe a teacher who passes every South Korea constraint.
    """

    def _factory(**overrides: Any) -> TeacherProfile:
        fields: dict[str, Any] = {
            "id": "teacher-1",
            "first_name": "Sam",
            "last_name": "Rivera",
            "subjects": ["Mathematics"],
            "years_experience": 5,
            "certifications": ["TEFL"],
            "citizenship": "US",
            "preferred_countries": ["South Korea", "Japan"],
            "degree_level": "BA",
            "degree_major": "Mathematics",
            "bio": "Math teacher who loves geometry.",
            "age": 30,
            "criminal_record": "clean",
            "has_apostille": True,
            "created_at": BASE_TIME,
        }
        fields.update(overrides)
        return TeacherProfile(**fields)

    return _factory


@pytest.fixture
def make_entry() -> Callable[..., CorpusEntry]:
    """Factory fixture — pairs a record with its vectors."""

    def _factory(
        record: Record,
        embedding: list[float] | None = None,
        video_embedding: list[float] | None = None,
        document: str = "",
    ) -> CorpusEntry:
        return CorpusEntry(
            record=record,
            embedding=embedding if embedding is not None else list(EMBED_FAKE),
            document=document,
            video_embedding=video_embedding,
        )

    return _factory


# ---------------------------------------------------------------------------
# Matching fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rule_book() -> VisaRuleBook:
    """One-country rule book: South Korea requires US/UK/CA citizenship."""
    return VisaRuleBook(
        [
            VisaRule(
                country="South Korea",
                visa_type="E-2",
                requirements=(
                    Condition(
                        field="citizenship",
                        operator="in",
                        value=["US", "UK", "CA"],
                        message="Must be a native English speaking citizen",
                        priority=Priority.CRITICAL,
                    ),
                ),
                disqualifiers=(
                    Condition(
                        field="has_visa_violation_history",
                        operator="eq",
                        value=True,
                        message="Previous visa violations will result in denial",
                    ),
                ),
            )
        ]
    )


@pytest.fixture
def evaluator(rule_book: VisaRuleBook) -> ConstraintEvaluator:
    return ConstraintEvaluator(rule_book)


@pytest.fixture
def ranker(evaluator: ConstraintEvaluator) -> MatchRanker:
    return MatchRanker(evaluator)


# ---------------------------------------------------------------------------
# Shared I/O-boundary fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedder() -> Embedder:
    """Embedder with stubbed I/O methods — no Ollama connection needed.

    Uses ``Embedder.__new__`` to create a real instance without calling
    ``__init__`` (which would create an ``ollama.AsyncClient``).  All
    async methods are replaced with ``AsyncMock`` stubs that return
    deterministic values.
    """
    embedder = Embedder.__new__(Embedder)
    embedder.base_url = "http://localhost:11434"
    embedder.embed_model = "nomic-embed-text"
    embedder.embed = AsyncMock(return_value=EMBED_FAKE)  # type: ignore[method-assign]
    embedder.embed_job = AsyncMock(return_value=EMBED_FAKE)  # type: ignore[method-assign]
    embedder.embed_teacher = AsyncMock(return_value=EMBED_FAKE)  # type: ignore[method-assign]
    embedder.health_check = AsyncMock()  # type: ignore[method-assign]
    return embedder


@pytest.fixture
def corpus_store(tmp_path: Path) -> CorpusStore:
    """Real ChromaDB CorpusStore backed by a per-test temp directory."""
    return CorpusStore(persist_dir=str(tmp_path / "chroma"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_stats() -> CacheStats:
    return CacheStats()


@pytest.fixture
def match_cache(clock: FakeClock, cache_stats: CacheStats) -> MatchCache:
    """Real MatchCache over an in-memory store with a hand-driven clock."""
    return MatchCache(InMemoryCacheStore(clock=clock), stats=cache_stats)


@pytest.fixture
def service(
    corpus_store: CorpusStore,
    mock_embedder: Embedder,
    match_cache: MatchCache,
    ranker: MatchRanker,
) -> MatchService:
    """MatchService with real ChromaDB and cache, stubbed Ollama."""
    return MatchService(
        store=corpus_store,
        embedder=mock_embedder,
        cache=match_cache,
        ranker=ranker,
    )
