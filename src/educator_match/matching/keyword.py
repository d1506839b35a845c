"""Keyword ranking for hybrid search.

Scores corpus entries by how often the query's terms occur in their stored
document text, with hits in the label (job title / teacher name) counted
double.  This is the keyword half of hybrid search; its list is merged with
the vector ranking through :func:`~educator_match.matching.rrf.reciprocal_rank_fusion`.

:class:`SearchFilters` narrows the corpus before scoring, mirroring the
board's search form: location, salary range and certifications.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

from educator_match.matching.ranker import RankedResult, entry_label, sort_key
from educator_match.models import JobPosting, TeacherProfile
from educator_match.text import tokenize

if TYPE_CHECKING:
    from collections.abc import Iterable

    from educator_match.models import CorpusEntry

logger = logging.getLogger(__name__)

_LABEL_BOOST = 2


@dataclass(frozen=True)
class SearchFilters:
    """Pre-scoring filters; ``None`` / empty means "don't filter"."""

    location: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    certifications: tuple[str, ...] = field(default_factory=tuple)

    def cache_token(self) -> str:
        """Stable string form used in cache keys."""
        data = asdict(self)
        data["certifications"] = sorted(c.upper() for c in self.certifications)
        return json.dumps(data, sort_keys=True)

    def accepts(self, entry: CorpusEntry) -> bool:
        record = entry.record
        if isinstance(record, JobPosting):
            return self._accepts_job(record)
        return self._accepts_teacher(record)

    def _accepts_job(self, job: JobPosting) -> bool:
        if self.location and self.location.lower() not in job.location.lower():
            return False
        if self.salary_min is not None and (job.salary_usd is None or job.salary_usd < self.salary_min):
            return False
        if self.salary_max is not None and (job.salary_usd is None or job.salary_usd > self.salary_max):
            return False
        if self.certifications:
            # The searcher's certifications must cover everything the job asks for
            held = {c.upper() for c in self.certifications}
            if not {c.upper() for c in job.required_certifications} <= held:
                return False
        return True

    def _accepts_teacher(self, teacher: TeacherProfile) -> bool:
        if self.location:
            wanted = self.location.lower()
            if not any(wanted in c.lower() for c in teacher.preferred_countries):
                return False
        if self.salary_max is not None and teacher.min_salary_usd is not None:
            if teacher.min_salary_usd > self.salary_max:
                return False
        if self.certifications:
            held = {c.upper() for c in teacher.certifications}
            if not {c.upper() for c in self.certifications} <= held:
                return False
        return True


NO_FILTERS = SearchFilters()


class KeywordRanker:
    """Term-overlap ranking over corpus document text."""

    def rank(
        self,
        query_text: str,
        corpus: Iterable[CorpusEntry],
        *,
        filters: SearchFilters = NO_FILTERS,
        limit: int = 50,
    ) -> list[RankedResult]:
        """Return up to *limit* entries with a non-zero keyword score.

        An empty query matches nothing — keyword search has no opinion to
        contribute, and the vector list stands alone in the fusion.
        """
        terms = set(tokenize(query_text))
        if not terms:
            return []

        scored: list[RankedResult] = []
        for entry in corpus:
            if not filters.accepts(entry):
                continue
            label = entry_label(entry)
            body_counts = Counter(tokenize(entry.document))
            label_counts = Counter(tokenize(label))
            score = sum(body_counts[t] + _LABEL_BOOST * label_counts[t] for t in terms)
            if score == 0:
                continue
            scored.append(
                RankedResult(
                    candidate_id=entry.id,
                    kind=entry.kind,
                    score=float(score),
                    rank=0,
                    created_at=entry.created_at,
                    label=label,
                    source="keyword",
                )
            )

        scored.sort(key=lambda r: sort_key(r.score, r.created_at, r.candidate_id))
        ranked = scored[:limit]
        for position, result in enumerate(ranked):
            result.rank = position
        logger.debug("Keyword search '%s' matched %d entries", query_text, len(scored))
        return ranked
