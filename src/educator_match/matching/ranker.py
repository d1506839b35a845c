"""Score fusion per candidate, similarity floor, and final ranking.

The MatchRanker is the bridge between a query record and the ranked
shortlist a recruiter (or teacher) sees.  For every candidate in the corpus
it performs, in order:

1. **Constraint evaluation** — certification / experience / visa checks for
   the (teacher, job) pair.

2. **Score fusion** — resume and video similarity plus constraint pass-rate
   fused into a :class:`~educator_match.matching.fusion.MatchScore`.

3. **Similarity floor** — candidates whose resume similarity component is
   below ``min_similarity`` are dropped.  The floor applies to semantic
   relevance, not the fused score, so hard constraints can never lift an
   irrelevant candidate over it.

4. **Sort and truncate** — descending by overall score; ties go to the
   newer candidate, then to the smaller id, so the same corpus snapshot
   always yields the same order.

Ranking is pure computation — no I/O.  Caching and corpus loading live in
:mod:`educator_match.pipeline.service`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from educator_match.errors import ActionableError
from educator_match.matching.fusion import DEFAULT_WEIGHTS, MatchScore, calculate_match_score
from educator_match.models import EntityKind, JobPosting, TeacherProfile

if TYPE_CHECKING:
    from collections.abc import Iterable

    from educator_match.matching.constraints import ConstraintEvaluator
    from educator_match.matching.fusion import MatchWeights
    from educator_match.models import CorpusEntry

logger = logging.getLogger(__name__)


@dataclass
class RankedResult:
    """One candidate's position within a single ranking pass.

    ``score`` is whatever the producing ranker sorted on: the fused overall
    score for vector ranking, a term-overlap score for keyword ranking, or
    the summed reciprocal-rank contribution after fusion.
    """

    candidate_id: str
    kind: EntityKind
    score: float
    rank: int
    created_at: datetime
    label: str = ""
    source: str = "vector"
    match: MatchScore | None = None
    constraints: dict[str, bool] = field(default_factory=dict)

    @property
    def similarity(self) -> float:
        """Resume similarity component (0–100); 0 when not vector-scored."""
        return self.match.resume_match if self.match is not None else 0.0

    def score_explanation(self) -> str:
        """Human-readable score breakdown for CLI output."""
        if self.match is None:
            return f"{self.source.capitalize()} score: {self.score:.4f}"
        parts = [
            f"Overall: {self.match.overall}",
            f"Resume: {self.match.resume_match:.1f}",
            f"Video: {self.match.video_match:.1f}",
            f"Constraints: {self.match.constraint_match:.2f}",
        ]
        failed = [name for name, ok in self.constraints.items() if not ok]
        if failed:
            parts.append(f"Failed: {', '.join(failed)}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "kind": self.kind.value,
            "score": self.score,
            "rank": self.rank,
            "created_at": self.created_at.isoformat(),
            "label": self.label,
            "source": self.source,
            "match": self.match.to_dict() if self.match is not None else None,
            "constraints": dict(self.constraints),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RankedResult:
        match = data.get("match")
        return cls(
            candidate_id=str(data["candidate_id"]),
            kind=EntityKind(data["kind"]),
            score=float(data["score"]),
            rank=int(data["rank"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            label=str(data.get("label", "")),
            source=str(data.get("source", "vector")),
            match=MatchScore.from_dict(match) if match else None,
            constraints={str(k): bool(v) for k, v in (data.get("constraints") or {}).items()},
        )


def entry_label(entry: CorpusEntry) -> str:
    """Short display label: job title or teacher name."""
    record = entry.record
    if isinstance(record, JobPosting):
        return f"{record.title} ({record.city}, {record.country})"
    return record.full_name or record.id


def sort_key(score: float, created_at: datetime, candidate_id: str) -> tuple[float, float, str]:
    """Descending score, then newest first, then id ascending."""
    return (-score, -created_at.timestamp(), candidate_id)


class MatchRanker:
    """Scores a query against a corpus and produces the ranked shortlist."""

    def __init__(
        self,
        evaluator: ConstraintEvaluator,
        weights: MatchWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self.evaluator = evaluator
        self.weights = weights

    def rank_candidates(
        self,
        query: CorpusEntry,
        corpus: Iterable[CorpusEntry],
        top_n: int,
        min_similarity: float = 0.0,
    ) -> list[RankedResult]:
        """Rank every opposite-kind entry of *corpus* against *query*.

        A teacher query ranks jobs; a job query ranks teachers.  Corpus
        entries of the same kind as the query are skipped.

        Args:
            query: The entry being matched, with its embedding.
            corpus: Pre-embedded candidates.
            top_n: Maximum number of results.
            min_similarity: Floor on the resume similarity component (0–100).

        Returns:
            At most *top_n* results sorted best-first with 0-based ranks.
        """
        if top_n < 1:
            raise ActionableError.validation(
                field_name="top_n",
                reason=f"is {top_n} — must be >= 1",
            )
        if not 0.0 <= min_similarity <= 100.0:
            raise ActionableError.validation(
                field_name="min_similarity",
                reason=f"is {min_similarity} — must be between 0 and 100",
            )

        scored: list[RankedResult] = []
        considered = 0
        below_floor = 0

        for candidate in corpus:
            if candidate.kind == query.kind:
                continue
            considered += 1
            result = self.score_pair(query, candidate)
            if result.similarity < min_similarity:
                below_floor += 1
                continue
            scored.append(result)

        scored.sort(key=lambda r: sort_key(r.score, r.created_at, r.candidate_id))
        ranked = scored[:top_n]
        for position, result in enumerate(ranked):
            result.rank = position

        logger.info(
            "Ranked %d of %d candidates for %s '%s' (%d below similarity floor %.1f)",
            len(ranked),
            considered,
            query.kind.value,
            query.id,
            below_floor,
            min_similarity,
        )
        return ranked

    def score_pair(self, query: CorpusEntry, candidate: CorpusEntry) -> RankedResult:
        """Fuse the signals for one (query, candidate) pair."""
        teacher_entry, job_entry = (
            (query, candidate) if query.kind is EntityKind.TEACHER else (candidate, query)
        )
        teacher = teacher_entry.record
        job = job_entry.record
        if not isinstance(teacher, TeacherProfile) or not isinstance(job, JobPosting):
            raise ActionableError.validation(
                field_name="candidate",
                reason=f"cannot match {query.kind.value} '{query.id}' "
                f"against {candidate.kind.value} '{candidate.id}'",
            )

        constraints = self.evaluator.evaluate(teacher, job)
        match = calculate_match_score(
            teacher_entry.embedding,
            teacher_entry.video_embedding,
            constraints.constraint_match,
            reference_resume_vector=job_entry.embedding,
            weights=self.weights,
        )
        return RankedResult(
            candidate_id=candidate.id,
            kind=candidate.kind,
            score=float(match.overall),
            rank=0,
            created_at=candidate.created_at,
            label=entry_label(candidate),
            source="vector",
            match=match,
            constraints=dict(constraints.checks),
        )
