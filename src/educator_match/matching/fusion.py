"""Score fusion — resume, video and constraint signals into one match score.

Each signal is expressed on a 0–100 scale:

- ``resume_match`` — cosine similarity of the teacher's profile embedding
  against the reference (the job posting's embedding), × 100
- ``video_match`` — the same for the teacher's video-introduction embedding
- ``constraint_match`` — share of hard constraints passed, × 100

The overall score is a weighted linear combination rounded half-up to an
integer.  A missing vector contributes 0 for its component instead of
excluding the candidate, so partially complete profiles still rank, lower.
Negative cosine similarities are floored at 0 to keep every component in
[0, 100].
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from educator_match.errors import ActionableError
from educator_match.matching.similarity import cosine_similarity

if TYPE_CHECKING:
    from collections.abc import Sequence

# Tolerance when checking that weights sum to 1.0
_WEIGHT_SUM_TOLERANCE = 1e-6


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 always rounding up.

    Python's built-in :func:`round` uses banker's rounding (``round(12.5)
    == 12``), which makes displayed scores flicker between neighbours.
    """
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class MatchWeights:
    """Relative weight of each signal in the overall score."""

    resume: float = 0.5
    video: float = 0.3
    constraints: float = 0.2

    def __post_init__(self) -> None:
        for name in ("resume", "video", "constraints"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ActionableError.validation(
                    field_name=f"weights.{name}",
                    reason=f"is {value} — must be between 0.0 and 1.0",
                )
        total = self.resume + self.video + self.constraints
        if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
            raise ActionableError.validation(
                field_name="weights",
                reason=f"resume + video + constraints = {total:.4f} — must sum to 1.0",
                suggestion="Adjust [scoring] weights in settings.toml so they sum to 1.0",
            )

    def to_dict(self) -> dict[str, float]:
        return {"resume": self.resume, "video": self.video, "constraints": self.constraints}


DEFAULT_WEIGHTS = MatchWeights()


@dataclass(frozen=True)
class MatchScore:
    """Fused score for one teacher/job pair."""

    overall: int
    resume_match: float
    video_match: float
    constraint_match: float
    weights: MatchWeights = DEFAULT_WEIGHTS

    @property
    def is_valid(self) -> bool:
        """All components and the overall score are in [0, 100]."""
        return 0 <= self.overall <= 100 and all(
            0.0 <= s <= 100.0
            for s in (self.resume_match, self.video_match, self.constraint_match)
        )

    def breakdown(self) -> dict[str, int]:
        """Per-component scores rounded for display."""
        return {
            "resume_match": round_half_up(self.resume_match),
            "video_match": round_half_up(self.video_match),
            "constraint_match": round_half_up(self.constraint_match),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "resume_match": self.resume_match,
            "video_match": self.video_match,
            "constraint_match": self.constraint_match,
            "weights": self.weights.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatchScore:
        weights = data.get("weights") or {}
        return cls(
            overall=int(data["overall"]),
            resume_match=float(data["resume_match"]),
            video_match=float(data["video_match"]),
            constraint_match=float(data["constraint_match"]),
            weights=MatchWeights(**weights) if weights else DEFAULT_WEIGHTS,
        )


def _signal(vector: Sequence[float] | None, reference: Sequence[float] | None) -> float:
    """Similarity × 100 floored at 0, or 0 when either side is absent."""
    if not vector or not reference:
        return 0.0
    return max(0.0, cosine_similarity(vector, reference) * 100.0)


def calculate_match_score(
    resume_vector: Sequence[float] | None,
    video_vector: Sequence[float] | None,
    constraint_match: float,
    *,
    reference_resume_vector: Sequence[float] | None,
    reference_video_vector: Sequence[float] | None = None,
    weights: MatchWeights = DEFAULT_WEIGHTS,
) -> MatchScore:
    """Fuse the three signals into a :class:`MatchScore`.

    ``reference_video_vector`` defaults to ``reference_resume_vector`` — the
    job posting has a single embedding that both teacher signals are
    compared against.

    Raises :class:`~educator_match.errors.DimensionMismatchError` if a vector
    and its reference differ in length, and VALIDATION if
    ``constraint_match`` is outside [0, 100].
    """
    if not 0.0 <= constraint_match <= 100.0:
        raise ActionableError.validation(
            field_name="constraint_match",
            reason=f"is {constraint_match} — must be between 0 and 100",
        )
    if reference_video_vector is None:
        reference_video_vector = reference_resume_vector

    resume_match = _signal(resume_vector, reference_resume_vector)
    video_match = _signal(video_vector, reference_video_vector)

    overall = (
        weights.resume * resume_match
        + weights.video * video_match
        + weights.constraints * constraint_match
    )

    return MatchScore(
        overall=min(100, max(0, round_half_up(overall))),
        resume_match=resume_match,
        video_match=video_match,
        constraint_match=constraint_match,
        weights=weights,
    )
