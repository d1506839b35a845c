"""Reciprocal Rank Fusion — merge independently ranked lists.

Keyword scores (term counts) and vector scores (0–100 fused matches) live
on scales that cannot be compared.  RRF sidesteps normalisation by scoring
each item on its *position* alone::

    rrf(item) = Σ over lists  1 / (k + rank + 1)      (rank is 0-based)

``k`` damps the influence of position: a larger ``k`` flattens the gap
between rank 0 and rank 10, a smaller one sharpens it.  60 is the value from
the original RRF paper and the usual default.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from educator_match.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from educator_match.matching.ranker import RankedResult

DEFAULT_RRF_K = 60


def reciprocal_rank_fusion(
    lists: Sequence[Sequence[RankedResult]],
    k: int = DEFAULT_RRF_K,
) -> list[RankedResult]:
    """Fuse *lists* into one consensus ranking.

    Items are identified by ``candidate_id``.  The first occurrence supplies
    the returned metadata (a vector-scored :class:`MatchScore` is picked up
    from a later list if the first had none).  Equal fused scores keep
    first-appearance order.

    Returns new :class:`RankedResult` objects whose ``score`` is the fused
    RRF score, ``rank`` the merged 0-based position and ``source`` "hybrid"
    when more than one list was merged.
    """
    if k < 0:
        raise ActionableError.validation(
            field_name="k",
            reason=f"is {k} — must be >= 0",
        )

    fused: dict[str, float] = {}
    representative: dict[str, RankedResult] = {}

    for ranked_list in lists:
        for rank, result in enumerate(ranked_list):
            key = result.candidate_id
            contribution = 1.0 / (k + rank + 1)
            if key in fused:
                fused[key] += contribution
                existing = representative[key]
                if existing.match is None and result.match is not None:
                    representative[key] = replace(
                        existing, match=result.match, constraints=dict(result.constraints)
                    )
            else:
                fused[key] = contribution
                representative[key] = result

    # dicts preserve insertion order and sorted() is stable → ties keep first appearance
    ordered = sorted(fused, key=lambda key: fused[key], reverse=True)
    source = "hybrid" if len(lists) > 1 else None

    return [
        replace(
            representative[key],
            score=fused[key],
            rank=position,
            source=source or representative[key].source,
        )
        for position, key in enumerate(ordered)
    ]
