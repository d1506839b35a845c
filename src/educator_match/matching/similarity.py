"""Cosine similarity between embedding vectors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from educator_match.errors import ActionableError

if TYPE_CHECKING:
    from collections.abc import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Compute cosine similarity between two vectors.

    Returns a value in [-1.0, 1.0].  A zero-norm vector on either side
    yields 0.0 rather than NaN.

    Raises :class:`~educator_match.errors.DimensionMismatchError` when the
    vectors differ in length — that means two embedding models were mixed,
    and silently scoring them would produce meaningless rankings.
    """
    if len(a) != len(b):
        raise ActionableError.dimension_mismatch(len(a), len(b))

    dot: float = sum(x * y for x, y in zip(a, b, strict=True))
    mag_a: float = sum(x * x for x in a) ** 0.5
    mag_b: float = sum(x * x for x in b) ** 0.5

    if mag_a == 0.0 or mag_b == 0.0:
        return 0.0

    result: float = dot / (mag_a * mag_b)
    # Float drift can push |v·v| / |v|² a hair past 1.0
    return max(-1.0, min(1.0, result))
