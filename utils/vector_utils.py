"""Vector helpers for comparing pain-point embeddings."""

import math
from typing import Optional, Sequence, List


def normalize(vector: Sequence[float]) -> List[float]:
    """Scale a vector to unit length. Zero vectors are returned unchanged."""
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        return [float(x) for x in vector]
    return [x / norm for x in vector]


def cosine_similarity(
    a: Optional[Sequence[float]],
    b: Optional[Sequence[float]]
) -> float:
    """
    Cosine similarity of two vectors, bounded to [-1.0, 1.0].

    Missing, empty, zero-length or dimension-mismatched vectors score 0.0 so
    they never clear a positive similarity threshold.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Floating point error can push identical vectors a hair past 1.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))
