"""
Small vector helpers used by the retrieval store.

Vectors are plain sequences of floats.  When two vectors differ in length
the pairwise operations only look at the overlapping prefix.
"""

from __future__ import annotations

import math
from typing import Sequence

Vector = Sequence[float]


def dot(a: Vector, b: Vector) -> float:
    """Sum of element-wise products over the shorter of the two vectors."""
    n = min(len(a), len(b))
    return sum(a[i] * b[i] for i in range(n))


def norm(a: Vector) -> float:
    """Euclidean (L2) length of *a*."""
    return math.sqrt(sum(x * x for x in a))


def cosine(a: Vector, b: Vector) -> float:
    """
    Cosine similarity of *a* and *b*.

    Returns ``0.0`` when either vector has zero length, so a zero vector is
    never similar to anything.
    """
    na = norm(a)
    nb = norm(b)
    if not na or not nb:
        return 0.0
    return dot(a, b) / (na * nb)


def l2_normalize(v: Vector) -> list[float]:
    """Return a unit-length copy of *v* (or a plain copy if *v* is all zeros)."""
    n = norm(v)
    if not n:
        return list(v)
    return [x / n for x in v]
