"""
Data model for stored retrieval items and query results.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id() -> str:
    """Return a short random item ID such as ``vec_k3x9a0qz``."""
    return "vec_" + "".join(random.choices(_ID_ALPHABET, k=8))


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class VectorItem:
    """
    A stored retrievable unit.

    ``type`` is an open-ended category tag (``message``, ``mood``,
    ``tactic``, ``exercise``, ``summary`` or anything else).  ``timestamp``
    is epoch milliseconds.  ``meta`` is opaque to the store.
    """

    id: str
    type: str
    timestamp: int
    text: str
    embedding: list[float]
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SimilarityResult(VectorItem):
    """A stored item together with its cosine score against one query."""

    score: float = 0.0

    @classmethod
    def from_item(cls, item: VectorItem, score: float) -> SimilarityResult:
        return cls(
            id=item.id,
            type=item.type,
            timestamp=item.timestamp,
            text=item.text,
            embedding=item.embedding,
            meta=item.meta,
            score=score,
        )


@dataclass
class AddVectorParams:
    """
    Input for ``add_item``.

    Only ``type`` and ``text`` are required.  A supplied ``embedding`` is
    trusted as-is and skips the embedding provider.
    """

    type: str
    text: str
    id: str | None = None
    timestamp: int | None = None
    meta: dict[str, Any] | None = None
    embedding: list[float] | None = field(default=None, repr=False)

    @classmethod
    def coerce(cls, params: AddVectorParams | Mapping[str, Any]) -> AddVectorParams:
        """Accept either an ``AddVectorParams`` or a plain mapping."""
        if isinstance(params, cls):
            return params
        data = dict(params)
        if "ts" in data and "timestamp" not in data:
            data["timestamp"] = data.pop("ts")
        return cls(
            type=data["type"],
            text=data["text"],
            id=data.get("id"),
            timestamp=data.get("timestamp"),
            meta=data.get("meta"),
            embedding=data.get("embedding"),
        )
