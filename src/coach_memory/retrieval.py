"""
Retrieval: the caller-facing entry point over a ``RetrievalStore``.

Usage example::

    from coach_memory import InMemoryStore, Retrieval

    retrieval = Retrieval(InMemoryStore())
    await retrieval.add({"type": "message", "text": "I feel anxious before races"})
    results = await retrieval.search("pre-race nerves", k=2)
    for r in results:
        print(r.text, r.score)
"""

from __future__ import annotations

from .models import SimilarityResult, VectorItem
from .store import DEFAULT_K, DEFAULT_MIN_SCORE, AddParams, RetrievalStore


class Retrieval:
    """
    Thin coordinator over an explicitly constructed store.

    Besides delegating, it tracks whether a search is in flight
    (``is_searching``) and keeps the most recent results
    (``last_results``) for display.  Overlapping searches are counted, so
    the flag stays set until the last one finishes.
    """

    def __init__(self, store: RetrievalStore) -> None:
        self.store = store
        self._searches = 0
        self.last_results: list[SimilarityResult] = []

    async def add(self, params: AddParams) -> VectorItem:
        return await self.store.add_item(params)

    @property
    def is_searching(self) -> bool:
        return self._searches > 0

    async def search(
        self,
        query: str,
        k: int | None = None,
        min_score: float | None = None,
    ) -> list[SimilarityResult]:
        """Run a similarity query; ``None`` arguments use the store defaults."""
        self._searches += 1
        try:
            results = await self.store.query_similar(
                query,
                k=DEFAULT_K if k is None else k,
                min_score=DEFAULT_MIN_SCORE if min_score is None else min_score,
            )
            self.last_results = results
            return results
        finally:
            self._searches -= 1

    def size(self) -> int:
        return self.store.size()

    async def prune(self, max_items: int) -> int:
        return await self.store.prune(max_items)

    async def list_all(self) -> list[VectorItem]:
        return await self.store.list_all()
