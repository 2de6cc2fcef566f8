"""
Retrieval store: a small embedded vector store with brute-force search.

Two interchangeable variants share the ``RetrievalStore`` contract:

* ``InMemoryStore`` keeps everything in process memory.
* ``DurableStore`` keeps the same in-memory cache, hydrated at start-up
  from a ``SqliteVectorTable`` and mirrored to it on every insert and prune.

Each store owns a list of items and an index-aligned list of their
L2-normalised embeddings.  Because both the cached vectors and the query
vector are unit length, a plain dot product gives the cosine score.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from abc import ABC
from typing import Any, Iterable, Mapping, Union

from .config import RetrievalConfig
from .embedding import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    LocalModelEmbeddingProvider,
    RemoteEmbeddingProvider,
)
from .models import AddVectorParams, SimilarityResult, VectorItem, generate_id, now_ms
from .table import SqliteVectorTable
from .vector_math import dot, l2_normalize

logger = logging.getLogger(__name__)

DEFAULT_K = 3
DEFAULT_MIN_SCORE = 0.15

#: Most recent rows loaded from the durable table at start-up.
DEFAULT_MAX_LOAD = 1500

AddParams = Union[AddVectorParams, Mapping[str, Any]]


class RetrievalStore(ABC):
    """
    Shared behaviour of both store variants.

    Subclasses hook into ``_ensure_ready``, ``_persist`` and ``_forget`` to
    add durability; the in-memory bookkeeping lives here so the item list
    and the normalised cache are only ever mutated together.
    """

    def __init__(self, embedder: EmbeddingProvider | None = None) -> None:
        self.embedder = embedder or HashEmbeddingProvider()
        self._items: list[VectorItem] = []
        self._normalized: list[list[float]] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def size(self) -> int:
        """Number of items currently held."""
        return len(self._items)

    async def add_item(self, params: AddParams) -> VectorItem:
        """
        Embed (unless an embedding is supplied) and store a new item.

        Returns the stored ``VectorItem``.
        """
        await self._ensure_ready()
        p = AddVectorParams.coerce(params)
        text = p.text.strip()
        embedding = p.embedding
        if embedding is None:
            embedding = await self.embedder.get_embedding(text)
        item = VectorItem(
            id=p.id or generate_id(),
            type=p.type,
            timestamp=p.timestamp if p.timestamp is not None else now_ms(),
            text=text,
            embedding=list(embedding),
            meta=p.meta,
        )
        await self._persist(item)
        self._append(item)
        return item

    async def bulk_add(self, params_list: Iterable[AddParams]) -> list[VectorItem]:
        """Add items one after another, preserving input order.  Not atomic."""
        return [await self.add_item(params) for params in params_list]

    async def query_similar(
        self,
        query: str,
        k: int = DEFAULT_K,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[SimilarityResult]:
        """
        Return up to *k* items whose cosine score against *query* is at least
        *min_score*, best first.  Equal scores keep insertion order.
        """
        await self._ensure_ready()
        if not self._items or k <= 0:
            return []

        q = l2_normalize(await self.embedder.get_embedding(query))

        # Snapshot so a prune interleaving with the embedding call above
        # cannot misalign items and vectors.
        items = list(self._items)
        vectors = list(self._normalized)

        scored: list[SimilarityResult] = []
        for item, vec in zip(items, vectors):
            score = dot(q, vec)
            if score >= min_score:
                scored.append(SimilarityResult.from_item(item, score))

        scored.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            f"[Retrieval] Query matched {len(scored)}/{len(items)} items "
            f"(k={k}, min_score={min_score})"
        )
        return scored[:k]

    async def prune(self, max_items: int) -> int:
        """
        Evict the oldest items (by timestamp) until at most *max_items* remain.

        Returns the number of items removed.
        """
        await self._ensure_ready()
        excess = len(self._items) - max_items
        if excess <= 0:
            return 0

        # sorted() is stable, so equal timestamps evict the earlier insert.
        order = sorted(range(len(self._items)), key=lambda i: self._items[i].timestamp)
        doomed = set(order[:excess])
        removed = [self._items[i].id for i in sorted(doomed)]
        self._items = [it for i, it in enumerate(self._items) if i not in doomed]
        self._normalized = [v for i, v in enumerate(self._normalized) if i not in doomed]

        await self._forget(removed)
        logger.info(f"[Retrieval] Pruned {excess} items, {len(self._items)} remain")
        return excess

    async def list_all(self) -> list[VectorItem]:
        """Shallow copy of all items in their in-memory order."""
        await self._ensure_ready()
        return list(self._items)

    def normalized_vectors(self) -> list[list[float]]:
        """Copy of the normalised-vector cache, index-aligned with the items."""
        return [list(v) for v in self._normalized]

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def _ensure_ready(self) -> None:
        return None

    async def _persist(self, item: VectorItem) -> None:
        return None

    async def _forget(self, ids: list[str]) -> None:
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, item: VectorItem) -> None:
        self._items.append(item)
        self._normalized.append(l2_normalize(item.embedding))


class InMemoryStore(RetrievalStore):
    """Process-memory store.  Nothing survives a restart."""


class StoreState(enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"


class DurableStore(RetrievalStore):
    """
    In-memory cache over a durable SQLite table.

    Hydration loads the newest *max_load* rows and keeps them in
    chronological order.  It starts with ``await store.start()`` or lazily
    on the first async call; every async operation waits for it.  If
    hydration fails the store becomes an empty memory-only store.

    Queries never touch the table.  Insert and delete failures are logged
    and swallowed, so the in-memory state stays authoritative for the
    running process.
    """

    def __init__(
        self,
        table: SqliteVectorTable,
        embedder: EmbeddingProvider | None = None,
        max_load: int = DEFAULT_MAX_LOAD,
    ) -> None:
        super().__init__(embedder)
        self.table: SqliteVectorTable | None = table
        self.max_load = max_load
        self.state = StoreState.INITIALIZING
        self._hydration: asyncio.Task | None = None

    async def start(self) -> DurableStore:
        """Run (or wait for) hydration.  Returns the store for chaining."""
        await self._ensure_ready()
        return self

    async def _ensure_ready(self) -> None:
        if self.state is StoreState.READY:
            return
        if self._hydration is None:
            self._hydration = asyncio.ensure_future(self._hydrate())
        await asyncio.shield(self._hydration)

    async def _hydrate(self) -> None:
        try:
            await self.table.create()
            rows = await self.table.load_recent(self.max_load)
        except Exception as e:
            logger.warning(
                f"[Retrieval] Durable table unavailable, using memory only: {e}"
            )
            self.table = None
            rows = []

        skipped = 0
        for item in reversed(rows):
            if not item.embedding:
                skipped += 1
                continue
            self._append(item)
        self.state = StoreState.READY
        logger.info(
            f"[Retrieval] Hydrated {len(self._items)} items"
            + (f" ({skipped} without embeddings skipped)" if skipped else "")
        )

    async def _persist(self, item: VectorItem) -> None:
        if self.table is None:
            return
        try:
            await self.table.upsert(item)
        except Exception as e:
            logger.warning(f"[Retrieval] Insert of {item.id} failed: {e}")

    async def _forget(self, ids: list[str]) -> None:
        if self.table is None or not ids:
            return
        try:
            await self.table.delete(ids)
        except Exception as e:
            logger.warning(f"[Retrieval] Delete of {len(ids)} pruned items failed: {e}")


def build_embedder(config: RetrievalConfig) -> EmbeddingProvider:
    """Construct the embedding provider named by *config*."""
    kind = config.resolved_embedder()
    if kind == "remote":
        return RemoteEmbeddingProvider(config.embed_url, timeout=config.embed_timeout)
    if kind == "local":
        return LocalModelEmbeddingProvider(model_name=config.model_name)
    return HashEmbeddingProvider()


def create_store(
    config: RetrievalConfig,
    embedder: EmbeddingProvider | None = None,
) -> RetrievalStore:
    """Build the store variant selected by ``config.backend``."""
    embedder = embedder or build_embedder(config)
    if config.backend == "sqlite":
        table = SqliteVectorTable(config.db_path, table_name=config.table_name)
        return DurableStore(table, embedder=embedder, max_load=config.max_load)
    return InMemoryStore(embedder=embedder)
