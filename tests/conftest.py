"""
Shared pytest fixtures for coach-memory tests.

Stores are wired to deterministic embedders so tests never touch the
network or download a model.  Durable stores use a SQLite file under
``tmp_path``.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Callable

import pytest

from coach_memory.embedding import EmbeddingProvider, pseudo_embedding
from coach_memory.retrieval import Retrieval
from coach_memory.store import DurableStore, InMemoryStore
from coach_memory.table import SqliteVectorTable


class FakeEmbeddingFunction:
    """
    Deterministic chromadb-style embedding function that maps text to a
    unit vector derived from its MD5 hash.  No model download.
    """

    def name(self) -> str:
        return "fake-md5-embedding"

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        embeddings = []
        for text in input:
            digest = hashlib.md5(text.encode()).digest()
            # 16-byte digest → 16-dim float vector in [-1, 1]
            vec = [(b - 128) / 128.0 for b in digest]
            norm = sum(x * x for x in vec) ** 0.5 or 1.0
            embeddings.append([x / norm for x in vec])
        return embeddings


class MappingEmbedder(EmbeddingProvider):
    """
    Returns fixed vectors for known texts and the pseudo-embedding otherwise.
    Records every text it was asked to embed.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        delay: Callable[[str], float] | None = None,
    ) -> None:
        super().__init__()
        self.vectors = vectors or {}
        self.delay = delay
        self.calls: list[str] = []

    async def get_embedding(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay is not None:
            await asyncio.sleep(self.delay(text))
        if text in self.vectors:
            return list(self.vectors[text])
        return pseudo_embedding(text)


@pytest.fixture()
def embedder() -> MappingEmbedder:
    return MappingEmbedder()


@pytest.fixture()
def memory_store(embedder: MappingEmbedder) -> InMemoryStore:
    """In-memory store with the recording embedder."""
    return InMemoryStore(embedder=embedder)


@pytest.fixture()
def table(tmp_path) -> SqliteVectorTable:
    return SqliteVectorTable(tmp_path / "coach_vectors.db")


@pytest.fixture()
def durable_store(table: SqliteVectorTable, embedder: MappingEmbedder) -> DurableStore:
    """Durable store over a fresh SQLite file.  Hydrates on first use."""
    return DurableStore(table, embedder=embedder)


@pytest.fixture(params=["memory", "durable"])
def any_store(request, memory_store, durable_store):
    """Runs a test against both store variants."""
    return memory_store if request.param == "memory" else durable_store


@pytest.fixture()
def retrieval(memory_store: InMemoryStore) -> Retrieval:
    return Retrieval(memory_store)
