"""
coach-memory: client-side retrieval for a wellness-coaching app.

A small embedded vector store with pluggable embeddings, cosine ranking,
oldest-first pruning and optional SQLite persistence.
"""

from .config import RetrievalConfig
from .embedding import (
    EmbeddingProvider,
    HashEmbeddingProvider,
    LocalModelEmbeddingProvider,
    RemoteEmbeddingProvider,
    pseudo_embedding,
)
from .models import AddVectorParams, SimilarityResult, VectorItem
from .retrieval import Retrieval
from .store import DurableStore, InMemoryStore, RetrievalStore, create_store
from .table import SqliteVectorTable

__all__ = [
    "AddVectorParams",
    "DurableStore",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "InMemoryStore",
    "LocalModelEmbeddingProvider",
    "RemoteEmbeddingProvider",
    "Retrieval",
    "RetrievalConfig",
    "RetrievalStore",
    "SimilarityResult",
    "SqliteVectorTable",
    "VectorItem",
    "create_store",
    "pseudo_embedding",
]
