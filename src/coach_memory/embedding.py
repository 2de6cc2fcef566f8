"""
Embedding providers: turn text into vectors for the retrieval store.

Every provider degrades to a deterministic local pseudo-embedding instead
of raising, so adding and searching keep working when the remote service
or the local model is unavailable.

Providers
---------
RemoteEmbeddingProvider     – POSTs ``{"text": ...}`` to an HTTP endpoint.
LocalModelEmbeddingProvider – sentence-transformers model via chromadb.
HashEmbeddingProvider       – pseudo-embedding only (offline / tests).
"""

from __future__ import annotations

import asyncio
import logging
import numbers
from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from chromadb.utils import embedding_functions

logger = logging.getLogger(__name__)

#: Dimension of the pseudo-embedding fallback.
FALLBACK_DIM: int = 64

#: Seconds to wait for the remote endpoint before falling back.
DEFAULT_TIMEOUT_SECONDS: float = 5.0

DEFAULT_MODEL_NAME = "all-MiniLM-L6-v2"

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619

#: Called as ``on_fallback(text, reason)`` whenever a provider falls back.
FallbackHook = Callable[[str, str], None]


# ---------------------------------------------------------------------------
# Pseudo-embedding
# ---------------------------------------------------------------------------


def pseudo_embedding(text: str, dim: int = FALLBACK_DIM) -> list[float]:
    """
    Deterministic stand-in embedding with no semantic meaning.

    A running 32-bit FNV-1a style hash is updated with each character; the
    low 16 bits, scaled to [0, 1], are added into slot ``i % dim``.  The
    result is mean-centred.
    """
    out = [0.0] * dim
    h = _FNV_OFFSET
    for i, ch in enumerate(text):
        h ^= ord(ch)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
        out[i % dim] += (h & 0xFFFF) / 0xFFFF
    mean = sum(out) / dim
    return [x - mean for x in out]


def _parse_embedding(data: Any) -> list[float] | None:
    """Return ``data["embedding"]`` as floats, or ``None`` if it is malformed or empty."""
    if not isinstance(data, dict):
        return None
    embedding = data.get("embedding")
    if not isinstance(embedding, list) or not embedding:
        return None
    if not all(
        isinstance(x, numbers.Real) and not isinstance(x, bool) for x in embedding
    ):
        return None
    return [float(x) for x in embedding]


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """Base class: ``get_embedding`` never raises, it falls back instead."""

    def __init__(
        self,
        fallback_dim: int = FALLBACK_DIM,
        on_fallback: FallbackHook | None = None,
    ) -> None:
        self.fallback_dim = fallback_dim
        self.on_fallback = on_fallback
        self.fallback_count = 0

    @abstractmethod
    async def get_embedding(self, text: str) -> list[float]:
        """Return an embedding vector for *text*."""

    def _fallback(self, text: str, reason: str) -> list[float]:
        self.fallback_count += 1
        logger.warning(f"[Embeddings] Using pseudo-embedding: {reason}")
        if self.on_fallback is not None:
            try:
                self.on_fallback(text, reason)
            except Exception as e:
                logger.error(f"[Embeddings] Fallback hook failed: {e}")
        return pseudo_embedding(text, self.fallback_dim)


class HashEmbeddingProvider(EmbeddingProvider):
    """Always returns the pseudo-embedding.  Not counted as a fallback."""

    async def get_embedding(self, text: str) -> list[float]:
        return pseudo_embedding(text, self.fallback_dim)


class RemoteEmbeddingProvider(EmbeddingProvider):
    """
    Fetch embeddings from an HTTP endpoint.

    The endpoint receives ``POST {"text": "..."}`` and must answer with
    ``{"embedding": [numbers...]}``.  Transport errors, timeouts, non-2xx
    statuses and malformed bodies all fall back to the pseudo-embedding.

    Usage::

        provider = RemoteEmbeddingProvider("https://example.org/api/embed")
        vector = await provider.get_embedding("slow breathing helps")
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        headers: dict[str, str] | None = None,
        fallback_dim: int = FALLBACK_DIM,
        on_fallback: FallbackHook | None = None,
        _client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(fallback_dim=fallback_dim, on_fallback=on_fallback)
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = _client

    async def get_embedding(self, text: str) -> list[float]:
        try:
            if self._client is not None:
                response = await self._post(self._client, text)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, text)
        except httpx.TimeoutException:
            return self._fallback(text, f"timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            return self._fallback(text, f"request failed: {e}")

        if not response.is_success:
            return self._fallback(text, f"endpoint returned {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            return self._fallback(text, "response body is not JSON")

        embedding = _parse_embedding(data)
        if embedding is None:
            return self._fallback(text, "response has no non-empty numeric 'embedding' list")
        return embedding

    async def _post(self, client: httpx.AsyncClient, text: str) -> httpx.Response:
        return await client.post(
            self.url, json={"text": text}, headers=self.headers, timeout=self.timeout
        )


class LocalModelEmbeddingProvider(EmbeddingProvider):
    """
    Embed with a local sentence-transformers model.

    The model is wrapped in chromadb's embedding-function interface and
    loaded on first use.  Encoding runs in a worker thread so the event
    loop is not blocked.  Any model error falls back to the
    pseudo-embedding.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL_NAME,
        fallback_dim: int = FALLBACK_DIM,
        on_fallback: FallbackHook | None = None,
        _embedding_function: Any | None = None,
    ) -> None:
        super().__init__(fallback_dim=fallback_dim, on_fallback=on_fallback)
        self.model_name = model_name
        self._embedding_function = _embedding_function

    @property
    def embedding_function(self) -> Any:
        if self._embedding_function is None:
            self._embedding_function = (
                embedding_functions.SentenceTransformerEmbeddingFunction(
                    model_name=self.model_name
                )
            )
        return self._embedding_function

    def _encode(self, text: str) -> list[float]:
        vectors = self.embedding_function([text])
        return [float(x) for x in vectors[0]]

    async def get_embedding(self, text: str) -> list[float]:
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            return self._fallback(text, f"local model {self.model_name} failed: {e}")
