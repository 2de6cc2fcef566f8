"""
Runtime configuration for the retrieval subsystem.

Values come from keyword arguments or from the environment:

    COACH_MEMORY_BACKEND        - "memory" (default) or "sqlite"
    COACH_MEMORY_DB_PATH        - SQLite file (default: ~/.cache/coach-memory/coach_vectors.db)
    COACH_MEMORY_TABLE          - durable table name (default: vector_items)
    COACH_MEMORY_EMBED_URL      - remote embedding endpoint (unset: no remote call)
    COACH_MEMORY_EMBED_TIMEOUT  - seconds before falling back (default: 5)
    COACH_MEMORY_EMBEDDER       - "remote", "local" or "hash" (default: remote if a URL is set)
    COACH_MEMORY_MODEL          - sentence-transformers model for "local"
    COACH_MEMORY_MAX_LOAD       - rows hydrated at start-up (default: 1500)
    COACH_MEMORY_MAX_ITEMS      - retention limit applied by callers (default: unset)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

BACKENDS = ("memory", "sqlite")
EMBEDDERS = ("remote", "local", "hash")

DEFAULT_DB_PATH = str(Path.home() / ".cache" / "coach-memory" / "coach_vectors.db")

_ENV_PREFIX = "COACH_MEMORY_"


@dataclass
class RetrievalConfig:
    backend: str = "memory"
    db_path: str = DEFAULT_DB_PATH
    table_name: str = "vector_items"
    embed_url: str | None = None
    embed_timeout: float = 5.0
    embedder: str | None = None
    model_name: str = "all-MiniLM-L6-v2"
    max_load: int = 1500
    max_items: int | None = None

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(
                f"Unknown backend {self.backend!r}; expected one of {BACKENDS}"
            )
        if self.embedder is not None and self.embedder not in EMBEDDERS:
            raise ValueError(
                f"Unknown embedder {self.embedder!r}; expected one of {EMBEDDERS}"
            )
        if self.embedder == "remote" and not self.embed_url:
            raise ValueError("The remote embedder needs an embed_url")
        if self.embed_timeout <= 0:
            raise ValueError("embed_timeout must be positive")
        if self.max_load <= 0:
            raise ValueError("max_load must be positive")
        if self.max_items is not None and self.max_items < 0:
            raise ValueError("max_items must not be negative")

    def resolved_embedder(self) -> str:
        """The embedder to build: explicit choice, else remote when a URL is set."""
        if self.embedder:
            return self.embedder
        return "remote" if self.embed_url else "hash"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> RetrievalConfig:
        """
        Build a config from ``COACH_MEMORY_*`` variables.

        Keyword *overrides* that are not ``None`` win over the environment.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(_ENV_PREFIX + name)
            return value if value else None

        values: dict = {}
        for field_name, env_name, convert in (
            ("backend", "BACKEND", str),
            ("db_path", "DB_PATH", str),
            ("table_name", "TABLE", str),
            ("embed_url", "EMBED_URL", str),
            ("embed_timeout", "EMBED_TIMEOUT", float),
            ("embedder", "EMBEDDER", str),
            ("model_name", "MODEL", str),
            ("max_load", "MAX_LOAD", int),
            ("max_items", "MAX_ITEMS", int),
        ):
            raw = get(env_name)
            if raw is None:
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid {_ENV_PREFIX}{env_name}: {raw!r}") from None

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
