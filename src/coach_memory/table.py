"""
SQLite table that durably mirrors the retrieval store.

Schema (one row per item):

    id        TEXT PRIMARY KEY
    type      TEXT
    ts        INTEGER   -- epoch milliseconds
    text      TEXT
    embedding TEXT      -- JSON array of numbers
    meta      TEXT      -- JSON object, nullable

Every call opens its own connection and runs in a worker thread, so the
table can be used from coroutines without blocking the event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Iterable

from .models import VectorItem

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "vector_items"

#: Maximum number of ids bound into a single DELETE statement.
DELETE_BATCH_SIZE: int = 50

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteVectorTable:
    """
    Durable row storage for ``VectorItem`` objects.

    Parameters
    ----------
    db_path:
        SQLite database file.  Parent directories are created on demand.
    table_name:
        Table to use.  Must be a plain SQL identifier.
    """

    def __init__(
        self,
        db_path: str | Path,
        table_name: str = DEFAULT_TABLE_NAME,
    ) -> None:
        if not _IDENTIFIER.match(table_name):
            raise ValueError(f"Invalid table name: {table_name!r}")
        self.db_path = Path(db_path)
        self.table_name = table_name

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(self) -> None:
        """Create the table and its timestamp index if they do not exist."""
        await asyncio.to_thread(self._create)

    async def load_recent(self, limit: int) -> list[VectorItem]:
        """Return up to *limit* items, newest first."""
        return await asyncio.to_thread(self._load_recent, limit)

    async def upsert(self, item: VectorItem) -> None:
        """Insert *item*, replacing any row with the same id."""
        await asyncio.to_thread(self._upsert, item)

    async def delete(self, ids: Iterable[str]) -> int:
        """Delete rows by id in batches.  Returns the number of rows deleted."""
        return await asyncio.to_thread(self._delete, list(ids))

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _create(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id TEXT PRIMARY KEY NOT NULL,
                    type TEXT,
                    ts INTEGER,
                    text TEXT,
                    embedding TEXT,
                    meta TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_ts
                    ON {self.table_name}(ts);
                """
            )
            conn.commit()
            logger.info(f"[VectorTable] Initialized {self.table_name} at {self.db_path}")
        finally:
            conn.close()

    def _load_recent(self, limit: int) -> list[VectorItem]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT id, type, ts, text, embedding, meta FROM {self.table_name} "
                "ORDER BY ts DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [item_from_row(row) for row in rows]

    def _upsert(self, item: VectorItem) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO {self.table_name} "
                "(id, type, ts, text, embedding, meta) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    item.id,
                    item.type,
                    item.timestamp,
                    item.text,
                    json.dumps(item.embedding),
                    json.dumps(item.meta) if item.meta is not None else None,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _delete(self, ids: list[str]) -> int:
        if not ids:
            return 0
        deleted = 0
        conn = self._connect()
        try:
            for start in range(0, len(ids), DELETE_BATCH_SIZE):
                chunk = ids[start : start + DELETE_BATCH_SIZE]
                marks = ",".join("?" * len(chunk))
                cur = conn.execute(
                    f"DELETE FROM {self.table_name} WHERE id IN ({marks})", chunk
                )
                deleted += cur.rowcount
            conn.commit()
        finally:
            conn.close()
        return deleted

    def _count(self) -> int:
        conn = self._connect()
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {self.table_name}").fetchone()[0]
        finally:
            conn.close()


def item_from_row(row: sqlite3.Row) -> VectorItem:
    """Convert a table row to a ``VectorItem``; unparseable JSON loads empty."""
    try:
        embedding = [float(x) for x in json.loads(row["embedding"])]
    except (TypeError, ValueError):
        embedding = []
    meta = None
    if row["meta"]:
        try:
            meta = json.loads(row["meta"])
        except ValueError:
            meta = None
    return VectorItem(
        id=row["id"],
        type=row["type"],
        timestamp=row["ts"],
        text=row["text"],
        embedding=embedding,
        meta=meta,
    )
