"""
Command-line interface for inspecting and maintaining a coach-memory store.

Sub-commands
------------
add     – Embed and store a piece of text.
search  – Retrieve the items most similar to a query.
list    – List stored items.
prune   – Evict the oldest items beyond a maximum count.
count   – Print the number of stored items.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from .config import BACKENDS, EMBEDDERS, RetrievalConfig
from .retrieval import Retrieval
from .store import DEFAULT_K, DEFAULT_MIN_SCORE, create_store


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coach-memory",
        description="Client-side retrieval store for coaching conversations.",
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Store variant (default: $COACH_MEMORY_BACKEND or sqlite).",
    )
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="SQLite database file (default: $COACH_MEMORY_DB_PATH or ~/.cache/coach-memory).",
    )
    parser.add_argument(
        "--table",
        default=None,
        metavar="NAME",
        help="Durable table name (default: vector_items).",
    )
    parser.add_argument(
        "--embed-url",
        default=None,
        metavar="URL",
        help="Remote embedding endpoint (default: $COACH_MEMORY_EMBED_URL).",
    )
    parser.add_argument(
        "--embedder",
        choices=EMBEDDERS,
        default=None,
        help="Embedding provider (default: remote when a URL is set, else hash).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # add
    p_add = sub.add_parser("add", help="Store text.")
    p_add.add_argument("text", nargs="?", help="Text to store (reads stdin if omitted).")
    p_add.add_argument("--type", default="message", help="Item type (default: message).")
    p_add.add_argument("--meta", default=None, metavar="JSON", help="JSON object of annotations.")

    # search
    p_search = sub.add_parser("search", help="Find similar items.")
    p_search.add_argument("query", help="Query text.")
    p_search.add_argument(
        "-k",
        type=int,
        default=DEFAULT_K,
        metavar="K",
        help=f"Number of results to return (default: {DEFAULT_K}).",
    )
    p_search.add_argument(
        "--min-score",
        type=float,
        default=DEFAULT_MIN_SCORE,
        metavar="SCORE",
        help=f"Minimum cosine score (default: {DEFAULT_MIN_SCORE}).",
    )
    p_search.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # list
    p_list = sub.add_parser("list", help="List stored items.")
    p_list.add_argument(
        "--limit",
        type=int,
        default=100,
        metavar="N",
        help="Maximum number of items to show (default: 100).",
    )
    p_list.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # prune
    p_prune = sub.add_parser("prune", help="Keep only the newest MAX_ITEMS items.")
    p_prune.add_argument("max_items", type=int, help="Number of items to keep.")

    # count
    sub.add_parser("count", help="Print the number of stored items.")

    return parser


def _item_json(item) -> dict:
    data = item.to_dict()
    data.pop("embedding", None)
    return data


async def _run(args: argparse.Namespace, retrieval: Retrieval, max_items: int | None) -> int:
    if args.command == "add":
        text = args.text
        if text is None:
            text = sys.stdin.read()
        if not text.strip():
            print("Error: no text provided.", file=sys.stderr)
            return 1
        meta = None
        if args.meta:
            try:
                meta = json.loads(args.meta)
            except ValueError:
                print("Error: --meta must be a JSON object.", file=sys.stderr)
                return 1
            if not isinstance(meta, dict):
                print("Error: --meta must be a JSON object.", file=sys.stderr)
                return 1
        item = await retrieval.add({"type": args.type, "text": text, "meta": meta})
        print(f"Stored {item.id}.")
        if max_items is not None:
            removed = await retrieval.prune(max_items)
            if removed:
                print(f"Pruned {removed} old item(s).")

    elif args.command == "search":
        results = await retrieval.search(args.query, k=args.k, min_score=args.min_score)
        if not results:
            print("No matching items.")
            return 0
        if args.as_json:
            print(json.dumps([_item_json(r) for r in results], indent=2))
        else:
            for i, r in enumerate(results, 1):
                print(f"[{i}] (score={r.score:.3f}, type={r.type})")
                print(f"    {r.text[:200]}")
                print(f"    id={r.id}")
                print()

    elif args.command == "list":
        items = (await retrieval.list_all())[: args.limit]
        if not items:
            print("No items stored.")
            return 0
        if args.as_json:
            print(json.dumps([_item_json(it) for it in items], indent=2))
        else:
            for it in items:
                print(f"id={it.id} type={it.type} ts={it.timestamp}")
                print(f"    {it.text[:120]}")
                print()

    elif args.command == "prune":
        removed = await retrieval.prune(args.max_items)
        print(f"Pruned {removed} item(s).")

    elif args.command == "count":
        await retrieval.list_all()
        print(retrieval.size())

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # The CLI persists by default; an explicit flag or env value wins.
    backend = args.backend
    if backend is None and not os.environ.get("COACH_MEMORY_BACKEND"):
        backend = "sqlite"

    try:
        config = RetrievalConfig.from_env(
            backend=backend,
            db_path=args.db,
            table_name=args.table,
            embed_url=args.embed_url,
            embedder=args.embedder,
        )
        retrieval = Retrieval(create_store(config))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return asyncio.run(_run(args, retrieval, config.max_items))


if __name__ == "__main__":
    sys.exit(main())
