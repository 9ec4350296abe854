"""CLI entry point for session-recall.

Operates on sessions persisted by a JsonFileStore directory.

Usage:
    session-recall --store DIR list                    # List persisted sessions
    session-recall --store DIR inspect SESSION         # Show stats and history
    session-recall --store DIR search SESSION QUERY    # Keyword search a session
    session-recall --store DIR clear SESSION           # Delete a session
    session-recall --config recall.yaml ...            # Read settings from YAML
    session-recall --version                           # Show version
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional

import pydantic

from session_recall import __version__
from session_recall.config import RecallConfig, load_config
from session_recall.errors import PersistenceCorruptionError
from session_recall.memory.embedders import NoEmbedder
from session_recall.memory.rag import RetrievalMemory
from session_recall.memory.retrieval.hybrid import SearchMode
from session_recall.memory.retrieval.vector_index import DistanceMetric
from session_recall.memory.schemas import SessionSnapshot
from session_recall.memory.session.cache import SessionCache, SessionKey
from session_recall.memory.session.stores import JsonFileStore

STORAGE_PREFIX = "rag_"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="session-recall",
        description="Session Recall - inspect persisted retrieval memory sessions",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML file with a 'recall:' section",
    )
    parser.add_argument(
        "--store",
        type=Path,
        help="Session store directory (overrides store_dir from --config)",
    )
    parser.add_argument(
        "--scope",
        type=str,
        help="Session scope (default: from config, else 'default')",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("list", help="List persisted sessions")

    inspect_parser = subparsers.add_parser("inspect", help="Show session stats and history")
    inspect_parser.add_argument("session_id", help="Session identifier")

    search_parser = subparsers.add_parser("search", help="Keyword search a persisted session")
    search_parser.add_argument("session_id", help="Session identifier")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument(
        "-k",
        type=int,
        default=None,
        help="Maximum number of results (default: max_context_messages)",
    )

    clear_parser = subparsers.add_parser("clear", help="Delete a persisted session")
    clear_parser.add_argument("session_id", help="Session identifier")

    return parser


def _open_memory(
    store: JsonFileStore, config: RecallConfig, scope: str, session_id: str
) -> RetrievalMemory:
    """Open a persisted session in keyword mode.

    The cache takes dimensions and metric from the stored snapshot so any
    session can be read without knowing the embedder that wrote it.
    """
    key = SessionKey(scope, session_id)
    try:
        blob = store.load(SessionCache.storage_key(key))
        if blob is not None:
            snapshot = SessionSnapshot.model_validate_json(blob)
            config = dataclasses.replace(
                config,
                dimensions=snapshot.dimensions,
                distance_metric=DistanceMetric(snapshot.distance_metric),
            )
    except (PersistenceCorruptionError, pydantic.ValidationError, ValueError):
        # Left to the cache, which logs and starts the session empty
        pass

    config = dataclasses.replace(config, search_mode=SearchMode.KEYWORD)
    cache = SessionCache(
        dimensions=config.dimensions,
        distance_metric=config.distance_metric,
        ttl_seconds=config.ttl_seconds,
        store=store,
        text_fields=config.text_fields,
    )
    return RetrievalMemory(session_id, NoEmbedder(), cache=cache, config=config, scope=scope)


def run_list(store: JsonFileStore, scope: str) -> int:
    prefix = f"{STORAGE_PREFIX}{scope}__"
    for key in store.keys():
        if key.startswith(prefix):
            print(key[len(prefix) :])
    return 0


def run_inspect(memory: RetrievalMemory) -> int:
    stats = memory.get_stats()
    print(f"Session:    {memory.key}")
    print(f"Messages:   {stats['message_count']}")
    print(f"Documents:  {stats['document_count']}")
    print(f"Dimensions: {stats['dimensions']}")
    for i, message in enumerate(memory.get_messages(), start=1):
        print(f"[{i}] {message.role.value}: {message.content}")
    return 0


def run_search(memory: RetrievalMemory, query: str, k: Optional[int]) -> int:
    context = asyncio.run(memory.get_context(query, k))
    if not context.relevant_history:
        print("No matches.")
        return 1
    for i, hit in enumerate(context.relevant_history, start=1):
        print(f"[{i}] ({hit.role}, score: {hit.similarity:.3f}) {hit.content}")
    return 0


def run_clear(store: JsonFileStore, memory: RetrievalMemory) -> int:
    storage_key = SessionCache.storage_key(memory.key)
    if storage_key not in set(store.keys()):
        print(f"Session {memory.key} not found.", file=sys.stderr)
        return 1
    memory.clear()
    print(f"Cleared session {memory.key}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 2

    config = load_config(args.config) if args.config else RecallConfig()
    store_dir = args.store or config.store_dir
    if store_dir is None:
        print("Error: no session store. Pass --store or set store_dir in --config.", file=sys.stderr)
        return 2

    store = JsonFileStore(store_dir)
    scope = args.scope or config.scope

    if args.command == "list":
        return run_list(store, scope)

    memory = _open_memory(store, config, scope, args.session_id)
    if args.command == "inspect":
        return run_inspect(memory)
    elif args.command == "search":
        return run_search(memory, args.query, args.k)
    else:
        return run_clear(store, memory)


if __name__ == "__main__":
    sys.exit(main())
