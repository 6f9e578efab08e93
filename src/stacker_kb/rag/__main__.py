"""CLI for indexing project content and querying the knowledge base.

Usage:
    stacker-kb index [--collection NAME ...] [--force | --incremental] [--max-items N] [--workers N]
    stacker-kb query --query TEXT [--stores a,b] [--top-k N] [--threshold F] [--show-context] [--stream]
    stacker-kb stats
    stacker-kb health
"""

import argparse
import sys
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from ..config import DEFAULT_CONFIG_FILE, KnowledgeBaseConfig, load_config
from ..errors import KnowledgeBaseError
from ..llm import get_chat_model, get_embeddings_model, probe_endpoint
from ..logging_config import setup_logging
from .audit import AuditLog
from .embedder import EmbeddingClient
from .indexer import Indexer, IndexRunSummary
from .orchestrator import BlockingAnswer, QueryResult, RagOrchestrator, StreamingAnswer
from .vectorstore import StoreRepository


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stacker-kb",
        description="Index project content and ask questions about it",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to JSON config file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Index command
    index_parser = subparsers.add_parser("index", help="Build or update collection stores")
    index_parser.add_argument(
        "--collection",
        action="append",
        default=None,
        help="Collection to index (repeatable; default: all configured collections)",
    )
    mode = index_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--force",
        action="store_true",
        help="Re-embed everything, ignoring change detection",
    )
    mode.add_argument(
        "--incremental",
        action="store_true",
        help="Only re-embed changed content (default)",
    )
    index_parser.add_argument(
        "--max-items",
        type=int,
        default=None,
        help="Override per-source limit (log lines per file / runs per pipeline)",
    )
    index_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Units to process in parallel (default from config)",
    )
    index_parser.add_argument(
        "--repo",
        type=str,
        default=".",
        help="Repository root directory (default: current directory)",
    )

    # Query command
    query_parser = subparsers.add_parser("query", help="Ask a question")
    query_parser.add_argument("--query", required=True, help="Question to answer")
    query_parser.add_argument(
        "--stores",
        type=str,
        default=None,
        help="Comma-separated stores to search (default: all stores)",
    )
    query_parser.add_argument("--top-k", type=int, default=None, help="Maximum chunks to retrieve")
    query_parser.add_argument("--threshold", type=float, default=None, help="Minimum similarity (0..1)")
    query_parser.add_argument(
        "--show-context",
        action="store_true",
        help="Print the retrieved context sent to the model",
    )
    query_parser.add_argument(
        "--stream",
        action="store_true",
        help="Print the answer as it is generated",
    )
    query_parser.add_argument("--actor", type=str, default=None, help="Name recorded in the audit log")

    subparsers.add_parser("stats", help="Show store statistics")
    subparsers.add_parser("health", help="Check the model endpoint")

    return parser


def _make_embedder(config: KnowledgeBaseConfig) -> EmbeddingClient:
    return EmbeddingClient(get_embeddings_model(config.endpoint), config.endpoint.embed_model)


def _print_index_summary(summary: IndexRunSummary) -> None:
    if summary.discovered == 0:
        print(f"\n⚠ Collection '{summary.collection}': no source units found (store unchanged)")
        return

    mark = "✓" if not summary.errors else "⚠"
    print(f"\n{mark} Collection '{summary.collection}' indexed")
    print(
        f"  Units: {summary.discovered} discovered, {summary.processed} processed "
        f"({summary.reused} reused, {summary.embedded} embedded), "
        f"{summary.skipped} skipped, {summary.failed} failed"
    )
    print(
        f"  Chunks: {summary.chunks_embedded} embedded, {summary.chunks_reused} reused "
        f"({summary.embed_calls} embedding calls)"
    )
    print(f"  Time taken: {summary.duration_s:.2f}s")
    for error in summary.errors:
        print(f"  - {error}")


def cmd_index(args: argparse.Namespace, config: KnowledgeBaseConfig) -> int:
    if args.collection:
        collections = [config.collection(name) for name in args.collection]
    else:
        collections = list(config.collections)
    if args.max_items is not None:
        collections = [replace(c, max_items=args.max_items) for c in collections]
        config = replace(config, collections=tuple(collections)).validate()
    if args.workers is not None:
        config = replace(config, indexing=replace(config.indexing, workers=args.workers)).validate()

    repo_root = Path(args.repo).resolve()
    print(f"Indexing {len(collections)} collection(s) in: {repo_root}")

    indexer = Indexer(
        config,
        _make_embedder(config),
        StoreRepository.from_config(config.storage),
        base_dir=repo_root,
    )

    exit_code = 0
    for collection in collections:
        summary = indexer.run(collection, force=args.force)
        _print_index_summary(summary)
        if summary.has_embed_failures:
            exit_code = 1
    return exit_code


def cmd_query(args: argparse.Namespace, config: KnowledgeBaseConfig) -> int:
    stores = None
    if args.stores:
        stores = [name.strip() for name in args.stores.split(",") if name.strip()]

    if args.stream:
        answer_source = StreamingAnswer(get_chat_model(config.endpoint, streaming=True))
    else:
        answer_source = BlockingAnswer(get_chat_model(config.endpoint))

    orchestrator = RagOrchestrator(
        config,
        _make_embedder(config),
        StoreRepository.from_config(config.storage),
        answer_source,
        AuditLog(config.storage.audit_log),
    )

    def on_fragment(fragment: str) -> None:
        print(fragment, end="", flush=True)

    correlation_id = str(uuid.uuid4())
    start = time.perf_counter()
    if args.stream:
        print()
    try:
        result = orchestrator.ask(
            args.query,
            stores=stores,
            top_k=args.top_k,
            threshold=args.threshold,
            actor=args.actor,
            on_fragment=on_fragment if args.stream else None,
            correlation_id=correlation_id,
        )
    except KnowledgeBaseError as e:
        result = QueryResult(
            correlation_id=correlation_id,
            question=args.query,
            error=str(e),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        _print_query_summary(result)
        return 1

    if args.stream:
        print()
    elif result.answer:
        print(f"\n{result.answer}")

    if args.show_context:
        print("\n📚 Context")
        print("=" * 50)
        print(result.context)
        print("=" * 50)

    if result.context_results:
        print("\nSources:")
        for item in result.context_results:
            print(f"  - {item}")

    _print_query_summary(result)
    return 0 if result.succeeded else 1


def _print_query_summary(result: QueryResult) -> None:
    if result.error:
        print(f"\n❌ {result.error}", file=sys.stderr)
    stores = ", ".join(result.stores_searched) or "none"
    print(
        f"\n  Results: {len(result.results)} retrieved, "
        f"{len(result.context_blocks)} in context (stores: {stores})"
    )
    print(f"  Correlation id: {result.correlation_id}")
    print(f"  Time taken: {result.duration_ms / 1000:.2f}s")


def cmd_stats(args: argparse.Namespace, config: KnowledgeBaseConfig) -> int:
    repository = StoreRepository.from_config(config.storage)
    names = repository.list_stores()

    print("\n📊 Store Statistics")
    print("=" * 50)
    if not names:
        print("  No stores found")
    for name in names:
        stats = repository.stats(name)
        print(f"  {stats['store_name']}")
        print(f"    Chunks: {stats['total_chunks']}")
        print(f"    Sources: {stats['total_sources']}")
        print(f"    Model: {stats['model_name']} ({stats['dimensions']}d)")
        print(f"    Created: {stats['created_at']}")
    print("=" * 50)
    return 0


def cmd_health(args: argparse.Namespace, config: KnowledgeBaseConfig) -> int:
    base_url = config.endpoint.base_url
    if probe_endpoint(base_url):
        print(f"✓ Endpoint {base_url} is healthy")
        return 0
    print(f"❌ Endpoint {base_url} is not reachable", file=sys.stderr)
    return 1


COMMANDS = {
    "index": cmd_index,
    "query": cmd_query,
    "stats": cmd_stats,
    "health": cmd_health,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the knowledge-base CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
        setup_logging(args.log_level or config.log_level, config.log_file)
        return COMMANDS[args.command](args, config)

    except KeyboardInterrupt:
        print("\n\n👋 Stopped")
        return 130
    except KnowledgeBaseError as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"\n❌ Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
