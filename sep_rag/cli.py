from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from sep_rag.clients.workers_ai import WorkersAIClient
from sep_rag.config import SepRagConfig, load_dotenv_from_root
from sep_rag.hybrid.neighbors import get_chunk_neighbors
from sep_rag.hybrid.search import HybridSearchEngine, PostgresChunkStore
from sep_rag.index.chroma import ChromaVectorIndex
from sep_rag.ingestion.pipeline import IngestionPipeline
from sep_rag.models import IngestionStatus
from sep_rag.storage.blobs import BlobStore
from sep_rag.storage.dao import find_incomplete_articles, get_queue_stats, reset_articles
from sep_rag.storage.db import ensure_schema, get_connection
from sep_rag.storage.migrations import current_revision, run_migrations


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _build_search_engine(config: SepRagConfig) -> HybridSearchEngine:
    return HybridSearchEngine(
        PostgresChunkStore(config.db_dsn),
        ChromaVectorIndex.from_config(config),
        WorkersAIClient.from_config(config),
        BlobStore(config.data_dir),
    )


def handle_migrate(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    run_migrations(config.db_dsn)
    with get_connection(config.db_dsn) as conn:
        revision = current_revision(conn)
    _print_json({"status": "ok", "revision": revision})


def handle_enqueue(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    pipeline = IngestionPipeline.from_config(config)
    if args.all:
        payload: dict[str, Any] = {"added": pipeline.enqueue_all()}
    elif args.rss:
        since = None
        if args.days is not None:
            since = datetime.now(timezone.utc) - timedelta(days=args.days)
        payload = {"queued": pipeline.enqueue_recent(since)}
    elif args.article_ids:
        payload = {"added": pipeline.enqueue(list(args.article_ids))}
    else:
        raise SystemExit("enqueue: pass --all, --rss or one or more article ids")
    _print_json(payload)


def handle_ingest(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    pipeline = IngestionPipeline.from_config(config)
    summary = pipeline.process_queue(limit=args.limit)
    _print_json(
        {
            "processed": summary.processed,
            "failed": summary.failed,
            "failures": summary.failures,
        }
    )


def handle_ingest_article(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    pipeline = IngestionPipeline.from_config(config)
    chunk_count = pipeline.process_article(args.article_id)
    _print_json({"article_id": args.article_id, "chunks": chunk_count})


def handle_search(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    engine = _build_search_engine(config)
    results = engine.search(args.query, top_k=args.top_k)
    _print_json([result.model_dump() for result in results])


def handle_neighbors(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    neighbors = get_chunk_neighbors(PostgresChunkStore(config.db_dsn), args.chunk_id)
    _print_json([neighbor.model_dump() for neighbor in neighbors])


def handle_stats(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    conn = get_connection(config.db_dsn)
    try:
        ensure_schema(conn)
        payload = get_queue_stats(conn)
    finally:
        conn.close()
    _print_json(payload)


def handle_reset_incomplete(args: argparse.Namespace) -> None:
    config = SepRagConfig()
    conn = get_connection(config.db_dsn)
    try:
        article_ids = find_incomplete_articles(conn)
        updated = 0
        if article_ids and not args.dry_run:
            updated = reset_articles(conn, article_ids, IngestionStatus(args.status))
            conn.commit()
    finally:
        conn.close()
    _print_json({"articles": article_ids, "reset": updated, "status": args.status})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Encyclopedia ingestion and hybrid search CLI")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.set_defaults(func=handle_migrate)

    enqueue_parser = subparsers.add_parser("enqueue", help="Add articles to the ingestion queue")
    group = enqueue_parser.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="Queue every published entry")
    group.add_argument("--rss", action="store_true", help="Re-queue entries from the RSS feed")
    enqueue_parser.add_argument(
        "--days", type=int, default=None, help="With --rss, only entries from the last N days"
    )
    enqueue_parser.add_argument("article_ids", nargs="*", help="Explicit article ids to queue")
    enqueue_parser.set_defaults(func=handle_enqueue)

    ingest_parser = subparsers.add_parser("ingest", help="Drain the ingestion queue")
    ingest_parser.add_argument("--limit", type=int, default=None, help="Stop after N articles")
    ingest_parser.set_defaults(func=handle_ingest)

    article_parser = subparsers.add_parser("ingest-article", help="Ingest a single article now")
    article_parser.add_argument("article_id", help="Entry id, e.g. 'wittgenstein'")
    article_parser.set_defaults(func=handle_ingest_article)

    search_parser = subparsers.add_parser("search", help="Hybrid search over indexed chunks")
    search_parser.add_argument("query", help="Query string to search for")
    search_parser.add_argument("--top-k", type=int, default=10, help="Number of results")
    search_parser.set_defaults(func=handle_search)

    neighbors_parser = subparsers.add_parser(
        "neighbors", help="Show the neighboring chunks of a chunk within its section"
    )
    neighbors_parser.add_argument("chunk_id", help="Chunk id, e.g. 'logic/2.1/chunk-0'")
    neighbors_parser.set_defaults(func=handle_neighbors)

    stats_parser = subparsers.add_parser("stats", help="Show ingestion queue statistics")
    stats_parser.set_defaults(func=handle_stats)

    reset_parser = subparsers.add_parser(
        "reset-incomplete",
        help="Re-queue completed articles with too few chunks or unnumbered sections",
    )
    reset_parser.add_argument(
        "--status",
        default=IngestionStatus.PENDING.value,
        choices=[IngestionStatus.PENDING.value, IngestionStatus.FAILED.value],
    )
    reset_parser.add_argument("--dry-run", action="store_true", help="Only list the articles")
    reset_parser.set_defaults(func=handle_reset_incomplete)

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    load_dotenv_from_root()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
