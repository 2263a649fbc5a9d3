"""Command-line interface for markprompt-sync."""

import argparse
import asyncio
import sys

import structlog
import uvicorn

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.errors import MarkpromptError
from markprompt_sync.ingestion.embeddings import get_embedder
from markprompt_sync.ingestion.pipeline import IngestionPipeline
from markprompt_sync.limits.quota import QuotaGate
from markprompt_sync.observability import configure_logging
from markprompt_sync.retrieval import SectionRetriever
from markprompt_sync.storage import Store
from markprompt_sync.sync.queue import SyncQueue
from markprompt_sync.sync.runner import SyncRunner
from markprompt_sync.sync.tasks import drain

logger = structlog.get_logger()


def build_runner(settings: Settings, store: Store) -> SyncRunner:
    embedder = get_embedder(settings)
    return SyncRunner(
        store,
        SyncQueue(store),
        IngestionPipeline(store, embedder, settings),
        QuotaGate(store, settings),
        settings,
    )


def cmd_serve(args):
    """Start the API server."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port

    logger.info("starting_server", host=host, port=port)

    uvicorn.run(
        "markprompt_sync.api.app:app",
        host=host,
        port=port,
        reload=args.reload,
    )


async def _sync(source_id: str | None) -> int:
    settings = get_settings()
    store = Store.from_settings(settings, elevated=True)
    try:
        await store.create_all()
        runner = build_runner(settings, store)

        if source_id:
            job = await runner.run(await runner.get_source(source_id))
        else:
            job = await runner.sync_next()
            if job is None:
                logger.info("nothing_to_sync")
                return 0

        for entry in job.logs:
            print(f"[{entry.timestamp.isoformat()}] {entry.level:5} {entry.message}")
        logger.info("sync_finished", sync_queue_id=job.id, status=job.status.value)
        return 0 if job.status.value == "succeeded" else 1
    finally:
        await drain(timeout=10)
        await store.dispose()


def cmd_sync(args):
    """Sync one source now."""
    sys.exit(asyncio.run(_sync(args.source_id)))


def cmd_sync_next(args):
    """Sync the source that waited longest."""
    sys.exit(asyncio.run(_sync(None)))


async def _search(project_id: str, query: str, limit: int, semantic: bool) -> None:
    settings = get_settings()
    store = Store.from_settings(settings)
    try:
        retriever = SectionRetriever(store, get_embedder(settings), settings)
        if semantic:
            results = await retriever.match_sections(project_id, query, count=limit)
        else:
            results = await retriever.search(project_id, query, limit=limit)
    finally:
        await store.dispose()

    print(f"\n Query: {query} | {len(results)} results\n")
    for i, result in enumerate(results, 1):
        print(f"{i}. {result.title or result.path}")
        print(f"    {result.source_type} | {result.path} #{result.section_index}")
        if semantic:
            print(f"    Similarity: {result.similarity:.4f}")
        print(f"   {result.content[:200].replace(chr(10), ' ')}...")
        print()


def cmd_search(args):
    """Test retrieval from command line."""
    asyncio.run(_search(args.project_id, args.query, args.limit, args.semantic))


def main():
    """Main CLI entrypoint."""
    settings = get_settings()
    configure_logging(json=settings.log_json, debug=settings.debug)

    parser = argparse.ArgumentParser(
        prog="markprompt-sync",
        description="Content sync, checksum-diff ingestion and rate-limited retrieval",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", type=str, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    serve_parser.set_defaults(func=cmd_serve)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync one source")
    sync_parser.add_argument("source_id", help="Source ID")
    sync_parser.set_defaults(func=cmd_sync)

    # sync-next command
    next_parser = subparsers.add_parser("sync-next", help="Sync the source that waited longest")
    next_parser.set_defaults(func=cmd_sync_next)

    # search command
    search_parser = subparsers.add_parser("search", help="Test retrieval from CLI")
    search_parser.add_argument("project_id", help="Project ID")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", "-k", type=int, default=5, help="Number of results")
    search_parser.add_argument(
        "--semantic", action="store_true", help="Match sections by similarity instead of text"
    )
    search_parser.set_defaults(func=cmd_search)

    args = parser.parse_args()
    try:
        args.func(args)
    except MarkpromptError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
