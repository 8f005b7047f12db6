# =============================================================================
# fieldkb/cli/kb.py -- Knowledge Base Operator CLI
# =============================================================================
#
# Standalone CLI for building and inspecting the support knowledge base that
# the chat assistant consults before answering "how do I ..." questions.
#
# Supported subcommands:
#
#   ingest-docs     -- Ingest every markdown file under a folder (source DOCS)
#   job-status      -- Show the state of a folder ingestion job
#   ingest-faqs     -- Ingest FAQ entries from a JSON file or the built-in seeds
#   reindex         -- Force every document of a source to be re-embedded
#   search          -- Run a retrieval query and print the hits
#   stats           -- Show document/chunk/FAQ counts and cache statistics
#   migrate-vector  -- Convert stored embeddings to the sqlite-vec format
#   cache-cleanup   -- Remove expired embedding cache entries
#   cache-clear     -- Remove every embedding cache entry
#
# Usage examples:
#   python -m fieldkb.cli ingest-docs --path ./docs
#   python -m fieldkb.cli ingest-faqs --seeds
#   python -m fieldkb.cli search "como faço para criar um cliente" --top-k 3
#   python -m fieldkb.cli reindex --source DOCS
# =============================================================================

"""Operator CLI for the fieldkb knowledge base.

Usage::

    python -m fieldkb.cli ingest-docs --path ./docs
    python -m fieldkb.cli ingest-faqs --file faqs.json
    python -m fieldkb.cli search "how do I send a quote?"
    python -m fieldkb.cli stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from fieldkb.config.settings import Settings
from fieldkb.models.kb import FaqInput, KbSource, SearchOptions
from fieldkb.utils.errors import KnowledgeBaseError
from fieldkb.utils.logging import configure_logging_from_settings


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest_docs(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Ingest a folder of markdown files."""
    print(f"Ingesting markdown files from: {args.path}")
    progress = await kb.ingestion.ingest_docs_folder(args.path)

    print("\nIngestion complete:")
    print(f"  Job:        {progress.job_id}")
    print(f"  Status:     {progress.status}")
    print(f"  Files:      {progress.total_docs}")
    print(f"  Processed:  {progress.processed_docs}")
    print(f"  Failed:     {progress.failed_docs}")
    if progress.error_message:
        print(f"  Error:      {progress.error_message}")
    return 0 if progress.status == "COMPLETED" else 1


async def _handle_job_status(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Print the persisted state of a folder ingestion job."""
    progress = await kb.ingestion.get_job_status(args.id)
    if progress is None:
        print(f"No index job with id {args.id}", file=sys.stderr)
        return 1

    print(f"Job {progress.job_id}")
    print(f"  Status:     {progress.status}")
    print(f"  Files:      {progress.total_docs}")
    print(f"  Processed:  {progress.processed_docs}")
    print(f"  Failed:     {progress.failed_docs}")
    print(f"  Started:    {progress.started_at}")
    if progress.completed_at:
        print(f"  Completed:  {progress.completed_at}")
    if progress.error_message:
        print(f"  Error:      {progress.error_message}")
    return 0


def _load_faqs(args: argparse.Namespace) -> list[FaqInput]:
    if args.seeds:
        from fieldkb.data.faq_seeds import FAQ_SEEDS

        return list(FAQ_SEEDS)
    raw = json.loads(Path(args.file).read_text(encoding="utf-8"))
    return [FaqInput.model_validate(item) for item in raw]


async def _handle_ingest_faqs(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Ingest FAQ entries."""
    faqs = _load_faqs(args)
    print(f"Ingesting {len(faqs)} FAQ entries")
    summary = await kb.ingestion.ingest_faqs(faqs)

    print(f"  Success: {summary.success}")
    print(f"  Failed:  {summary.failed}")
    return 0 if summary.failed == 0 else 1


async def _handle_reindex(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Reset content hashes so the next ingest re-embeds the source."""
    count = await kb.ingestion.reindex_source(KbSource(args.source))
    print(f"Marked {count} {args.source} documents for re-indexing.")
    return 0


async def _handle_search(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Run a retrieval query."""
    response = await kb.search.search(
        args.query,
        SearchOptions(
            top_k=args.top_k,
            min_score=args.min_score,
            use_reranking=not args.no_rerank,
        ),
    )

    print(f"Query: {response.query}")
    print(
        f"  {response.total_results} results in {response.search_time_ms:.0f} ms "
        f"(reranked={response.reranked}, native_vector={response.native_vector_used})"
    )
    for i, result in enumerate(response.results, 1):
        label = result.title or result.source_ref
        print(f"\n  [{i}] {result.score:.3f}  {result.source.value}  {label}")
        print(f"      {result.content[:160]!r}")

    if args.context and response.formatted_context:
        print("\n" + response.formatted_context)
    return 0


async def _handle_stats(kb) -> int:  # noqa: ANN001
    """Display knowledge base statistics."""
    stats = await kb.search.get_stats()

    print("Knowledge Base Statistics")
    print("=" * 40)
    print(f"  Documents:        {stats.total_documents}")
    print(f"  Chunks:           {stats.total_chunks}")
    print(f"  FAQs:             {stats.total_faqs}")
    print(f"  Native vector:    {stats.native_vector_enabled}")
    print(f"  Reranker:         {stats.reranker_available}")

    if stats.by_source:
        print("\n  Documents by source:")
        for source, count in sorted(stats.by_source.items()):
            print(f"    {source:<15} {count}")

    cache = stats.cache_stats
    print("\n  Embedding cache:")
    print(f"    Entries:        {cache.total_entries}")
    print(f"    Hits:           {cache.total_hits}")
    if cache.oldest_entry:
        print(f"    Oldest:         {cache.oldest_entry.isoformat()}")
        print(f"    Newest:         {cache.newest_entry.isoformat() if cache.newest_entry else '-'}")
    return 0


async def _handle_migrate_vector(kb) -> int:  # noqa: ANN001
    """Convert stored float arrays to the sqlite-vec representation."""
    result = await kb.vector_store.migrate_to_vector()
    print(f"Converted {result.chunks} chunks and {result.faqs} FAQs.")
    return 0


async def _handle_cache(args: argparse.Namespace, kb) -> int:  # noqa: ANN001
    """Maintain the embedding cache."""
    if args.command == "cache-clear":
        deleted = await kb.cache.clear()
    else:
        deleted = await kb.cache.cleanup_expired()
    print(f"Removed {deleted} cache entries.")
    return 0


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    # Deferred so ``--help`` stays fast.
    from fieldkb.main import build_knowledge_base

    try:
        kb = await build_knowledge_base(app_settings)
    except KnowledgeBaseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "ingest-docs":
            return await _handle_ingest_docs(args, kb)
        if args.command == "job-status":
            return await _handle_job_status(args, kb)
        if args.command == "ingest-faqs":
            return await _handle_ingest_faqs(args, kb)
        if args.command == "reindex":
            return await _handle_reindex(args, kb)
        if args.command == "search":
            return await _handle_search(args, kb)
        if args.command == "stats":
            return await _handle_stats(kb)
        if args.command == "migrate-vector":
            return await _handle_migrate_vector(kb)
        return await _handle_cache(args, kb)
    except KnowledgeBaseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await kb.close()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge base CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m fieldkb.cli",
        description="Build and inspect the fieldkb support knowledge base.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Knowledge base commands")

    # -- ingest-docs --
    docs_parser = subparsers.add_parser("ingest-docs", help="Ingest a folder of markdown files")
    docs_parser.add_argument("--path", required=True, help="Folder containing *.md files")

    # -- job-status --
    job_parser = subparsers.add_parser("job-status", help="Show a folder ingestion job")
    job_parser.add_argument("--id", required=True, help="Job id printed by ingest-docs")

    # -- ingest-faqs --
    faqs_parser = subparsers.add_parser("ingest-faqs", help="Ingest FAQ entries")
    faqs_source = faqs_parser.add_mutually_exclusive_group(required=True)
    faqs_source.add_argument("--file", help="JSON file with a list of FAQ objects")
    faqs_source.add_argument("--seeds", action="store_true", help="Use the built-in FAQ seeds")

    # -- reindex --
    reindex_parser = subparsers.add_parser("reindex", help="Force re-embedding of a source")
    reindex_parser.add_argument(
        "--source",
        required=True,
        choices=[s.value for s in KbSource],
        help="Source type to re-index",
    )

    # -- search --
    search_parser = subparsers.add_parser("search", help="Run a retrieval query")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--top-k", type=int, default=5, dest="top_k")
    search_parser.add_argument("--min-score", type=float, default=0.5, dest="min_score")
    search_parser.add_argument(
        "--no-rerank", action="store_true", dest="no_rerank", help="Skip the reranker"
    )
    search_parser.add_argument(
        "--context", action="store_true", help="Also print the formatted LLM context"
    )

    # -- maintenance --
    subparsers.add_parser("stats", help="Show knowledge base statistics")
    subparsers.add_parser("migrate-vector", help="Convert embeddings to sqlite-vec format")
    subparsers.add_parser("cache-cleanup", help="Remove expired embedding cache entries")
    subparsers.add_parser("cache-clear", help="Remove all embedding cache entries")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, load settings, dispatch."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging_from_settings(app_settings, log_level=args.log_level)

    exit_code = asyncio.run(_run(args, app_settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
