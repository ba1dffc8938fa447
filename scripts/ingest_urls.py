#!/usr/bin/env python
"""Ingest web pages into the configured chunk store.

Usage:
    python scripts/ingest_urls.py --city Tokyo https://example.com/passes
    python scripts/ingest_urls.py --city Osaka --file urls.txt --tags passes,rail
    python scripts/ingest_urls.py --city Kyoto --verbose URL [URL ...]
"""
import argparse
import asyncio
import sys
from pathlib import Path
from datetime import datetime
from typing import List

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import config
from app.log import configure_logging
from app.rag.ingest import IngestPipeline, IngestReport
from app.rag.store import get_chunk_store, close_chunk_store
import structlog

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, url: str):
        """Update progress."""
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {url[-30:]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, report: IngestReport):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print(f"  Ingestion Complete!")
        print(f"{'=' * 60}\n")

        for result in report.results:
            marker = "✅" if result.ok else "❌"
            detail = f"{result.chunks} chunks" if result.ok else result.error
            print(f"  {marker} {result.url}  ({detail})")

        print()
        print(f"  URLs ingested:   {len(report.results) - len(report.failed)}")
        print(f"  URLs failed:     {len(report.failed)}")
        print(f"  Chunks stored:   {report.ingested_chunks}")
        print(f"  Time elapsed:    {elapsed_seconds:.1f}s")
        print(f"\n{'=' * 60}\n")

        if report.failed:
            print(f"⚠️  Warning: {len(report.failed)} URL(s) failed to ingest.")
            print(f"   Check logs for details.\n")


def read_urls(args: argparse.Namespace) -> List[str]:
    """Collect URLs from positional arguments and an optional file."""
    urls = list(args.urls)
    if args.file:
        for line in args.file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest web pages for the transit RAG pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest_urls.py --city Tokyo https://example.com/passes
  python scripts/ingest_urls.py --city Osaka --file urls.txt --tags passes,rail
        """,
    )

    parser.add_argument("urls", nargs="*", help="Page URLs to ingest")
    parser.add_argument("--city", required=True, help="City the pages describe")
    parser.add_argument(
        "--category",
        default=config.DEFAULT_CATEGORY,
        help=f"Category (default: {config.DEFAULT_CATEGORY})",
    )
    parser.add_argument(
        "--tags",
        default="",
        help="Comma-separated tags stored with every chunk",
    )
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="File with one URL per line (# comments allowed)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress output",
    )

    args = parser.parse_args()
    configure_logging(level="DEBUG" if args.verbose else "WARNING", fmt="console")

    urls = read_urls(args)
    if not urls:
        parser.error("no URLs given")

    tags = [tag.strip() for tag in args.tags.split(",") if tag.strip()]
    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\n📋 Configuration:")
        print(f"   Store backend:    {config.VECTOR_STORE}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")
        print(f"   City / category:  {args.city} / {args.category}")

        progress.start(f"Ingesting {len(urls)} URL(s)")

        pipeline = IngestPipeline(store=await get_chunk_store())
        report = await pipeline.ingest_urls(
            urls,
            city=args.city,
            category=args.category,
            tags=tags,
            progress_callback=progress.update,
        )

        progress.finish(report)

        if report.failed:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    finally:
        await close_chunk_store()


if __name__ == "__main__":
    asyncio.run(main())
