#!/usr/bin/env python
"""Process uploaded PDF documents into the vector index.

Usage:
    python scripts/reindex.py                       # Process every 'uploaded' document
    python scripts/reindex.py --document-id 12      # Process one document
    python scripts/reindex.py --document-id 12 --force   # Re-process a processed document
    python scripts/reindex.py --retry-failed        # Also retry 'failed' documents
    python scripts/reindex.py --archive-days 30     # Also archive conversations idle for 30 days
"""
import argparse
import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from pdfchat.config import Settings
from pdfchat.context import build_context, configure_logging
from pdfchat.errors import ConfigError

logger = structlog.get_logger()


def print_header(message: str):
    print(f"\n{'=' * 60}")
    print(f"  {message}")
    print(f"{'=' * 60}\n")


def print_document_result(document: dict):
    status = document["status"]
    marker = "✅" if status == "processed" else "❌"
    line = f"  {marker} #{document['id']} {document['original_filename'][:40]:<40} {status}"
    if status == "processed":
        line += f" ({document['processed_chunks']}/{document['total_chunks']} chunks)"
    elif document.get("error_message"):
        line += f" - {document['error_message']}"
    print(line)


async def main():
    """Main entry point for the processing script."""
    parser = argparse.ArgumentParser(
        description="Process uploaded PDF documents into the vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py                       # Process pending uploads
  python scripts/reindex.py --document-id 12      # Process one document
  python scripts/reindex.py --document-id 12 --force
  python scripts/reindex.py --archive-days 30
        """,
    )

    parser.add_argument(
        "--document-id",
        type=int,
        default=None,
        help="Process a single document instead of every pending upload",
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-process a document that is already processed",
    )

    parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Also retry documents whose previous run failed",
    )

    parser.add_argument(
        "--archive-days",
        type=int,
        default=None,
        help="Archive conversations with no activity for this many days",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug log output",
    )

    args = parser.parse_args()

    try:
        settings = Settings.from_env()
        configure_logging("DEBUG" if args.verbose else settings.log_level)
        context = build_context(settings)

        print("\n📋 Configuration:")
        print(f"   Database:         {settings.db_path}")
        print(f"   Embedding model:  {settings.embedding_model}")
        print(f"   PDF extractor:    {settings.pdf_extractor}")
        print(f"   Chunk size:       {settings.chunk_size} chars")
        print(f"   Chunk overlap:    {settings.chunk_overlap} chars")

        started = datetime.now()

        if args.document_id is not None:
            document_ids = [args.document_id]
        else:
            statuses = ["uploaded", "failed"] if args.retry_failed else ["uploaded"]
            document_ids = [
                document["id"]
                for status in statuses
                for document in context.db.list_documents(status=status, limit=1000)
            ]

        print_header(f"Processing {len(document_ids)} document(s)")

        failed = 0
        for document_id in document_ids:
            ran = await context.ingest.process_document(document_id, force=args.force)
            document = context.db.get_document(document_id)

            if document is None:
                print(f"  ❌ #{document_id} not found")
                failed += 1
                continue

            if not ran:
                print(f"  ⏭️  #{document_id} skipped (status: {document['status']})")
                continue

            print_document_result(document)
            if document["status"] != "processed":
                failed += 1

        if args.archive_days is not None:
            archived = context.conversations.archive_inactive(timedelta(days=args.archive_days))
            print(f"\n🗄️  Archived {archived} conversation(s) idle for {args.archive_days}+ days")

        elapsed = (datetime.now() - started).total_seconds()
        print_header(f"Done in {elapsed:.1f}s")

        if failed > 0:
            print(f"⚠️  Warning: {failed} document(s) failed to process.")
            print(f"   Check logs for details.\n")
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Processing cancelled by user.\n")
        sys.exit(1)

    except ConfigError as e:
        print(f"\n❌ Configuration error: {e.message}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
