#!/usr/bin/env python
"""Operator CLI for LIMS sample sync.

Runs sync operations outside the API process, e.g. from cron or during
an initial backfill.

Usage:
    cd backend && python scripts/sync_samples.py import
    cd backend && python scripts/sync_samples.py process-queue --batch-size 100
    cd backend && python scripts/sync_samples.py requeue --include-processing
    cd backend && python scripts/sync_samples.py status
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment
load_dotenv()


async def run_import() -> int:
    """Import every sample from the LIMS."""
    from samplesync.integrations.sample_sync import get_sample_sync_service

    service = get_sample_sync_service()
    metadata = await service.get_metadata()
    if metadata.import_in_progress:
        logger.error("An import is already in progress")
        return 1

    result = await service.import_all()
    logger.info(
        "Import finished: %d/%d imported, %d errors",
        result["imported"],
        result["total"],
        len(result["errors"]),
    )
    for error in result["errors"]:
        logger.warning("  %s", error)
    return 0 if not result["errors"] else 2


async def run_process_queue(batch_size: int | None) -> int:
    """Drain one batch of the sync queue."""
    from samplesync.integrations.sample_sync import get_sample_sync_service

    result = await get_sample_sync_service().process_queue(batch_size=batch_size)
    logger.info("Queue run: %d processed, %d failed", result["processed"], result["failed"])
    for error in result["errors"]:
        logger.warning("  %s", error)
    return 0 if not result["failed"] else 2


async def run_requeue(include_processing: bool) -> int:
    """Reset failed (and optionally stuck) queue items to pending."""
    from samplesync.integrations.sample_sync import get_sample_sync_service

    count = await get_sample_sync_service().requeue_failed(include_processing=include_processing)
    logger.info("Requeued %d items", count)
    return 0


async def run_status() -> int:
    """Print sync status as JSON."""
    from samplesync.integrations.sample_sync import get_sample_sync_service

    service = get_sample_sync_service()
    summary = await service.get_sync_status()
    metadata = await service.get_metadata()
    print(json.dumps({**summary.to_dict(), "metadata": metadata.to_dict()}, indent=2))
    return 0


async def run(args: argparse.Namespace) -> int:
    """Dispatch the selected command."""
    from samplesync.core.config import settings

    try:
        settings.validate_startup()
    except ValueError as e:
        logger.error("%s", e)
        return 1

    try:
        if args.command == "import":
            return await run_import()
        if args.command == "process-queue":
            return await run_process_queue(args.batch_size)
        if args.command == "requeue":
            return await run_requeue(args.include_processing)
        return await run_status()
    except Exception as e:
        logger.exception("Sync command failed: %s", e)
        return 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run LIMS sample sync operations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables Required:
    SUPABASE_URL                - Supabase project URL
    SUPABASE_SERVICE_ROLE_KEY   - Supabase service role key
    LIMS_API_URL                - LIMS REST API base URL
    LIMS_API_KEY                - LIMS API key
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("import", help="Import every sample from the LIMS")

    queue_parser = subparsers.add_parser("process-queue", help="Drain one sync queue batch")
    queue_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Maximum number of queue items to process",
    )

    requeue_parser = subparsers.add_parser("requeue", help="Reset failed queue items to pending")
    requeue_parser.add_argument(
        "--include-processing",
        action="store_true",
        help="Also release items stuck in processing",
    )

    subparsers.add_parser("status", help="Print sync status")

    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
