"""
Script to run the grant sync for all configured providers
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import engine, async_session_maker
from core.exceptions import ConfigurationError
from core.logging import setup_logging
from ingestion.coordinator import RunCoordinator
from models.base import SyncMode

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync funding opportunities from external providers")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in SyncMode],
        default=SyncMode.INCREMENTAL.value,
        help="full resets checkpoints, resume continues from them, incremental uses the lookback window"
    )
    parser.add_argument("--source", action="append", dest="sources", help="Limit the run to this provider (repeatable)")
    return parser.parse_args(argv)


async def run_sync(mode: SyncMode, sources=None) -> int:
    """Run the sync; returns the process exit code"""
    coordinator = RunCoordinator(async_session_maker)

    try:
        results = await coordinator.run(mode, only=sources)
    except ConfigurationError as e:
        logger.error(f"Sync pipeline error: {e.message}", extra={"error_context": e.to_dict()})
        return 1
    finally:
        await engine.dispose()

    if not results:
        logger.warning("No active data sources configured. Nothing synced.")

    for result in results:
        logger.info(
            f"{result.source}: status={result.status} total={result.total} "
            f"loaded={result.loaded} updated={result.updated} errors={result.errors} "
            f"duration={result.duration}s"
        )

    logger.info("All provider syncs completed")
    return 0


if __name__ == "__main__":
    setup_logging()
    args = parse_args()
    sys.exit(asyncio.run(run_sync(SyncMode(args.mode), args.sources)))
