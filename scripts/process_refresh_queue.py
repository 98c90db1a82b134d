#!/usr/bin/env python3
"""Process queued place refresh jobs."""

import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from place_pipeline.config import settings
from place_pipeline.db.session import engine
from place_pipeline.logging_config import setup_logging
from place_pipeline.worker.refresh_worker import run_refresh_worker

logger = logging.getLogger(__name__)


async def main(limit: int) -> int:
    try:
        summary = await run_refresh_worker(limit)
    except Exception as e:
        logger.error(f"Refresh run could not start: {e}", exc_info=True)
        return 1
    finally:
        await engine.dispose()

    print(json.dumps(summary.to_response(), indent=2))
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Process queued place refresh jobs")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.refresh_default_limit,
        help="Maximum number of jobs to claim",
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(main(args.limit)))
