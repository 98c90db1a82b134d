#!/usr/bin/env python3
"""
Run one quality scan batch.

Scores up to --limit places (never scored first, then oldest) and queues
refresh jobs for places below the quality threshold. Intended for an
external job runner when the HTTP cron trigger is not used.
"""

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
from place_pipeline.quality.scan import run_quality_scan

logger = logging.getLogger(__name__)


async def main(limit: int) -> int:
    try:
        summary = await run_quality_scan(limit)
    except Exception as e:
        logger.error(f"Quality scan could not start: {e}", exc_info=True)
        return 1
    finally:
        await engine.dispose()

    print(json.dumps(summary.to_response(), indent=2))
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run one place quality scan batch")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.quality_scan_default_limit,
        help="Maximum number of places to score",
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(main(args.limit)))
