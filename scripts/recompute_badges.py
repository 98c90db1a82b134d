#!/usr/bin/env python3
"""
Recompute trust badges.

--mode all recomputes every place (backfill); --mode recent only places
whose record, reviews or photos changed in the last --hours hours.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from place_pipeline.badges.recompute import BadgeSweeper
from place_pipeline.config import settings
from place_pipeline.db.session import engine
from place_pipeline.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def main(mode: str, hours: int) -> int:
    sweeper = BadgeSweeper()
    try:
        if mode == "all":
            summary = await sweeper.recompute_all()
        else:
            summary = await sweeper.recompute_recent(hours)
    except Exception as e:
        logger.error(f"Badge sweep could not start: {e}", exc_info=True)
        return 1
    finally:
        await engine.dispose()

    print(json.dumps({"mode": mode, **summary.to_response()}, indent=2))
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Recompute place trust badges")
    parser.add_argument("--mode", choices=["all", "recent"], default="recent")
    parser.add_argument(
        "--hours",
        type=int,
        default=settings.badge_recent_default_hours,
        help="Window for --mode recent",
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(main(args.mode, args.hours)))
