#!/usr/bin/env python3
"""
Refresh rating snapshots and handles of active cheaters from Codeforces.

Usage:
  refresh_cheater_info.py            - run once
  refresh_cheater_info.py --loop     - run every RATING_REFRESH_INTERVAL seconds
"""

import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apps.codeforces.client import CodeforcesClient
from apps.workers.rating_refresh import RatingRefreshJob
from core.config import settings
from core.db import engine
from core.redis import close_redis


async def main() -> None:
    codeforces = CodeforcesClient()
    job = RatingRefreshJob(codeforces)
    try:
        if "--loop" in sys.argv[1:]:
            await job.start()
        else:
            stats = await job.run()
            print("✅ Rating refresh finished")
            print(f"   Updated: {stats.updated}")
            print(f"   Tombstoned: {stats.tombstoned}")
            print(f"   Skipped: {stats.skipped}")
    finally:
        await codeforces.close()
        await close_redis()
        await engine.dispose()


if __name__ == "__main__":
    # Load environment variables from .env file
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    asyncio.run(main())
