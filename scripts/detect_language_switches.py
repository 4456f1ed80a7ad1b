#!/usr/bin/env python3
"""
File pending reports for contestants who switched languages mid-problem.

Usage:
  detect_language_switches.py CONTEST_ID [CONTEST_ID ...]
"""

import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apps.codeforces.client import CodeforcesClient
from apps.workers.language_switches import LanguageSwitchDetector
from core.config import settings
from core.db import engine
from core.redis import close_redis


async def main(contest_ids: list[int]) -> None:
    codeforces = CodeforcesClient()
    try:
        stats = await LanguageSwitchDetector(codeforces).run(contest_ids)
    finally:
        await codeforces.close()
        await close_redis()
        await engine.dispose()

    print(f"✅ Finished {stats.contests} contest(s)")
    print(f"   Switches found: {stats.switches}")
    print(f"   Reports filed: {stats.reports}")
    print(f"   Skipped (already listed or pending): {stats.skipped}")
    if stats.failed_contests:
        print(f"❌ Contests failed: {stats.failed_contests}")


if __name__ == "__main__":
    # Load environment variables from .env file
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if len(sys.argv) < 2 or not all(arg.isdigit() for arg in sys.argv[1:]):
        print(__doc__)
        sys.exit(1)

    asyncio.run(main([int(arg) for arg in sys.argv[1:]]))
