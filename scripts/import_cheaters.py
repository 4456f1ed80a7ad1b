#!/usr/bin/env python3
"""
Import cheater usernames from a published snapshot into the database.

Usage:
  import_cheaters.py [source]    - path or http(s) URL of a cheaters.json
                                   (defaults to SNAPSHOT_PATH)
"""

import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apps.workers.snapshot_export import SnapshotFormatError
from apps.workers.snapshot_import import import_snapshot, load_snapshot_source
from core.config import settings
from core.db import engine
from core.errors import ExternalServiceError
from core.redis import close_redis


async def main() -> int:
    source = sys.argv[1] if len(sys.argv) > 1 else settings.snapshot_path
    try:
        snapshot = await load_snapshot_source(source)
        print(f"📊 Found {len(snapshot.cheaters)} cheaters in {source}")
        result = await import_snapshot(snapshot)
    except (SnapshotFormatError, ExternalServiceError) as e:
        print(f"❌ Cannot read snapshot: {e}")
        return 1
    finally:
        await close_redis()
        await engine.dispose()

    print(f"✅ Added: {len(result.added)} cheaters")
    print(f"⏭️  Skipped: {len(result.skipped)} (already known)")
    for username in result.added:
        print(f"  + {username}")
    return 0


if __name__ == "__main__":
    # Load environment variables from .env file
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    sys.exit(asyncio.run(main()))
