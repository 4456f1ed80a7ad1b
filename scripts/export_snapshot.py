#!/usr/bin/env python3
"""
Export active cheater usernames to the published snapshot file.

Usage:
  export_snapshot.py [path]    - merge changes since the last export into path
                                 (defaults to SNAPSHOT_PATH)
"""

import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from apps.workers.snapshot_export import SnapshotExporter, SnapshotFormatError
from core.config import settings
from core.db import engine
from core.redis import close_redis


async def main() -> int:
    path = sys.argv[1] if len(sys.argv) > 1 else settings.snapshot_path
    exporter = SnapshotExporter(path=path)
    try:
        result = await exporter.export()
    except SnapshotFormatError as e:
        print(f"❌ Cannot read existing snapshot: {e}")
        return 1
    finally:
        await close_redis()
        await engine.dispose()

    if result.written:
        print(f"✅ Snapshot written to {exporter.path}")
        print(f"   Cheaters: {result.total} (+{result.added}, -{result.removed})")
        print(f"   Records processed: {result.processed}")
        print(f"   Tombstones purged: {result.purged}")
    else:
        print("No changes detected, snapshot not updated")
    return 0


if __name__ == "__main__":
    # Load environment variables from .env file
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    sys.exit(asyncio.run(main()))
