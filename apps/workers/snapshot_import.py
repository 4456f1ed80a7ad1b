"""Bootstrap of the cheater table from a published snapshot.

Used once when moving an existing ``cheaters.json`` into the database.
Usernames that already have a cheater record or a report are left alone.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import normalize_username
from apps.moderation.common import atomic, utcnow
from apps.moderation.listing import invalidate_count_cache
from apps.workers.snapshot_export import Snapshot, SnapshotFormatError, parse_snapshot, read_snapshot
from core.config import settings
from core.db import AsyncSessionLocal
from core.errors import ExternalServiceError
from models import Cheater, Report

logger = logging.getLogger(__name__)

IMPORTED_EVIDENCE = "see discord"
IMPORTED_BY = "snapshot-import"
LOOKUP_CHUNK = 500


@dataclass
class ImportResult:
    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


async def load_snapshot_source(source: str, http_client: httpx.AsyncClient | None = None) -> Snapshot:
    """
    Read a snapshot from a local path or an http(s) URL.

    Raises:
        SnapshotFormatError: If the source is missing, not JSON or of an unknown shape
        ExternalServiceError: If the URL could not be fetched
    """
    if not source.startswith(("http://", "https://")):
        if not Path(source).exists():
            raise SnapshotFormatError(f"{source} does not exist")
        return read_snapshot(source)

    client = http_client or httpx.AsyncClient(timeout=settings.codeforces_timeout)
    try:
        response = await client.get(source)
        response.raise_for_status()
        data: Any = response.json()
    except httpx.HTTPError as e:
        logger.error(f"Fetching snapshot from {source} failed: {e}")
        raise ExternalServiceError(f"Could not fetch {source}") from e
    except ValueError as e:
        raise SnapshotFormatError(f"{source} is not valid JSON: {e}") from e
    finally:
        if http_client is None:
            await client.aclose()
    return parse_snapshot(data, source)


def _chunks(items: list[str]) -> Iterable[list[str]]:
    for start in range(0, len(items), LOOKUP_CHUNK):
        yield items[start : start + LOOKUP_CHUNK]


async def import_snapshot(
    snapshot: Snapshot,
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
) -> ImportResult:
    """
    Create an active cheater for every snapshot username the database does not know.

    All inserts happen in one transaction. Any cheater row, including a
    tombstone, or any report for the username counts as known, so names
    that were appealed or are under review are never re-listed.

    Args:
        snapshot: Usernames to import
        session_factory: Session factory

    Returns:
        Added and skipped usernames, sorted
    """
    usernames = sorted({normalize_username(u) for u in snapshot.cheaters} - {""})
    result = ImportResult()

    async with session_factory() as db:
        async with atomic(db, "import_snapshot"):
            known: set[str] = set()
            for chunk in _chunks(usernames):
                known.update((await db.execute(select(Cheater.username).where(Cheater.username.in_(chunk)))).scalars())
                known.update((await db.execute(select(Report.username).where(Report.username.in_(chunk)))).scalars())

            now = utcnow()
            for username in usernames:
                if username in known:
                    result.skipped.append(username)
                    continue
                db.add(
                    Cheater(
                        username=username,
                        evidence=IMPORTED_EVIDENCE,
                        reported_at=now,
                        accepted_by=IMPORTED_BY,
                        accepted_at=now,
                        marked_for_deletion=False,
                        last_modified=now,
                    )
                )
                result.added.append(username)

    if result.added:
        await invalidate_count_cache()
    logger.info(f"Imported {len(result.added)} cheaters, skipped {len(result.skipped)} known usernames")
    return result
