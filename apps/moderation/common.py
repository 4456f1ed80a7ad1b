"""Helpers shared by the moderation operations."""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.metrics import moderation_latency_seconds
from models import Cheater, Report, ReportStatus

logger = logging.getLogger(__name__)

FILL_ALL_FIELDS_TEXT = "Please fill in all fields."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@asynccontextmanager
async def atomic(db: AsyncSession, operation: str) -> AsyncIterator[AsyncSession]:
    """
    Run one moderation operation as a single transaction.

    Commits when the block finishes, rolls back and re-raises on any error.

    Args:
        db: Database session
        operation: Operation name for the latency histogram
    """
    t0 = time.perf_counter()
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        logger.debug(f"Rolled back {operation}")
        raise
    finally:
        moderation_latency_seconds.labels(operation=operation).observe(time.perf_counter() - t0)


async def get_active_cheater(db: AsyncSession, username: str, for_update: bool = False) -> Cheater | None:
    """The single non-tombstoned cheater for a username, if any."""
    stmt = select(Cheater).where(Cheater.username == username, Cheater.marked_for_deletion.is_(False))
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalars().first()


async def delete_pending_reports(db: AsyncSession, username: str) -> int:
    """Delete every pending report for a username; returns how many went."""
    result = await db.execute(
        delete(Report).where(Report.username == username, Report.status == ReportStatus.PENDING)
    )
    return result.rowcount or 0
