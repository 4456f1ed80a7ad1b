"""Moderator operations on confirmed cheaters."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apps.moderation.common import atomic, delete_pending_reports, utcnow
from apps.moderation.listing import invalidate_count_cache
from core.auth import Principal, require_moderator
from core.errors import ConflictError, NotFoundError
from core.metrics import cheaters_moved_to_pending_total
from models import Cheater, DeletionReason, Report, ReportStatus

logger = logging.getLogger(__name__)

CHEATER_NOT_FOUND_TEXT = "Cheater not found."


async def _load_for_update(db: AsyncSession, cheater_id: int) -> Cheater:
    cheater = (
        await db.execute(select(Cheater).where(Cheater.id == cheater_id).with_for_update())
    ).scalar_one_or_none()
    if cheater is None:
        raise NotFoundError(CHEATER_NOT_FOUND_TEXT)
    return cheater


async def move_to_pending(db: AsyncSession, principal: Principal, cheater_id: int) -> Report:
    """
    Send a confirmed cheater back to the report queue.

    Pending reports for the username are replaced by a single new report
    carrying the cheater's evidence and rating snapshot. The report is
    stamped now so it joins the back of the queue. The cheater is
    tombstoned with reason ``moved_to_pending``.

    Args:
        db: Database session
        principal: Acting moderator, recorded as ``moved_to_pending_by``
        cheater_id: Cheater to move

    Returns:
        The new pending report

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the cheater does not exist
        ConflictError: If the cheater is already tombstoned
    """
    require_moderator(principal)

    async with atomic(db, "move_to_pending"):
        cheater = await _load_for_update(db, cheater_id)
        if not cheater.is_active:
            raise ConflictError(f'User "{cheater.username}" is no longer an active cheater.')

        now = utcnow()
        await delete_pending_reports(db, cheater.username)

        report = Report(
            username=cheater.username,
            evidence=cheater.evidence,
            status=ReportStatus.PENDING,
            reported_at=now,
            info=cheater.info,
            moved_to_pending_by=principal.name,
            moved_to_pending_at=now,
        )
        db.add(report)
        cheater.tombstone(DeletionReason.MOVED_TO_PENDING, now)
        await db.flush()

    await invalidate_count_cache()
    cheaters_moved_to_pending_total.inc()
    logger.info(f"Cheater {cheater_id} ({cheater.username}) moved to pending by {principal.name}")
    return report


async def set_admin_note(db: AsyncSession, principal: Principal, cheater_id: int, note: str | None) -> Cheater:
    """
    Replace a cheater's admin note; blank notes are stored as null.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the cheater does not exist
    """
    require_moderator(principal)

    async with atomic(db, "set_admin_note"):
        cheater = await _load_for_update(db, cheater_id)
        cheater.admin_note = (note or "").strip() or None
        cheater.last_modified = utcnow()

    logger.info(f"Admin note of cheater {cheater_id} updated by {principal.name}")
    return cheater
