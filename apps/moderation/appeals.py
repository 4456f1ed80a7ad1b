"""Appeal operations: one appeal per listed user, decided by a moderator."""

import logging
from dataclasses import dataclass

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import normalize_username
from apps.moderation.common import (
    FILL_ALL_FIELDS_TEXT,
    atomic,
    delete_pending_reports,
    get_active_cheater,
    utcnow,
)
from apps.moderation.listing import invalidate_count_cache
from apps.verification.verifier import IdentityVerifier, require_ownership
from apps.workers.notifier import Notifier
from core.auth import Principal, require_moderator
from core.errors import ConflictError, InvalidRequestError, NotFoundError
from core.metrics import appeals_resolved_total, appeals_submitted_total
from models import Appeal, AppealStatus, Cheater, DeletionReason

logger = logging.getLogger(__name__)

APPEAL_PENDING_TEXT = "An appeal for this user is already pending. Please wait for admin review."
APPEAL_NOT_FOUND_TEXT = "Appeal not found. It may have been handled by another moderator."


@dataclass
class PendingAppeal:
    """A pending appeal shown next to the evidence it disputes."""

    appeal: Appeal
    evidence: str | None
    admin_note: str | None


async def submit_appeal(
    db: AsyncSession,
    verifier: IdentityVerifier,
    username: str,
    message: str,
    challenge_id: str | None = None,
    notifier: Notifier | None = None,
) -> Appeal:
    """
    File the single appeal a listed user is allowed.

    Args:
        db: Database session
        verifier: Ownership verifier for the appellant's handle
        username: Appellant's handle as typed
        message: Why the listing is wrong
        challenge_id: Verification challenge solved by the appellant
        notifier: Moderator alert sender

    Returns:
        The created appeal

    Raises:
        InvalidRequestError: On empty fields, an unlisted user or an existing appeal
        VerificationFailedError: If the ownership check failed
        ExternalServiceError: If Codeforces could not be reached
    """
    if not username or not username.strip() or not message or not message.strip():
        raise InvalidRequestError(FILL_ALL_FIELDS_TEXT)

    username = normalize_username(username)

    if await get_active_cheater(db, username) is None:
        raise InvalidRequestError(
            f'User "{username}" is not in the cheater database. Only users marked as cheaters can appeal.'
        )

    existing = (await db.execute(select(Appeal).where(Appeal.username == username))).scalar_one_or_none()
    if existing is not None:
        if existing.status == AppealStatus.DECLINED:
            raise InvalidRequestError("You can only appeal once. Your previous appeal was declined.")
        raise InvalidRequestError(APPEAL_PENDING_TEXT)

    await require_ownership(verifier, challenge_id, username)

    now = utcnow()
    try:
        async with atomic(db, "submit_appeal"):
            appeal = Appeal(
                username=username,
                message=message.strip(),
                status=AppealStatus.PENDING,
                submitted_at=now,
                last_modified=now,
            )
            db.add(appeal)
            await db.flush()
    except IntegrityError as e:
        # Another submission for the same user committed first
        raise InvalidRequestError(APPEAL_PENDING_TEXT) from e

    if challenge_id:
        await verifier.consume(challenge_id)
    appeals_submitted_total.inc()
    logger.info(f"Appeal submitted: id={appeal.id}, username={username}")

    if notifier is not None:
        await notifier.appeal_submitted(appeal)
    return appeal


async def _load_pending(db: AsyncSession, appeal_id: int) -> Appeal:
    appeal = (
        await db.execute(select(Appeal).where(Appeal.id == appeal_id).with_for_update())
    ).scalar_one_or_none()
    if appeal is None:
        raise NotFoundError(APPEAL_NOT_FOUND_TEXT)
    if appeal.status != AppealStatus.PENDING:
        raise ConflictError("Appeal was already declined.")
    return appeal


async def accept_appeal(db: AsyncSession, principal: Principal, appeal_id: int) -> None:
    """
    Accept an appeal: tombstone the cheater and forget the appeal.

    Pending reports for the username are deleted as well so the user does
    not reappear in the queue.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the appeal does not exist
        ConflictError: If the appeal was already declined
    """
    require_moderator(principal)

    async with atomic(db, "accept_appeal"):
        appeal = await _load_pending(db, appeal_id)
        username = appeal.username

        cheater = await get_active_cheater(db, username, for_update=True)
        if cheater is not None:
            cheater.tombstone(DeletionReason.APPEAL_ACCEPTED)
        else:
            logger.warning(f"Appeal {appeal_id} accepted but {username} has no active cheater record")

        await delete_pending_reports(db, username)
        await db.delete(appeal)

    await invalidate_count_cache()
    appeals_resolved_total.labels(decision="accepted").inc()
    logger.info(f"Appeal {appeal_id} ({username}) accepted by {principal.name}")


async def decline_appeal(db: AsyncSession, principal: Principal, appeal_id: int) -> Appeal:
    """
    Decline an appeal. The row stays so the user cannot appeal again.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the appeal does not exist
        ConflictError: If the appeal was already declined
    """
    require_moderator(principal)

    async with atomic(db, "decline_appeal"):
        appeal = await _load_pending(db, appeal_id)
        appeal.status = AppealStatus.DECLINED
        appeal.declined_by = principal.name
        appeal.last_modified = utcnow()

    appeals_resolved_total.labels(decision="declined").inc()
    logger.info(f"Appeal {appeal_id} ({appeal.username}) declined by {principal.name}")
    return appeal


async def list_pending_appeals(db: AsyncSession, principal: Principal) -> list[PendingAppeal]:
    """
    Pending appeals, oldest first, with the disputed evidence and admin note.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
    """
    require_moderator(principal)

    stmt = (
        select(Appeal, Cheater.evidence, Cheater.admin_note)
        .outerjoin(
            Cheater,
            and_(Cheater.username == Appeal.username, Cheater.marked_for_deletion.is_(False)),
        )
        .where(Appeal.status == AppealStatus.PENDING)
        .order_by(Appeal.submitted_at.asc(), Appeal.id.asc())
    )
    rows = (await db.execute(stmt)).all()
    return [PendingAppeal(appeal=row[0], evidence=row[1], admin_note=row[2]) for row in rows]
