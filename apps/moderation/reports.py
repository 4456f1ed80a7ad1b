"""Report operations: submission, acceptance and decline."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import CodeforcesClient, evidence_has_link, normalize_username
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
from core.config import settings
from core.errors import ConflictError, InvalidRequestError, NotFoundError, VerificationFailedError
from core.metrics import duplicate_reports_cleaned_total, reports_resolved_total, reports_submitted_total
from models import Cheater, Report, ReportStatus

logger = logging.getLogger(__name__)

EVIDENCE_LINK_TEXT = (
    "Evidence must include at least one link (either a plain URL like https://... "
    "or a markdown link like [text](https://...))."
)
ALREADY_CHEATER_TEXT = "User is already marked as a cheater in the database."
REPORT_NOT_FOUND_TEXT = "Report not found. It may have been handled by another moderator."


async def submit_report(
    db: AsyncSession,
    codeforces: CodeforcesClient,
    username: str,
    evidence: str,
    reporter_handle: str | None = None,
    challenge_id: str | None = None,
    verifier: IdentityVerifier | None = None,
    notifier: Notifier | None = None,
) -> Report:
    """
    File a new pending report against a Codeforces handle.

    Args:
        db: Database session
        codeforces: Codeforces client used for the existence check
        username: Reported handle as typed
        evidence: Evidence text with at least one link
        reporter_handle: Reporter's own handle, needed when reports require verification
        challenge_id: Verification challenge solved by the reporter
        verifier: Ownership verifier
        notifier: Moderator alert sender

    Returns:
        The created report

    Raises:
        InvalidRequestError: On empty fields, missing link, unknown handle or an active cheater
        VerificationFailedError: If reports require verification and it failed
        ExternalServiceError: If Codeforces could not be reached
    """
    if not username or not username.strip() or not evidence or not evidence.strip():
        raise InvalidRequestError(FILL_ALL_FIELDS_TEXT)
    if not evidence_has_link(evidence):
        raise InvalidRequestError(EVIDENCE_LINK_TEXT)

    username = normalize_username(username)
    validation = await codeforces.validate_username(username)
    if not validation.exists:
        raise InvalidRequestError(validation.error or f'Codeforces user "{username}" does not exist.')

    if await get_active_cheater(db, username) is not None:
        raise InvalidRequestError(
            f'User "{username}" is already marked as a cheater in the database. No additional reports are needed.'
        )

    if not settings.allow_duplicate_pending_reports:
        pending = await db.execute(
            select(Report.id).where(Report.username == username, Report.status == ReportStatus.PENDING).limit(1)
        )
        if pending.first() is not None:
            raise InvalidRequestError(
                f'A report for "{username}" already exists and is under review. '
                "You cannot submit another report for the same user until the current one is resolved."
            )

    if settings.require_verification_for_reports:
        if verifier is None or not reporter_handle:
            raise VerificationFailedError("Verify your own Codeforces account before reporting.")
        await require_ownership(verifier, challenge_id, reporter_handle)

    async with atomic(db, "submit_report"):
        report = Report(
            username=username,
            evidence=evidence.strip(),
            status=ReportStatus.PENDING,
            reported_at=utcnow(),
            info=validation.info,
        )
        db.add(report)
        await db.flush()

    if settings.require_verification_for_reports and verifier is not None and challenge_id:
        await verifier.consume(challenge_id)

    reports_submitted_total.inc()
    logger.info(f"Report submitted: id={report.id}, username={username}")

    if notifier is not None:
        await notifier.report_submitted(report)
    return report


async def accept_report(
    db: AsyncSession,
    principal: Principal,
    report_id: int,
    admin_note: str | None = None,
) -> int:
    """
    Promote a pending report to a cheater record.

    Reuses the most recently modified tombstone for the username when there
    is one, marks the report accepted and deletes the other pending reports
    for the username.

    Args:
        db: Database session
        principal: Acting moderator
        report_id: Report to accept
        admin_note: Optional moderator note shown next to the cheater

    Returns:
        Number of duplicate pending reports that were deleted

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the report does not exist
        ConflictError: If the report is no longer pending
        InvalidRequestError: If the username already has an active cheater
    """
    require_moderator(principal)
    note = (admin_note or "").strip() or None

    try:
        async with atomic(db, "accept_report"):
            report = (
                await db.execute(select(Report).where(Report.id == report_id).with_for_update())
            ).scalar_one_or_none()
            if report is None:
                raise NotFoundError(REPORT_NOT_FOUND_TEXT)
            if report.status != ReportStatus.PENDING:
                raise ConflictError("Report was already handled.")

            if await get_active_cheater(db, report.username) is not None:
                raise InvalidRequestError(ALREADY_CHEATER_TEXT)

            now = utcnow()
            tombstone = (
                await db.execute(
                    select(Cheater)
                    .where(Cheater.username == report.username, Cheater.marked_for_deletion.is_(True))
                    .order_by(Cheater.last_modified.desc(), Cheater.id.desc())
                    .limit(1)
                    .with_for_update()
                )
            ).scalar_one_or_none()

            if tombstone is not None:
                cheater = tombstone
                cheater.marked_for_deletion = False
                cheater.deletion_reason = None
                cheater.deletion_timestamp = None
                cheater.evidence = report.evidence
                cheater.admin_note = note
                cheater.reported_at = report.reported_at
                cheater.accepted_by = principal.name
                cheater.accepted_at = now
                cheater.last_modified = now
                if report.info is not None:
                    cheater.info = report.info
            else:
                cheater = Cheater(
                    username=report.username,
                    evidence=report.evidence,
                    admin_note=note,
                    reported_at=report.reported_at,
                    accepted_by=principal.name,
                    accepted_at=now,
                    marked_for_deletion=False,
                    last_modified=now,
                    info=report.info,
                )
                db.add(cheater)

            report.status = ReportStatus.ACCEPTED
            await db.flush()

            duplicates = await delete_pending_reports(db, report.username)
    except IntegrityError as e:
        # A concurrent accept committed an active record first
        logger.warning(f"Accept of report {report_id} lost a race: {e}")
        raise InvalidRequestError(ALREADY_CHEATER_TEXT) from e

    await invalidate_count_cache()
    reports_resolved_total.labels(action="accepted").inc()
    if duplicates:
        duplicate_reports_cleaned_total.inc(duplicates)
    logger.info(
        f"Report {report_id} accepted by {principal.name}: username={cheater.username}, "
        f"reused_tombstone={tombstone is not None}, duplicates_deleted={duplicates}"
    )
    return duplicates


async def decline_report(db: AsyncSession, principal: Principal, report_id: int) -> None:
    """
    Delete a pending report.

    Raises:
        AuthenticationRequiredError: If the caller is not a moderator
        NotFoundError: If the report does not exist (already declined or cleaned up)
        ConflictError: If the report was accepted and is kept for audit
    """
    require_moderator(principal)

    async with atomic(db, "decline_report"):
        report = (
            await db.execute(select(Report).where(Report.id == report_id).with_for_update())
        ).scalar_one_or_none()
        if report is None:
            raise NotFoundError(REPORT_NOT_FOUND_TEXT)
        if report.status == ReportStatus.ACCEPTED:
            raise ConflictError("Accepted reports cannot be declined.")
        await db.delete(report)

    reports_resolved_total.labels(action="declined").inc()
    logger.info(f"Report {report_id} declined by {principal.name}")


def accept_message(duplicates: int) -> str:
    if duplicates > 0:
        return (
            "Report accepted and user added to cheaters. "
            f"{duplicates} duplicate pending report(s) were automatically cleaned up."
        )
    return "Report accepted and user added to cheaters."
