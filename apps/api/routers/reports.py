"""Report endpoints: public submission and the moderator queue."""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.deps import get_codeforces_client, get_db, get_notifier, get_verifier
from apps.codeforces.client import CodeforcesClient
from apps.moderation.listing import list_pending_reports
from apps.moderation.reports import accept_message, accept_report, decline_report, submit_report
from apps.verification.verifier import IdentityVerifier
from apps.workers.notifier import Notifier
from core.auth import Principal, get_principal
from models import Report

router = APIRouter(prefix="/reports", tags=["reports"])
logger = logging.getLogger(__name__)


class ReportIn(BaseModel):
    """Input model for reporting a cheater."""

    username: str = ""
    evidence: str = ""
    reporter_handle: str | None = None
    challenge_id: str | None = None


class AcceptIn(BaseModel):
    """Input model for accepting a report."""

    admin_note: str | None = None


class ReportOut(BaseModel):
    id: int
    username: str
    evidence: str
    status: str
    reported_at: datetime
    info: dict[str, Any] | None = None
    moved_to_pending_by: str | None = None
    moved_to_pending_at: datetime | None = None

    @classmethod
    def from_model(cls, report: Report) -> "ReportOut":
        return cls(
            id=report.id,
            username=report.username,
            evidence=report.evidence,
            status=report.status.value,
            reported_at=report.reported_at,
            info=report.info,
            moved_to_pending_by=report.moved_to_pending_by,
            moved_to_pending_at=report.moved_to_pending_at,
        )


@router.post("", status_code=201)
async def create_report(
    body: ReportIn,
    db: AsyncSession = Depends(get_db),
    codeforces: CodeforcesClient = Depends(get_codeforces_client),
    verifier: IdentityVerifier = Depends(get_verifier),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    """
    Report a Codeforces handle as a cheater.

    Args:
        body: Handle and evidence
        db: Database session
        codeforces: Codeforces client for the existence check
        verifier: Ownership verifier, used when reports require verification
        notifier: Moderator alert sender

    Returns:
        Success message and the created report
    """
    report = await submit_report(
        db,
        codeforces,
        body.username,
        body.evidence,
        reporter_handle=body.reporter_handle,
        challenge_id=body.challenge_id,
        verifier=verifier,
        notifier=notifier,
    )
    return {
        "type": "success",
        "text": f'User "{report.username}" has been reported successfully!',
        "report": ReportOut.from_model(report).model_dump(mode="json"),
    }


@router.get("/pending")
async def pending_reports(
    page_size: int | None = Query(None, ge=1),
    cursor: str | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """
    Moderation queue, oldest report first.

    Args:
        page_size: Reports per page
        cursor: ``next_cursor`` of the previous page
        db: Database session
        principal: Caller, must be a moderator

    Returns:
        Reports and the cursor of the next page
    """
    page = await list_pending_reports(db, principal, page_size=page_size, after=cursor)
    return {
        "reports": [ReportOut.from_model(r).model_dump(mode="json") for r in page.reports],
        "next_cursor": page.last_cursor if page.has_more else None,
    }


@router.post("/{report_id}/accept")
async def accept(
    report_id: int,
    body: AcceptIn | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Promote a pending report to a cheater record."""
    duplicates = await accept_report(db, principal, report_id, admin_note=body.admin_note if body else None)
    return {"type": "success", "text": accept_message(duplicates), "duplicates_deleted": duplicates}


@router.post("/{report_id}/decline")
async def decline(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, str]:
    """Delete a pending report."""
    await decline_report(db, principal, report_id)
    return {"type": "info", "text": "Report declined."}
