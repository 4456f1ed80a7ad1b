"""Cheater endpoints: public listing and moderator actions."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.deps import get_db
from apps.api.routers.reports import ReportOut
from apps.moderation.cheaters import move_to_pending, set_admin_note
from apps.moderation.listing import DEFAULT_SORT, fetch_cheaters_after, fetch_total_count
from core.auth import Principal, get_principal
from models import Cheater

router = APIRouter(prefix="/cheaters", tags=["cheaters"])


class AdminNoteIn(BaseModel):
    """Input model for editing an admin note."""

    admin_note: str | None = None


class CheaterOut(BaseModel):
    id: int
    username: str
    evidence: str
    admin_note: str | None = None
    reported_at: datetime
    accepted_by: str
    accepted_at: datetime
    info: dict[str, Any] | None = None

    @classmethod
    def from_model(cls, cheater: Cheater) -> "CheaterOut":
        return cls(
            id=cheater.id,
            username=cheater.username,
            evidence=cheater.evidence,
            admin_note=cheater.admin_note,
            reported_at=cheater.reported_at,
            accepted_by=cheater.accepted_by,
            accepted_at=cheater.accepted_at,
            info=cheater.info,
        )


@router.get("")
async def list_cheaters(
    search: str = "",
    sort: str = DEFAULT_SORT,
    page_size: int | None = Query(None, ge=1),
    cursor: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    One page of active cheaters.

    Args:
        search: Username prefix; results are then ordered by username
        sort: ``reported_at|rating|max_rating|username`` with ``_asc`` or ``_desc``
        page_size: Cheaters per page
        cursor: ``next_cursor`` of the previous page
        db: Database session

    Returns:
        Cheaters and the cursor of the next page
    """
    page = await fetch_cheaters_after(db, search=search, sort_option=sort, page_size=page_size, after=cursor)
    return {
        "cheaters": [CheaterOut.from_model(c).model_dump(mode="json") for c in page.cheaters],
        "next_cursor": page.last_cursor if page.has_more else None,
    }


@router.get("/count")
async def count_cheaters(search: str = "", db: AsyncSession = Depends(get_db)) -> dict[str, int]:
    """Number of active cheaters matching the search prefix."""
    return {"total": await fetch_total_count(db, search)}


@router.post("/{cheater_id}/move-to-pending")
async def move_cheater_to_pending(
    cheater_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Send a cheater back to the report queue."""
    report = await move_to_pending(db, principal, cheater_id)
    return {
        "type": "success",
        "text": f'User "{report.username}" moved back to pending reports.',
        "report": ReportOut.from_model(report).model_dump(mode="json"),
    }


@router.put("/{cheater_id}/admin-note")
async def update_admin_note(
    cheater_id: int,
    body: AdminNoteIn,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Replace the admin note of a cheater."""
    cheater = await set_admin_note(db, principal, cheater_id, body.admin_note)
    return {
        "type": "success",
        "text": "Admin note updated successfully!",
        "cheater": CheaterOut.from_model(cheater).model_dump(mode="json"),
    }
