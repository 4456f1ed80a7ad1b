"""Appeal endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.deps import get_db, get_notifier, get_verifier
from apps.moderation.appeals import accept_appeal, decline_appeal, list_pending_appeals, submit_appeal
from apps.verification.verifier import IdentityVerifier
from apps.workers.notifier import Notifier
from core.auth import Principal, get_principal

router = APIRouter(prefix="/appeals", tags=["appeals"])


class AppealIn(BaseModel):
    """Input model for an appeal."""

    username: str = ""
    message: str = ""
    challenge_id: str | None = None


@router.post("", status_code=201)
async def create_appeal(
    body: AppealIn,
    db: AsyncSession = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_verifier),
    notifier: Notifier = Depends(get_notifier),
) -> dict[str, Any]:
    """
    Appeal a listing after proving ownership of the handle.

    Args:
        body: Handle, message and the solved verification challenge
        db: Database session
        verifier: Ownership verifier
        notifier: Moderator alert sender

    Returns:
        Success message and the appeal id
    """
    appeal = await submit_appeal(db, verifier, body.username, body.message, body.challenge_id, notifier=notifier)
    return {
        "type": "success",
        "text": f'Appeal for "{appeal.username}" submitted successfully!',
        "appeal_id": appeal.id,
    }


@router.get("/pending")
async def pending_appeals(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, list[dict[str, Any]]]:
    """Pending appeals with the evidence they dispute, oldest first."""
    items = await list_pending_appeals(db, principal)
    return {
        "appeals": [
            {
                "id": item.appeal.id,
                "username": item.appeal.username,
                "message": item.appeal.message,
                "submitted_at": item.appeal.submitted_at.isoformat(),
                "evidence": item.evidence,
                "admin_note": item.admin_note,
            }
            for item in items
        ]
    }


@router.post("/{appeal_id}/accept")
async def accept(
    appeal_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, str]:
    """Accept an appeal and remove the user from the cheaters."""
    await accept_appeal(db, principal, appeal_id)
    return {"type": "success", "text": "Appeal accepted and user completely removed from cheaters."}


@router.post("/{appeal_id}/decline")
async def decline(
    appeal_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, str]:
    """Decline an appeal."""
    await decline_appeal(db, principal, appeal_id)
    return {"type": "info", "text": "Appeal declined."}