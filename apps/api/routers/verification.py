"""Ownership verification challenge endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from apps.api.deps import get_verifier
from apps.verification.verifier import IdentityVerifier

router = APIRouter(prefix="/verification", tags=["verification"])


class ChallengeIn(BaseModel):
    """Input model for requesting a challenge."""

    handle: str


@router.post("/challenges", status_code=201)
async def issue_challenge(body: ChallengeIn, verifier: IdentityVerifier = Depends(get_verifier)) -> dict[str, Any]:
    """Draw a verification problem for a handle."""
    challenge = await verifier.issue_challenge(body.handle)
    return challenge.to_dict()


@router.post("/challenges/{challenge_id}/reroll")
async def reroll_challenge(challenge_id: str, verifier: IdentityVerifier = Depends(get_verifier)) -> dict[str, Any]:
    """Swap the problem of a live challenge for a different one."""
    challenge = await verifier.reroll(challenge_id)
    return challenge.to_dict()
