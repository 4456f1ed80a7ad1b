"""Published snapshot endpoint consumed by the browser extension."""

from typing import Any

from fastapi import APIRouter

from apps.workers.snapshot_export import load_published_snapshot

router = APIRouter(tags=["snapshot"])


@router.get("/cheaters.json")
async def published_snapshot() -> dict[str, Any]:
    """The last exported list of cheater usernames."""
    return load_published_snapshot()
