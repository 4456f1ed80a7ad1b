"""FastAPI dependencies."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from apps.codeforces.client import CodeforcesClient
from apps.verification.verifier import CompilationErrorVerifier, IdentityVerifier
from apps.workers.notifier import Notifier, notifier
from core.db import get_db as _get_db
from core.redis import get_redis as _get_redis

_codeforces_client: CodeforcesClient | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async for session in _get_db():
        yield session


async def get_redis_client() -> redis.Redis:
    """Get Redis client dependency."""
    return await _get_redis()


def get_codeforces_client() -> CodeforcesClient:
    """Shared Codeforces API client."""
    global _codeforces_client
    if _codeforces_client is None:
        _codeforces_client = CodeforcesClient()
    return _codeforces_client


async def close_codeforces_client() -> None:
    global _codeforces_client
    if _codeforces_client is not None:
        await _codeforces_client.close()
        _codeforces_client = None


def get_verifier(codeforces: CodeforcesClient = Depends(get_codeforces_client)) -> IdentityVerifier:
    """Ownership verifier used by appeals and, optionally, reports."""
    return CompilationErrorVerifier(codeforces)


def get_notifier() -> Notifier:
    """Moderator alert sender."""
    return notifier
