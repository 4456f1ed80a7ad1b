import redis.asyncio as redis

from core.config import settings

_redis_client: redis.Redis | None = None


def redis_key(*parts: str) -> str:
    """Namespaced key, e.g. ``redis_key("cheaters", "count")`` -> ``cfdb:cheaters:count``."""
    return ":".join((settings.redis_key_prefix, *parts))


async def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
