import redis.asyncio as redis
from purchase_tracker.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def check_idempotency(key: str, value: str = "1", ttl_seconds: int | None = None) -> str | None:
    """
    Claim `key` for this submission.
    Returns None if the key is new (caller proceeds and later calls remember_result).
    Returns the stored value if the key was already claimed (duplicate submission).
    """
    r = await get_redis()
    ttl = ttl_seconds or settings.idempotency_ttl_seconds
    was_set = await r.set(key, value, nx=True, ex=ttl)
    if was_set:
        return None
    return await r.get(key)


async def remember_result(key: str, value: str, ttl_seconds: int | None = None) -> None:
    """Overwrite a claimed key with the id of what it produced."""
    r = await get_redis()
    await r.set(key, value, ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency(key: str) -> None:
    """Drop a claim whose submission failed so the client can retry."""
    r = await get_redis()
    await r.delete(key)
