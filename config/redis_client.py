"""
config/redis_client.py
Async Redis client for the JWT deny-list (logout, refresh rotation)
and per-IP rate-limit counters.
"""

from typing import Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── JWT Deny List ─────────────────────────────────────────────
class TokenDenyList:
    """
    Revoked tokens keyed by their SHA-256 digest.
    Entries expire together with the token, so the set never grows unbounded.
    """

    prefix = "jwt_revoked:"

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def revoke(self, token_hash: str, ttl_seconds: int) -> None:
        if ttl_seconds > 0:
            await self.client.setex(f"{self.prefix}{token_hash}", ttl_seconds, "1")

    async def is_revoked(self, token_hash: str) -> bool:
        return await self.client.exists(f"{self.prefix}{token_hash}") == 1


# ── Rate Limiting ─────────────────────────────────────────────
async def hit_rate_limit(client: aioredis.Redis, key: str, window_seconds: int = 60) -> int:
    """Increment a fixed-window counter and return the current count."""
    count = await client.incr(key)
    if count == 1:
        await client.expire(key, window_seconds)
    return count
