"""
Redis connection for the identity lookup cache.

The cache is optional: with REDIS_URL empty the dependency yields None and
every lookup reads the database. Short socket timeouts keep an unreachable
Redis from stalling logins; callers treat RedisError as a cache miss.
"""

from collections.abc import AsyncGenerator

import redis.asyncio as redis

from nursery_auth.config import settings


def create_redis_client() -> redis.Redis | None:  # type: ignore[type-arg]
    if not settings.REDIS_URL:
        return None
    return redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )


async def get_redis() -> AsyncGenerator[redis.Redis | None, None]:  # type: ignore[type-arg]
    """
    Dependency for the identity cache client (None when caching is disabled).
    """
    client = create_redis_client()
    try:
        yield client
    finally:
        if client is not None:
            await client.aclose()
