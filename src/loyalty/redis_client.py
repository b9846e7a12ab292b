"""Redis connection used to publish loyalty change events."""

import redis.asyncio as redis

from loyalty.logging_config import SERVICE_NAME

_pool: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Create the publishing client. Connects and sends time out after 2s."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
        socket_connect_timeout=2,
        socket_timeout=2,
        client_name=SERVICE_NAME,
    )


async def close_redis() -> None:
    """Close the publishing client."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """Get the publishing client."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool
