from typing import Optional

from redis import Redis
import redis.asyncio as aioredis
from phonegate.settings import settings

_async_client: Optional[aioredis.Redis] = None


def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


def get_async_redis() -> aioredis.Redis:
    """Shared asyncio client for code running on the flow's event loop."""
    global _async_client
    if _async_client is None:
        _async_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _async_client


async def close_async_redis() -> None:
    global _async_client
    client, _async_client = _async_client, None
    if client is not None:
        await client.aclose()
