# bookingguard/common/redis_utils.py
import redis.asyncio as redis

from bookingguard.common.config import settings


def create_redis_client(url: str | None = None) -> redis.Redis:
    return redis.from_url(url or settings.REDIS_URL, encoding="utf-8", decode_responses=True)
