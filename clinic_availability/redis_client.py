# clinic_availability/redis_client.py
"""
Shared Redis client.

Redis is optional: without REDIS_URL the client is None and slot holds
are disabled.
"""

from redis import Redis

from .config import settings


def make_redis(url: str | None) -> Redis | None:
    if not url:
        return None
    return Redis.from_url(url, socket_timeout=2.0, decode_responses=True)


redis_client = make_redis(settings.redis_url)
