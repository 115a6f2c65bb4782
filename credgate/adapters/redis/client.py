"""Redis Adapter - Connection and key helpers."""
import redis.asyncio as redis


def create_redis(redis_url: str, timeout_seconds: float = 2.0) -> redis.Redis:
    """Build a Redis client. Connects lazily on first command."""
    return redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=timeout_seconds,
        socket_connect_timeout=timeout_seconds,
    )


def monthly_usage_key(key_id: str, period: str) -> str:
    return f"usage:{key_id}:{period}"


USAGE_EVENTS_KEY = "usage:events"
