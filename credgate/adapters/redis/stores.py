"""Redis Store Implementations.

Counters are shared across workers. Errors are raised, never swallowed: the
guard turns them into an UNAVAILABLE rejection.
"""
from typing import Any, Dict
from datetime import datetime, timedelta, timezone
import json
import logging

from credgate.domain.interfaces import RateLimitResult, RateLimitStore, UsageCounterStore
from credgate.adapters.redis.client import USAGE_EVENTS_KEY, monthly_usage_key
from credgate.errors import StoreUnavailable

logger = logging.getLogger(__name__)

# Monthly counters outlive their month so late reads still see the total.
MONTHLY_COUNTER_TTL_SECONDS = 40 * 24 * 3600
MAX_USAGE_EVENTS = 10_000


class RedisRateLimitStore(RateLimitStore):
    """Fixed window: INCR the bucket, set expiry on first hit."""

    def __init__(self, redis_client):
        self.redis = redis_client

    async def check_limit(self, key: str, limit: int, window_seconds: int = 60) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, window_seconds)

            ttl = await self.redis.ttl(key)
            if ttl < 0:
                # Expiry lost between INCR and EXPIRE; re-arm it
                await self.redis.expire(key, window_seconds)
                ttl = window_seconds
        except Exception as e:
            logger.error(f"Redis rate limit error: {e}")
            raise StoreUnavailable("rate limit backend unavailable") from e

        return RateLimitResult(
            allowed=current <= limit,
            remaining=max(0, limit - current),
            reset_at=now + timedelta(seconds=ttl),
            limit=limit
        )


class RedisUsageCounterStore(UsageCounterStore):
    def __init__(self, redis_client):
        self.redis = redis_client

    async def get_monthly(self, key_id: str, period: str) -> int:
        try:
            value = await self.redis.get(monthly_usage_key(key_id, period))
        except Exception as e:
            logger.error(f"Redis usage read error: {e}")
            raise StoreUnavailable("usage backend unavailable") from e
        return int(value) if value else 0

    async def increment_monthly(self, key_id: str, period: str) -> int:
        key = monthly_usage_key(key_id, period)
        try:
            value = await self.redis.incr(key)
            if value == 1:
                await self.redis.expire(key, MONTHLY_COUNTER_TTL_SECONDS)
        except Exception as e:
            logger.error(f"Redis usage write error: {e}")
            raise StoreUnavailable("usage backend unavailable") from e
        return int(value)

    async def record_usage(self, event: Dict[str, Any]) -> None:
        try:
            await self.redis.lpush(USAGE_EVENTS_KEY, json.dumps(event, default=str))
            await self.redis.ltrim(USAGE_EVENTS_KEY, 0, MAX_USAGE_EVENTS - 1)
        except Exception as e:
            raise StoreUnavailable("usage backend unavailable") from e
