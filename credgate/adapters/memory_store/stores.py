"""Memory Store Implementations.

State lives on the instance (one container per process), so tests get fresh
stores by building a new container. Each store serialises mutations with an
asyncio.Lock; reads see every acknowledged write.
"""
import asyncio
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional
import logging

from credgate.domain.interfaces import (
    AgentWalletRecord,
    ApiKeyRecord,
    ApiKeyStore,
    KeyState,
    RateLimitResult,
    RateLimitStore,
    UsageCounterStore,
    WalletStore,
)

logger = logging.getLogger(__name__)


class MemoryApiKeyStore(ApiKeyStore):
    def __init__(self):
        self._records: Dict[str, ApiKeyRecord] = {}
        self._by_digest: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: ApiKeyRecord) -> ApiKeyRecord:
        async with self._lock:
            if record.key_digest in self._by_digest:
                raise ValueError("Duplicate key digest")
            if record.id in self._records:
                raise ValueError("Duplicate key id")
            self._records[record.id] = record.model_copy()
            self._by_digest[record.key_digest] = record.id
            return record.model_copy()

    async def get_by_digest(self, key_digest: str) -> Optional[ApiKeyRecord]:
        key_id = self._by_digest.get(key_digest)
        if key_id is None:
            return None
        return self._records[key_id].model_copy()

    async def list_by_owner(self, owner: str) -> List[ApiKeyRecord]:
        return [r.model_copy() for r in self._records.values() if r.owner == owner]

    async def revoke(self, key_id: str, owner: str, revoked_at: datetime) -> bool:
        async with self._lock:
            record = self._records.get(key_id)
            if record is None or record.owner != owner:
                return False
            if record.state(revoked_at) is not KeyState.ACTIVE:
                return False
            self._records[key_id] = record.model_copy(update={"is_active": False, "revoked_at": revoked_at})
            return True

    async def touch(self, key_id: str, used_at: datetime) -> None:
        async with self._lock:
            record = self._records.get(key_id)
            if record is None:
                return
            self._records[key_id] = record.model_copy(
                update={"last_used_at": used_at, "total_calls": record.total_calls + 1}
            )


class MemoryWalletStore(WalletStore):
    def __init__(self):
        self._wallets: Dict[str, AgentWalletRecord] = {}

    async def save_wallet(self, wallet: AgentWalletRecord) -> None:
        if wallet.agent_id in self._wallets:
            raise ValueError(f"Agent {wallet.agent_id} already has a wallet")
        self._wallets[wallet.agent_id] = wallet

    async def get_wallet(self, agent_id: str) -> Optional[AgentWalletRecord]:
        return self._wallets.get(agent_id)


class MemoryUsageCounterStore(UsageCounterStore):
    def __init__(self, max_events: int = 10_000):
        self._monthly: Dict[str, int] = {}
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self._lock = asyncio.Lock()

    async def get_monthly(self, key_id: str, period: str) -> int:
        return self._monthly.get(f"{key_id}:{period}", 0)

    async def increment_monthly(self, key_id: str, period: str) -> int:
        async with self._lock:
            bucket = f"{key_id}:{period}"
            self._monthly[bucket] = self._monthly.get(bucket, 0) + 1
            return self._monthly[bucket]

    async def record_usage(self, event: Dict[str, Any]) -> None:
        self.events.append(dict(event))


class MemoryRateLimitStore(RateLimitStore):
    """Fixed window counter; resets per process restart.

    At most `max_buckets` windows are held. When full, expired windows are
    swept first, then the oldest live windows are dropped.
    """

    def __init__(self, max_buckets: int = 10_000):
        self._buckets: Dict[str, dict] = {}
        self.max_buckets = max_buckets

    async def check_limit(self, key: str, limit: int, window_seconds: int = 60) -> RateLimitResult:
        now = datetime.now(timezone.utc)
        bucket = self._buckets.get(key)

        # Lazy cleanup/reset
        if not bucket or bucket["reset_at"] <= now:
            self._buckets.pop(key, None)
            if len(self._buckets) >= self.max_buckets:
                self._evict(now)
            bucket = {
                "count": 0,
                "reset_at": now + timedelta(seconds=window_seconds),
            }
            self._buckets[key] = bucket

        if bucket["count"] >= limit:
            return RateLimitResult(allowed=False, remaining=0, reset_at=bucket["reset_at"], limit=limit)

        bucket["count"] += 1
        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - bucket["count"]),
            reset_at=bucket["reset_at"],
            limit=limit
        )

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = [k for k, b in self._buckets.items() if b["reset_at"] <= now]
        for k in expired:
            del self._buckets[k]
        return len(expired)

    def _evict(self, now: datetime) -> None:
        swept = self.cleanup_expired(now)
        overflow = len(self._buckets) - self.max_buckets + 1
        if overflow > 0:
            # dicts keep insertion order, so the first keys hold the oldest windows
            for k in list(self._buckets)[:overflow]:
                del self._buckets[k]
            logger.warning(f"Rate limit table full; dropped {overflow} live windows")
        elif swept:
            logger.debug(f"Swept {swept} expired rate limit windows")
