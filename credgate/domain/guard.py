"""Per-request admission: credential format, liveness, rate limit, monthly quota.

Checks run cheapest first. A malformed token is rejected before any hashing
or counter work, so garbage traffic cannot spend a real key's rate budget.
Every store failure or timeout rejects with UNAVAILABLE; nothing fails open.
"""
import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional, Union

from credgate.domain import tiers
from credgate.domain.interfaces import (
    ApiKeyStore,
    KeyState,
    RateLimitStore,
    RedactedKey,
    UsageCounterStore,
    bounded,
    usage_period,
    utcnow,
)
from credgate.domain.tiers import TierDefinition
from credgate.domain.tokens import TokenGenerator
from credgate.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    MALFORMED_CREDENTIAL = "malformed_credential"
    UNAUTHENTICATED = "unauthenticated"
    REVOKED = "revoked"
    EXPIRED = "expired"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAVAILABLE = "unavailable"


class Admission(NamedTuple):
    record: RedactedKey
    tier: TierDefinition
    rate_limit_remaining: int
    monthly_usage: int
    allow: bool = True


class Rejection(NamedTuple):
    reason: RejectReason
    retry_after: Optional[int] = None
    allow: bool = False


Decision = Union[Admission, Rejection]


class QuotaRateGuard:
    def __init__(
        self,
        keys: ApiKeyStore,
        rate_limits: RateLimitStore,
        usage: UsageCounterStore,
        tokens: TokenGenerator,
        store_timeout: float = 2.0,
        window_seconds: int = 60,
        scope: str = "key",
    ):
        if scope not in ("key", "ip"):
            raise ValueError(f"Unknown rate limit scope: {scope}")
        self.keys = keys
        self.rate_limits = rate_limits
        self.usage = usage
        self.tokens = tokens
        self.store_timeout = store_timeout
        self.window_seconds = window_seconds
        self.scope = scope

    async def admit(self, raw_token: Optional[str], caller_ip: Optional[str] = None) -> Decision:
        # 1. Structural pre-check
        if not self.tokens.is_valid_format(raw_token):
            return Rejection(RejectReason.MALFORMED_CREDENTIAL)

        try:
            return await self._admit(raw_token, caller_ip)
        except StoreUnavailable as e:
            logger.error(f"Admission failed closed: {e}")
            return Rejection(RejectReason.UNAVAILABLE)

    async def _admit(self, raw_token: str, caller_ip: Optional[str]) -> Decision:
        # 2. Lookup and liveness, from the same read
        record = await bounded(self.keys.get_by_digest(self.tokens.digest(raw_token)), self.store_timeout)
        if record is None:
            return Rejection(RejectReason.UNAUTHENTICATED)
        now = utcnow()
        state = record.state(now)
        if state is KeyState.REVOKED:
            return Rejection(RejectReason.REVOKED)
        if state is KeyState.EXPIRED:
            return Rejection(RejectReason.EXPIRED)

        tier_def = tiers.resolve(record.tier)

        # 3. Rate limit
        rl = await bounded(
            self.rate_limits.check_limit(
                self._rate_key(record.id, caller_ip),
                tier_def.requests_per_minute,
                self.window_seconds,
            ),
            self.store_timeout,
        )
        if not rl.allowed:
            return Rejection(RejectReason.RATE_LIMITED, retry_after=_seconds_until(rl.reset_at, now))

        # 4. Monthly quota
        period = usage_period(now)
        used = await bounded(self.usage.get_monthly(record.id, period), self.store_timeout)
        if tiers.is_quota_exceeded(tier_def.tier_id, used):
            return Rejection(RejectReason.QUOTA_EXCEEDED)

        # 5. Admit
        used = await bounded(self.usage.increment_monthly(record.id, period), self.store_timeout)
        await bounded(self.keys.touch(record.id, now), self.store_timeout)
        admitted = record.model_copy(update={"last_used_at": now, "total_calls": record.total_calls + 1})
        return Admission(
            record=admitted.redacted(),
            tier=tier_def,
            rate_limit_remaining=rl.remaining,
            monthly_usage=used,
        )

    async def record_usage(
        self,
        admission: Admission,
        tool: str,
        status_code: int,
        latency_ms: int = 0,
    ) -> None:
        """Append an analytics usage event. Failures are logged, not raised."""
        event: Dict[str, Any] = {
            "key_id": admission.record.id,
            "owner": admission.record.owner,
            "tool": tool,
            "status_code": status_code,
            "latency_ms": latency_ms,
            "created_at": utcnow(),
        }
        try:
            await bounded(self.usage.record_usage(event), self.store_timeout)
        except StoreUnavailable as e:
            logger.error(f"Usage event dropped for key {admission.record.id}: {e}")

    def _rate_key(self, key_id: str, caller_ip: Optional[str]) -> str:
        if self.scope == "ip":
            return f"rl:ip:{caller_ip or 'unknown'}"
        return f"rl:key:{key_id}"


def _seconds_until(reset_at: datetime, now: datetime) -> int:
    if reset_at.tzinfo is None:
        reset_at = reset_at.replace(tzinfo=timezone.utc)
    return max(1, int(math.ceil((reset_at - now).total_seconds())))
