"""Public API Router - endpoints callable with an issued bearer key."""
import time

from fastapi import APIRouter, Depends, Response

from credgate.dependencies import get_guard
from credgate.domain import tiers
from credgate.domain.guard import QuotaRateGuard
from credgate.middleware.auth_public import AuthContext, get_auth_context

router = APIRouter()


@router.get("/tier")
async def get_tier(
    response: Response,
    auth: AuthContext = Depends(get_auth_context),
    guard: QuotaRateGuard = Depends(get_guard),
):
    """Tier, limits and current usage for the calling key."""
    start = time.monotonic()
    admission = auth.admission
    response.headers["X-RateLimit-Limit"] = str(admission.tier.requests_per_minute)
    response.headers["X-RateLimit-Remaining"] = str(admission.rate_limit_remaining)
    body = {
        "keyId": auth.key_id,
        "tier": admission.tier.to_dict(),
        "usage": {
            "monthlyCalls": admission.monthly_usage,
            "monthlyQuota": admission.tier.monthly_quota,
            "quotaExceeded": tiers.is_quota_exceeded(admission.tier.tier_id, admission.monthly_usage),
        },
        "lastUsedAt": admission.record.last_used_at.isoformat() if admission.record.last_used_at else None,
    }
    await guard.record_usage(admission, "tier", 200, latency_ms=int((time.monotonic() - start) * 1000))
    return body


@router.get("/tiers")
async def list_tiers():
    """Published tier table. No credentials required."""
    return {"tiers": [t.to_dict() for t in tiers.list_tiers()]}
