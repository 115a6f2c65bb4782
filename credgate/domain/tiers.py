"""API tier policy table.

Intelligence  - pay-as-you-go, prototyping and small bots.
Professional  - production trading systems.
Enterprise    - unlimited monthly volume, custom SLA.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from credgate.errors import ConfigurationError


@dataclass(frozen=True)
class TierDefinition:
    tier_id: str
    label: str
    requests_per_minute: int
    monthly_quota: Optional[int]  # None = unlimited
    features: FrozenSet[str]
    monthly_fee_usd: float
    per_call_usd: float
    description: str

    def to_dict(self) -> Dict:
        return {
            "id": self.tier_id,
            "label": self.label,
            "rateLimitPerMin": self.requests_per_minute,
            "monthlyQuota": self.monthly_quota,
            "features": sorted(self.features),
            "monthlyFeeUsd": self.monthly_fee_usd,
            "perCallUsd": self.per_call_usd,
            "description": self.description,
        }


_BASE_FEATURES = frozenset({"portfolio", "prices", "market_data", "sentiment"})
_PRO_FEATURES = _BASE_FEATURES | {"agents", "backtesting", "webhooks", "gpu_marketplace"}

TIERS: Dict[str, TierDefinition] = {
    "intelligence": TierDefinition(
        tier_id="intelligence",
        label="Intelligence",
        requests_per_minute=30,
        monthly_quota=10_000,
        features=_BASE_FEATURES,
        monthly_fee_usd=0,
        per_call_usd=0.01,
        description="30 req/min · 10K/month · $0.01/call",
    ),
    "professional": TierDefinition(
        tier_id="professional",
        label="Professional",
        requests_per_minute=60,
        monthly_quota=100_000,
        features=_PRO_FEATURES,
        monthly_fee_usd=499,
        per_call_usd=0.005,
        description="60 req/min · 100K/month · $499/mo + $0.005/call",
    ),
    "enterprise": TierDefinition(
        tier_id="enterprise",
        label="Enterprise",
        requests_per_minute=500,
        monthly_quota=None,
        features=_PRO_FEATURES | {"priority_support", "custom_sla"},
        monthly_fee_usd=0,
        per_call_usd=0,
        description="500 req/min · Unlimited · Revenue share on alpha",
    ),
}


def is_known_tier(tier_id: str) -> bool:
    return tier_id in TIERS


def resolve(tier_id: str) -> TierDefinition:
    """Look up a tier. Unknown ids are a programming error, not user input."""
    try:
        return TIERS[tier_id]
    except KeyError:
        raise ConfigurationError(f"Unknown tier: {tier_id!r}") from None


def is_quota_exceeded(tier_id: str, usage_count: int) -> bool:
    quota = resolve(tier_id).monthly_quota
    if quota is None:
        return False
    return usage_count >= quota


def list_tiers() -> List[TierDefinition]:
    return list(TIERS.values())
