import dataclasses

import pytest

from credgate.domain import tiers
from credgate.errors import ConfigurationError


def test_tier_table():
    assert tiers.resolve("intelligence").requests_per_minute == 30
    assert tiers.resolve("intelligence").monthly_quota == 10_000
    assert tiers.resolve("professional").requests_per_minute == 60
    assert tiers.resolve("professional").monthly_quota == 100_000
    assert tiers.resolve("enterprise").requests_per_minute == 500
    assert tiers.resolve("enterprise").monthly_quota is None


def test_unknown_tier_is_configuration_error():
    assert not tiers.is_known_tier("platinum")
    with pytest.raises(ConfigurationError):
        tiers.resolve("platinum")
    with pytest.raises(ConfigurationError):
        tiers.is_quota_exceeded("platinum", 0)


def test_quota_boundaries():
    assert not tiers.is_quota_exceeded("intelligence", 9_999)
    assert tiers.is_quota_exceeded("intelligence", 10_000)
    assert tiers.is_quota_exceeded("intelligence", 10_001)


def test_unlimited_quota_never_exceeded():
    for usage in (0, 10_000, 10**12):
        assert not tiers.is_quota_exceeded("enterprise", usage)


def test_definitions_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        tiers.resolve("professional").requests_per_minute = 1


def test_features():
    assert "prices" in tiers.resolve("intelligence").features
    assert "backtesting" not in tiers.resolve("intelligence").features
    assert "backtesting" in tiers.resolve("professional").features
    assert "custom_sla" in tiers.resolve("enterprise").features


def test_to_dict():
    data = tiers.resolve("enterprise").to_dict()
    assert data["id"] == "enterprise"
    assert data["rateLimitPerMin"] == 500
    assert data["monthlyQuota"] is None
    assert data["features"] == sorted(data["features"])
    assert [t.tier_id for t in tiers.list_tiers()] == ["intelligence", "professional", "enterprise"]
