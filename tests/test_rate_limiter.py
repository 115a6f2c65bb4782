import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch, MagicMock, AsyncMock

from credgate.adapters.memory_store.stores import MemoryRateLimitStore, MemoryUsageCounterStore
from credgate.adapters.redis.stores import RedisRateLimitStore, RedisUsageCounterStore
from credgate.errors import StoreUnavailable


@pytest.mark.asyncio
async def test_memory_rate_limiter():
    store = MemoryRateLimitStore()

    for i in range(5):
        result = await store.check_limit("test_user", 5, 60)
        assert result.allowed is True
        assert result.remaining == 4 - i

    # 6th call is rejected and does not move the counter
    result = await store.check_limit("test_user", 5, 60)
    assert result.allowed is False
    assert result.remaining == 0

    # Other keys have their own window
    assert (await store.check_limit("other_user", 5, 60)).allowed is True


@pytest.mark.asyncio
async def test_memory_rate_limiter_window_reset():
    store = MemoryRateLimitStore()
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    with patch("credgate.adapters.memory_store.stores.datetime") as mock_dt:
        mock_dt.now.return_value = start
        for _ in range(2):
            await store.check_limit("k", 2, 60)
        assert (await store.check_limit("k", 2, 60)).allowed is False

        mock_dt.now.return_value = start + timedelta(seconds=61)
        result = await store.check_limit("k", 2, 60)
        assert result.allowed is True
        assert result.remaining == 1
        assert result.reset_at == start + timedelta(seconds=121)

        mock_dt.now.return_value = start + timedelta(seconds=500)
        assert store.cleanup_expired() == 1


@pytest.mark.asyncio
async def test_memory_rate_limiter_sweeps_expired_windows():
    store = MemoryRateLimitStore(max_buckets=10)
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)

    with patch("credgate.adapters.memory_store.stores.datetime") as mock_dt:
        mock_dt.now.return_value = start
        for i in range(10):
            await store.check_limit(f"mgmt:ip:10.0.0.{i}", 5, 60)

        mock_dt.now.return_value = start + timedelta(seconds=61)
        await store.check_limit("mgmt:ip:10.0.1.1", 5, 60)
        assert list(store._buckets) == ["mgmt:ip:10.0.1.1"]


@pytest.mark.asyncio
async def test_memory_rate_limiter_is_bounded():
    store = MemoryRateLimitStore(max_buckets=10)
    for i in range(500):
        assert (await store.check_limit(f"mgmt:ip:198.51.100.{i}", 5, 60)).allowed is True
    assert len(store._buckets) == 10
    # newest windows survive and keep counting
    assert "mgmt:ip:198.51.100.499" in store._buckets
    assert (await store.check_limit("mgmt:ip:198.51.100.499", 5, 60)).remaining == 3


@pytest.mark.asyncio
async def test_redis_rate_limiter():
    mock_redis = MagicMock()
    mock_redis.incr = AsyncMock(return_value=1)
    mock_redis.expire = AsyncMock()
    mock_redis.ttl = AsyncMock(return_value=60)

    store = RedisRateLimitStore(mock_redis)

    # Case 1: first hit arms expiry
    result = await store.check_limit("rl:key:k1", 5, 60)
    assert result.allowed is True
    assert result.remaining == 4
    mock_redis.expire.assert_called_once_with("rl:key:k1", 60)

    # Case 2: over the limit
    mock_redis.incr.return_value = 6
    mock_redis.ttl.return_value = 12
    result = await store.check_limit("rl:key:k1", 5, 60)
    assert result.allowed is False
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_redis_rate_limiter_rearms_lost_expiry():
    mock_redis = MagicMock()
    mock_redis.incr = AsyncMock(return_value=3)
    mock_redis.expire = AsyncMock()
    mock_redis.ttl = AsyncMock(return_value=-1)

    result = await RedisRateLimitStore(mock_redis).check_limit("k", 5, 60)
    assert result.allowed is True
    mock_redis.expire.assert_called_once_with("k", 60)


@pytest.mark.asyncio
async def test_redis_errors_raise_store_unavailable():
    mock_redis = MagicMock()
    mock_redis.incr = AsyncMock(side_effect=ConnectionError("refused"))
    mock_redis.get = AsyncMock(side_effect=ConnectionError("refused"))

    with pytest.raises(StoreUnavailable):
        await RedisRateLimitStore(mock_redis).check_limit("k", 5, 60)
    with pytest.raises(StoreUnavailable):
        await RedisUsageCounterStore(mock_redis).get_monthly("k1", "2026-01")


@pytest.mark.asyncio
async def test_redis_usage_counter():
    mock_redis = MagicMock()
    mock_redis.get = AsyncMock(return_value="41")
    mock_redis.incr = AsyncMock(return_value=42)
    mock_redis.expire = AsyncMock()
    mock_redis.lpush = AsyncMock()
    mock_redis.ltrim = AsyncMock()

    store = RedisUsageCounterStore(mock_redis)
    assert await store.get_monthly("k1", "2026-01") == 41
    mock_redis.get.assert_called_once_with("usage:k1:2026-01")

    assert await store.increment_monthly("k1", "2026-01") == 42
    mock_redis.expire.assert_not_called()

    await store.record_usage({"key_id": "k1", "tool": "prices"})
    mock_redis.lpush.assert_called_once()
    mock_redis.ltrim.assert_called_once_with("usage:events", 0, 9999)


@pytest.mark.asyncio
async def test_memory_usage_counter_periods():
    store = MemoryUsageCounterStore(max_events=2)
    assert await store.increment_monthly("k1", "2026-01") == 1
    assert await store.increment_monthly("k1", "2026-01") == 2
    assert await store.get_monthly("k1", "2026-02") == 0

    for i in range(3):
        await store.record_usage({"n": i})
    assert [e["n"] for e in store.events] == [1, 2]
