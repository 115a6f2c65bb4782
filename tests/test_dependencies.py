import pytest

from credgate.adapters.memory_store.stores import MemoryApiKeyStore, MemoryRateLimitStore
from credgate.adapters.redis.stores import RedisRateLimitStore
from credgate.dependencies import build_container, get_container, reset_container
from credgate.domain.sink import CompositeSink, StdOutSink
from credgate.errors import ConfigurationError
from credgate.settings import Settings


def test_default_container_uses_memory_stores():
    container = get_container()
    assert isinstance(container.api_keys, MemoryApiKeyStore)
    assert isinstance(container.rate_limits, MemoryRateLimitStore)
    assert isinstance(container.audit.sink, StdOutSink)
    assert container.redis is None
    assert container.engine is None
    assert get_container() is container


def test_reset_container_drops_state():
    first = get_container()
    first.keyring.cipher()
    reset_container()
    assert get_container() is not first
    assert not first.keyring.loaded


def test_wallet_issuer_uses_keyring():
    container = get_container()
    wallet = container.wallet_issuer().issue_wallet()
    assert container.keyring.loaded
    with container.wallet_issuer().unlock_signer(wallet) as account:
        assert account.address == wallet.address


def test_pepper_from_settings():
    container = build_container(Settings(API_KEY_PEPPER="pep"))
    raw = container.tokens.generate().raw_token
    assert container.tokens.digest(raw) != build_container(Settings()).tokens.digest(raw)


def test_redis_backend_wires_redis_stores():
    container = build_container(Settings(RATE_LIMIT_BACKEND="redis", REDIS_URL="redis://localhost:6379/0"))
    assert isinstance(container.rate_limits, RedisRateLimitStore)
    assert container.redis is not None


def test_sql_backend_and_audit_table():
    container = build_container(Settings(DATABASE_URL="sqlite://", AUDIT_SINK="postgres"))
    assert container.engine is not None
    assert isinstance(container.audit.sink, CompositeSink)
    container.engine.dispose()


@pytest.mark.parametrize("overrides", [
    {"RATE_LIMIT_BACKEND": "memcached"},
    {"RATE_LIMIT_SCOPE": "global"},
    {"AUDIT_SINK": "kafka"},
    {"RATE_LIMIT_BACKEND": "redis"},
    {"AUDIT_SINK": "http"},
    {"AUDIT_SINK": "postgres"},
    {"MODE": "prod"},
    {"MODE": "prod", "RATE_LIMIT_BACKEND": "redis", "REDIS_URL": "redis://r:6379"},
])
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ConfigurationError):
        build_container(Settings(**overrides))


def test_prod_settings_accepted():
    container = build_container(Settings(
        MODE="prod", RATE_LIMIT_BACKEND="redis", REDIS_URL="redis://r:6379", DATABASE_URL="sqlite://",
    ))
    assert container.settings.is_prod
    container.engine.dispose()
