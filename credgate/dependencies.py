"""Dependency Injection Module.

All process-scoped state (master keyring, stores, counters, audit logger)
lives on one `ServiceContainer`. It is built on first use from `Settings`
and torn down with `reset_container()`, which tests call between cases.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from credgate.adapters.memory_store.stores import (
    MemoryApiKeyStore,
    MemoryRateLimitStore,
    MemoryUsageCounterStore,
    MemoryWalletStore,
)
from credgate.domain.audit import AuditLogger
from credgate.domain.guard import QuotaRateGuard
from credgate.domain.interfaces import ApiKeyStore, RateLimitStore, UsageCounterStore, WalletStore
from credgate.domain.keys.manager import KeyLifecycleManager
from credgate.domain.secrets.kek_provider import Keyring
from credgate.domain.sink import AuditSink, CompositeSink, HttpSink, StdOutSink
from credgate.domain.tokens import TokenGenerator
from credgate.domain.wallets import WalletIssuer
from credgate.errors import ConfigurationError
from credgate.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    keyring: Keyring
    tokens: TokenGenerator
    api_keys: ApiKeyStore
    wallets: WalletStore
    usage: UsageCounterStore
    rate_limits: RateLimitStore
    management_limits: RateLimitStore
    audit: AuditLogger
    manager: KeyLifecycleManager
    guard: QuotaRateGuard
    redis: Optional[Any] = None
    engine: Optional[Any] = None
    _wallet_issuer: Optional[WalletIssuer] = field(default=None, repr=False)

    def wallet_issuer(self) -> WalletIssuer:
        if self._wallet_issuer is None:
            self._wallet_issuer = WalletIssuer(self.keyring.cipher())
        return self._wallet_issuer

    async def aclose(self) -> None:
        await self.audit.drain()
        close_sink = getattr(self.audit.sink, "close", None)
        if close_sink is not None:
            await close_sink()
        if self.redis is not None:
            await self.redis.aclose()
        if self.engine is not None:
            self.engine.dispose()


def validate_settings(settings: Settings) -> None:
    """Reject configurations the service must not run with."""
    if settings.RATE_LIMIT_BACKEND not in ("memory", "redis"):
        raise ConfigurationError(f"Unknown RATE_LIMIT_BACKEND: {settings.RATE_LIMIT_BACKEND}")
    if settings.RATE_LIMIT_SCOPE not in ("key", "ip"):
        raise ConfigurationError(f"Unknown RATE_LIMIT_SCOPE: {settings.RATE_LIMIT_SCOPE}")
    if settings.AUDIT_SINK not in ("stdout", "http", "postgres"):
        raise ConfigurationError(f"Unknown AUDIT_SINK: {settings.AUDIT_SINK}")
    if settings.RATE_LIMIT_BACKEND == "redis" and not settings.REDIS_URL:
        raise ConfigurationError("REDIS_URL must be set when RATE_LIMIT_BACKEND=redis")
    if settings.AUDIT_SINK == "http" and not settings.AUDIT_SERVICE_URL:
        raise ConfigurationError("AUDIT_SERVICE_URL must be set when AUDIT_SINK=http")
    if settings.AUDIT_SINK == "postgres" and not settings.DATABASE_URL:
        raise ConfigurationError("DATABASE_URL must be set when AUDIT_SINK=postgres")
    if settings.is_prod:
        if settings.RATE_LIMIT_BACKEND != "redis":
            raise ConfigurationError("In PROD, RATE_LIMIT_BACKEND must be 'redis'")
        if not settings.DATABASE_URL:
            raise ConfigurationError("In PROD, DATABASE_URL must be set")


def build_container(settings: Optional[Settings] = None, keyring: Optional[Keyring] = None) -> ServiceContainer:
    settings = settings or get_settings()
    validate_settings(settings)

    pepper = settings.API_KEY_PEPPER.get_secret_value() if settings.API_KEY_PEPPER else None
    tokens = TokenGenerator(prefix=settings.API_KEY_PREFIX, pepper=pepper)

    engine = None
    session_factory = None
    if settings.DATABASE_URL:
        from credgate.adapters.postgres.session import create_session_factory, create_store_engine
        from credgate.adapters.postgres.stores import (
            PostgresApiKeyStore,
            PostgresUsageCounterStore,
            PostgresWalletStore,
        )
        engine = create_store_engine(settings.DATABASE_URL, int(settings.STORE_TIMEOUT_SECONDS * 1000))
        session_factory = create_session_factory(engine)
        api_keys: ApiKeyStore = PostgresApiKeyStore(session_factory)
        wallets: WalletStore = PostgresWalletStore(session_factory)
        usage: UsageCounterStore = PostgresUsageCounterStore(session_factory)
    else:
        api_keys = MemoryApiKeyStore()
        wallets = MemoryWalletStore()
        usage = MemoryUsageCounterStore()

    redis_client = None
    if settings.RATE_LIMIT_BACKEND == "redis":
        from credgate.adapters.redis.client import create_redis
        from credgate.adapters.redis.stores import RedisRateLimitStore, RedisUsageCounterStore
        redis_client = create_redis(settings.REDIS_URL, settings.STORE_TIMEOUT_SECONDS)
        rate_limits: RateLimitStore = RedisRateLimitStore(redis_client)
        management_limits: RateLimitStore = RedisRateLimitStore(redis_client)
        if not settings.DATABASE_URL:
            usage = RedisUsageCounterStore(redis_client)
    else:
        rate_limits = MemoryRateLimitStore()
        management_limits = MemoryRateLimitStore()

    audit = AuditLogger(sink=_build_sink(settings, session_factory))
    timeout = settings.STORE_TIMEOUT_SECONDS

    logger.info(
        f"Service container: records={'sql' if engine is not None else 'memory'} "
        f"counters={settings.RATE_LIMIT_BACKEND} audit={settings.AUDIT_SINK}"
    )

    return ServiceContainer(
        settings=settings,
        keyring=keyring or Keyring(),
        tokens=tokens,
        api_keys=api_keys,
        wallets=wallets,
        usage=usage,
        rate_limits=rate_limits,
        management_limits=management_limits,
        audit=audit,
        manager=KeyLifecycleManager(api_keys, tokens, audit, store_timeout=timeout),
        guard=QuotaRateGuard(
            api_keys,
            rate_limits,
            usage,
            tokens,
            store_timeout=timeout,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            scope=settings.RATE_LIMIT_SCOPE,
        ),
        redis=redis_client,
        engine=engine,
    )


def _build_sink(settings: Settings, session_factory) -> AuditSink:
    if settings.AUDIT_SINK == "http":
        api_key = settings.AUDIT_SERVICE_API_KEY.get_secret_value() if settings.AUDIT_SERVICE_API_KEY else None
        return CompositeSink([StdOutSink(), HttpSink(settings.AUDIT_SERVICE_URL, api_key=api_key)])
    if settings.AUDIT_SINK == "postgres":
        from credgate.adapters.postgres.stores import PostgresAuditSink
        return CompositeSink([StdOutSink(), PostgresAuditSink(session_factory)])
    return StdOutSink()


_container: Optional[ServiceContainer] = None
_container_lock = threading.Lock()


def get_container() -> ServiceContainer:
    global _container
    if _container is None:
        with _container_lock:
            if _container is None:
                _container = build_container()
    return _container


def reset_container() -> None:
    """Drop all process state so the next call rebuilds from fresh settings."""
    global _container
    with _container_lock:
        if _container is not None:
            _container.keyring.reset()
        _container = None
    get_settings.cache_clear()


# --- FastAPI dependencies ---

def get_key_manager() -> KeyLifecycleManager:
    return get_container().manager


def get_guard() -> QuotaRateGuard:
    return get_container().guard


def get_management_limiter() -> RateLimitStore:
    return get_container().management_limits


def get_service_settings() -> Settings:
    return get_container().settings
