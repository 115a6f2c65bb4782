"""Settings and configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core
    MODE: str = "dev"  # dev, prod

    # Security
    AGENT_ENCRYPTION_KEY: Optional[SecretStr] = None
    API_KEY_PREFIX: str = "mf_live_"
    API_KEY_PEPPER: Optional[SecretStr] = None

    # Persistence (memory stores when unset)
    DATABASE_URL: Optional[str] = None
    REDIS_URL: Optional[str] = None
    STORE_TIMEOUT_SECONDS: float = 2.0

    # Rate Limiting
    RATE_LIMIT_BACKEND: str = "memory"  # memory, redis
    RATE_LIMIT_SCOPE: str = "key"  # key, ip
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    MANAGEMENT_RATE_LIMIT_PER_MIN: int = 30

    # Audit
    AUDIT_SINK: str = "stdout"  # stdout, http, postgres
    AUDIT_SERVICE_URL: Optional[str] = None
    AUDIT_SERVICE_API_KEY: Optional[SecretStr] = None

    model_config = {
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore"
    }

    @property
    def is_prod(self) -> bool:
        return self.MODE.lower() == "prod"


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings. Call `get_settings.cache_clear()` to re-read env."""
    return Settings()
