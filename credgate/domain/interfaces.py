"""Domain records and the narrow store contracts the core depends on."""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from pydantic import BaseModel

from credgate.errors import StoreUnavailable

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyState(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ApiKeyRecord(BaseModel):
    """Stored API key. Contains the digest, so never returned to callers."""
    id: str
    owner: str
    key_digest: str
    masked_key: str
    name: str
    tier: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    total_calls: int = 0
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def state(self, now: Optional[datetime] = None) -> KeyState:
        if not self.is_active:
            return KeyState.REVOKED
        if self.expires_at is not None and self.expires_at <= (now or utcnow()):
            return KeyState.EXPIRED
        return KeyState.ACTIVE

    def redacted(self) -> "RedactedKey":
        return RedactedKey(**self.model_dump(exclude={"key_digest"}))


class RedactedKey(BaseModel):
    """The only API key shape allowed across a trust boundary."""
    id: str
    owner: str
    masked_key: str
    name: str
    tier: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    total_calls: int = 0
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "maskedKey": self.masked_key,
            "name": self.name,
            "tier": self.tier,
            "isActive": self.is_active,
            "totalCalls": self.total_calls,
            "createdAt": _iso(self.created_at),
            "lastUsedAt": _iso(self.last_used_at),
            "revokedAt": _iso(self.revoked_at),
            "expiresAt": _iso(self.expires_at),
        }


class AgentWalletRecord(BaseModel):
    agent_id: str
    address: str
    encrypted_private_key: str
    created_at: datetime


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ApiKeyStore(ABC):
    @abstractmethod
    async def insert(self, record: ApiKeyRecord) -> ApiKeyRecord: pass
    @abstractmethod
    async def get_by_digest(self, key_digest: str) -> Optional[ApiKeyRecord]: pass
    @abstractmethod
    async def list_by_owner(self, owner: str) -> List[ApiKeyRecord]: pass
    @abstractmethod
    async def revoke(self, key_id: str, owner: str, revoked_at: datetime) -> bool:
        """Set inactive only if the key exists, belongs to owner and is active."""
    @abstractmethod
    async def touch(self, key_id: str, used_at: datetime) -> None:
        """Record one admitted call: bump total_calls, set last_used_at."""


class WalletStore(ABC):
    @abstractmethod
    async def save_wallet(self, wallet: AgentWalletRecord) -> None: pass
    @abstractmethod
    async def get_wallet(self, agent_id: str) -> Optional[AgentWalletRecord]: pass


class UsageCounterStore(ABC):
    @abstractmethod
    async def get_monthly(self, key_id: str, period: str) -> int: pass
    @abstractmethod
    async def increment_monthly(self, key_id: str, period: str) -> int: pass
    @abstractmethod
    async def record_usage(self, event: Dict[str, Any]) -> None: pass


class RateLimitStore(ABC):
    @abstractmethod
    async def check_limit(self, key: str, limit: int, window_seconds: int = 60) -> RateLimitResult: pass


def usage_period(moment: Optional[datetime] = None) -> str:
    """Monthly billing bucket, UTC calendar month."""
    return (moment or utcnow()).strftime("%Y-%m")


async def bounded(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store call with a deadline; any failure becomes StoreUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except StoreUnavailable:
        raise
    except asyncio.TimeoutError:
        raise StoreUnavailable(f"store call exceeded {timeout}s") from None
    except Exception as e:
        raise StoreUnavailable(f"store call failed: {type(e).__name__}") from e
