"""API key lifecycle: issue, list, revoke.

States per key: ACTIVE -> REVOKED, or ACTIVE -> EXPIRED when `expires_at`
passes. Both end states are terminal. The raw token exists only in the
`IssuedKey` returned by `create`; stores only ever see the digest.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, NamedTuple, Optional

from credgate.domain import tiers
from credgate.domain.audit import AuditLogger
from credgate.domain.interfaces import ApiKeyRecord, ApiKeyStore, RedactedKey, bounded, utcnow
from credgate.domain.tokens import TokenGenerator
from credgate.errors import InvalidKeyRequest
from credgate.utils.id import uuid7

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 128
MAX_EXPIRES_IN_DAYS = 3650


class IssuedKey(NamedTuple):
    raw_token: str
    record: RedactedKey

    def __repr__(self) -> str:
        return f"IssuedKey(id={self.record.id!r}, masked_key={self.record.masked_key!r})"


class KeyLifecycleManager:
    def __init__(
        self,
        store: ApiKeyStore,
        tokens: TokenGenerator,
        audit: AuditLogger,
        store_timeout: float = 2.0,
    ):
        self.store = store
        self.tokens = tokens
        self.audit = audit
        self.store_timeout = store_timeout

    async def create(
        self,
        owner: str,
        name: str,
        tier: str,
        expires_in_days: Optional[int] = None,
        source_ip: Optional[str] = None,
    ) -> IssuedKey:
        """Issue a key. The returned raw token cannot be recovered later."""
        name = (name or "").strip()
        if not name:
            raise InvalidKeyRequest("name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidKeyRequest(f"name must be at most {MAX_NAME_LENGTH} characters")
        if expires_in_days is not None and expires_in_days <= 0:
            raise InvalidKeyRequest("expiresInDays must be positive")
        if expires_in_days is not None and expires_in_days > MAX_EXPIRES_IN_DAYS:
            raise InvalidKeyRequest(f"expiresInDays must be at most {MAX_EXPIRES_IN_DAYS}")
        tier_def = tiers.resolve(tier)

        token = self.tokens.generate()
        now = utcnow()
        record = ApiKeyRecord(
            id=uuid7(),
            owner=owner.lower(),
            key_digest=token.digest,
            masked_key=token.display_prefix,
            name=name,
            tier=tier_def.tier_id,
            created_at=now,
            total_calls=0,
            is_active=True,
            expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
        )
        stored = await bounded(self.store.insert(record), self.store_timeout)

        self.audit.log_event(
            actor=record.owner,
            action="api_key_create",
            severity="info",
            description=f"Created {tier_def.tier_id} API key: {name}",
            metadata={"keyId": stored.id, "tier": tier_def.tier_id},
            source_ip=source_ip,
        )
        logger.info(f"Issued API key {stored.id} tier={tier_def.tier_id}")
        return IssuedKey(raw_token=token.raw_token, record=stored.redacted())

    async def list(self, owner: str) -> List[RedactedKey]:
        """Owner's keys, newest first, ties broken by id."""
        records = await bounded(self.store.list_by_owner(owner.lower()), self.store_timeout)
        records = sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)
        return [r.redacted() for r in records]

    async def revoke(self, key_id: str, owner: str, source_ip: Optional[str] = None) -> bool:
        """Revoke an active key owned by `owner`.

        Missing, foreign, expired and already-revoked keys all return False.
        """
        owner = owner.lower()
        revoked = await bounded(self.store.revoke(key_id, owner, utcnow()), self.store_timeout)
        if not revoked:
            return False

        self.audit.log_event(
            actor=owner,
            action="api_key_revoke",
            severity="warning",
            description=f"Revoked API key: {key_id}",
            metadata={"keyId": key_id},
            source_ip=source_ip,
        )
        logger.info(f"Revoked API key {key_id}")
        return True


def creation_response(issued: IssuedKey) -> Dict[str, Any]:
    """Once-only response body for a freshly issued key."""
    record = issued.record
    tier_def = tiers.resolve(record.tier)
    return {
        "key": issued.raw_token,
        "id": record.id,
        "maskedKey": record.masked_key,
        "name": record.name,
        "tier": record.tier,
        "rateLimitPerMin": tier_def.requests_per_minute,
        "monthlyQuota": tier_def.monthly_quota,
        "createdAt": record.created_at.isoformat(),
        "expiresAt": record.expires_at.isoformat() if record.expires_at else None,
    }
