"""Postgres Store Implementations.

SQLAlchemy sessions are synchronous; each store method opens its own session
and runs in a worker thread so the event loop never blocks on the database.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from credgate.domain.interfaces import (
    AgentWalletRecord,
    ApiKeyRecord,
    ApiKeyStore,
    UsageCounterStore,
    WalletStore,
)
from credgate.adapters.postgres.models import AgentWallet, ApiKey, ApiUsage, AuditLog, UsageCounter

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_record(obj: ApiKey) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=obj.id,
        owner=obj.wallet_address,
        key_digest=obj.key_hash,
        masked_key=obj.masked_key,
        name=obj.name,
        tier=obj.tier,
        created_at=_aware(obj.created_at),
        last_used_at=_aware(obj.last_used_at),
        total_calls=obj.total_calls or 0,
        is_active=bool(obj.is_active),
        revoked_at=_aware(obj.revoked_at),
        expires_at=_aware(obj.expires_at),
    )


class _SessionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, fn, *args):
        return await asyncio.to_thread(self._in_session, fn, *args)

    def _in_session(self, fn, *args):
        with self._session_factory() as db:
            return fn(db, *args)


class PostgresApiKeyStore(_SessionStore, ApiKeyStore):
    async def insert(self, record: ApiKeyRecord) -> ApiKeyRecord:
        return await self._run(self._insert, record)

    def _insert(self, db: Session, record: ApiKeyRecord) -> ApiKeyRecord:
        obj = ApiKey(
            id=record.id,
            key_hash=record.key_digest,
            masked_key=record.masked_key,
            name=record.name,
            tier=record.tier,
            wallet_address=record.owner,
            total_calls=record.total_calls,
            is_active=record.is_active,
            expires_at=record.expires_at,
            created_at=record.created_at,
        )
        db.add(obj)
        db.commit()
        return to_record(obj)

    async def get_by_digest(self, key_digest: str) -> Optional[ApiKeyRecord]:
        return await self._run(self._get_by_digest, key_digest)

    def _get_by_digest(self, db: Session, key_digest: str) -> Optional[ApiKeyRecord]:
        obj = db.query(ApiKey).filter(ApiKey.key_hash == key_digest).first()
        return to_record(obj) if obj else None

    async def list_by_owner(self, owner: str) -> List[ApiKeyRecord]:
        return await self._run(self._list_by_owner, owner)

    def _list_by_owner(self, db: Session, owner: str) -> List[ApiKeyRecord]:
        objs = (
            db.query(ApiKey)
            .filter(ApiKey.wallet_address == owner)
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
            .all()
        )
        return [to_record(o) for o in objs]

    async def revoke(self, key_id: str, owner: str, revoked_at: datetime) -> bool:
        return await self._run(self._revoke, key_id, owner, revoked_at)

    def _revoke(self, db: Session, key_id: str, owner: str, revoked_at: datetime) -> bool:
        # Conditional update: only the active -> revoked transition matches,
        # expired keys stay expired
        result = db.execute(
            update(ApiKey)
            .where(
                ApiKey.id == key_id,
                ApiKey.wallet_address == owner,
                ApiKey.is_active.is_(True),
                or_(ApiKey.expires_at.is_(None), ApiKey.expires_at > revoked_at),
            )
            .values(is_active=False, revoked_at=revoked_at)
        )
        db.commit()
        return result.rowcount == 1

    async def touch(self, key_id: str, used_at: datetime) -> None:
        await self._run(self._touch, key_id, used_at)

    def _touch(self, db: Session, key_id: str, used_at: datetime) -> None:
        db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(total_calls=ApiKey.total_calls + 1, last_used_at=used_at)
        )
        db.commit()


class PostgresWalletStore(_SessionStore, WalletStore):
    async def save_wallet(self, wallet: AgentWalletRecord) -> None:
        await self._run(self._save_wallet, wallet)

    def _save_wallet(self, db: Session, wallet: AgentWalletRecord) -> None:
        db.add(AgentWallet(
            agent_id=wallet.agent_id,
            address=wallet.address,
            encrypted_private_key=wallet.encrypted_private_key,
            created_at=wallet.created_at,
        ))
        db.commit()

    async def get_wallet(self, agent_id: str) -> Optional[AgentWalletRecord]:
        return await self._run(self._get_wallet, agent_id)

    def _get_wallet(self, db: Session, agent_id: str) -> Optional[AgentWalletRecord]:
        obj = db.query(AgentWallet).filter(AgentWallet.agent_id == agent_id).first()
        if not obj:
            return None
        return AgentWalletRecord(
            agent_id=obj.agent_id,
            address=obj.address,
            encrypted_private_key=obj.encrypted_private_key,
            created_at=_aware(obj.created_at),
        )


class PostgresUsageCounterStore(_SessionStore, UsageCounterStore):
    async def get_monthly(self, key_id: str, period: str) -> int:
        return await self._run(self._get_monthly, key_id, period)

    def _get_monthly(self, db: Session, key_id: str, period: str) -> int:
        obj = db.query(UsageCounter).filter(UsageCounter.key_id == key_id, UsageCounter.period == period).first()
        return int(obj.calls) if obj else 0

    async def increment_monthly(self, key_id: str, period: str) -> int:
        return await self._run(self._increment_monthly, key_id, period)

    def _increment_monthly(self, db: Session, key_id: str, period: str) -> int:
        where = (UsageCounter.key_id == key_id, UsageCounter.period == period)
        result = db.execute(update(UsageCounter).where(*where).values(calls=UsageCounter.calls + 1))
        if result.rowcount == 0:
            db.add(UsageCounter(key_id=key_id, period=period, calls=1))
            try:
                db.commit()
                return 1
            except IntegrityError:
                # Another worker created the row first
                db.rollback()
                db.execute(update(UsageCounter).where(*where).values(calls=UsageCounter.calls + 1))
        db.commit()
        return int(db.query(UsageCounter.calls).filter(*where).scalar() or 0)

    async def record_usage(self, event: Dict[str, Any]) -> None:
        await self._run(self._record_usage, event)

    def _record_usage(self, db: Session, event: Dict[str, Any]) -> None:
        db.add(ApiUsage(
            api_key_id=event["key_id"],
            wallet_address=event["owner"],
            tool=event["tool"],
            status_code=event["status_code"],
            latency_ms=event.get("latency_ms", 0),
            created_at=event.get("created_at") or datetime.now(timezone.utc),
        ))
        db.commit()


class PostgresAuditSink(_SessionStore):
    """Audit sink writing to the audit_logs table."""

    async def emit(self, event: Dict[str, Any]) -> None:
        await self._run(self._emit, event)

    def _emit(self, db: Session, event: Dict[str, Any]) -> None:
        db.add(AuditLog(
            event_id=event["event_id"],
            wallet_address=event["actor"],
            action=event["action"],
            severity=event["severity"],
            description=event["description"],
            meta=event.get("metadata") or {},
            ip_address=event.get("source_ip"),
        ))
        db.commit()

    async def list_events(self, wallet_address: str, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._run(self._list_events, wallet_address, limit)

    def _list_events(self, db: Session, wallet_address: str, limit: int) -> List[Dict[str, Any]]:
        objs = (
            db.query(AuditLog)
            .filter(AuditLog.wallet_address == wallet_address.lower())
            .order_by(AuditLog.created_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "event_id": o.event_id,
                "actor": o.wallet_address,
                "action": o.action,
                "severity": o.severity,
                "description": o.description,
                "metadata": o.meta or {},
                "source_ip": o.ip_address,
                "created_at": _aware(o.created_at),
            }
            for o in objs
        ]
