"""SQLAlchemy models for the credential store."""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


class ApiKey(Base):
    """Hashed API key. The raw token is never stored."""
    __tablename__ = "api_keys"
    id = Column(String(64), primary_key=True)
    key_hash = Column(String(128), nullable=False, unique=True)
    masked_key = Column(String(64), nullable=False)
    name = Column(String(128), nullable=False)
    tier = Column(String(32), nullable=False)
    wallet_address = Column(String(64), nullable=False, index=True)
    total_calls = Column(BigInteger, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        CheckConstraint(
            "tier IN ('intelligence', 'professional', 'enterprise')",
            name="ck_api_keys_tier",
        ),
        Index("idx_api_keys_active", "is_active", "revoked_at"),
    )


class AgentWallet(Base):
    __tablename__ = "agent_wallets"
    agent_id = Column(String(64), primary_key=True)
    address = Column(String(42), nullable=False, unique=True)
    encrypted_private_key = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class UsageCounter(Base):
    """Monthly call counter per key (period = YYYY-MM, UTC)."""
    __tablename__ = "api_usage_counters"
    key_id = Column(String(64), ForeignKey("api_keys.id"), primary_key=True)
    period = Column(String(7), primary_key=True)
    calls = Column(BigInteger, nullable=False, default=0)


class ApiUsage(Base):
    """Per-call metering log. Monthly counters can be rebuilt from it."""
    __tablename__ = "api_usage"
    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key_id = Column(String(64), ForeignKey("api_keys.id"), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False, index=True)
    tool = Column(String(128), nullable=False)
    status_code = Column(Integer, nullable=False)
    latency_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    event_id = Column(String(64), primary_key=True)
    wallet_address = Column(String(64), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    severity = Column(String(16), nullable=False)
    description = Column(Text, nullable=False)
    meta = Column("metadata", JSON, default=dict)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
