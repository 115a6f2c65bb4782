import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from credgate.adapters.memory_store.stores import MemoryApiKeyStore
from credgate.domain.audit import AuditLogger
from credgate.domain.interfaces import KeyState, utcnow
from credgate.domain.keys.manager import KeyLifecycleManager, creation_response
from credgate.domain.tokens import TokenGenerator
from credgate.errors import ConfigurationError, InvalidKeyRequest, StoreUnavailable

OWNER = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


@pytest.fixture
def sink():
    s = Mock()
    s.emit = AsyncMock()
    return s


@pytest.fixture
def audit(sink):
    return AuditLogger(sink=sink)


@pytest.fixture
def store():
    return MemoryApiKeyStore()


@pytest.fixture
def manager(store, audit):
    return KeyLifecycleManager(store, TokenGenerator(), audit)


@pytest.mark.asyncio
async def test_create_stores_digest_only(manager, store, sink):
    issued = await manager.create(OWNER, "bot", "professional", source_ip="1.2.3.4")

    assert issued.raw_token.startswith("mf_live_")
    assert issued.record.owner == OWNER.lower()
    assert issued.record.tier == "professional"
    assert issued.record.is_active
    assert issued.record.total_calls == 0
    assert not hasattr(issued.record, "key_digest")

    stored = await store.get_by_digest(manager.tokens.digest(issued.raw_token))
    assert stored is not None
    assert stored.id == issued.record.id
    assert issued.raw_token not in stored.model_dump_json()
    assert stored.masked_key == issued.raw_token[:16] + "…"

    await manager.audit.drain()
    event = sink.emit.call_args[0][0]
    assert event["action"] == "api_key_create"
    assert event["severity"] == "info"
    assert event["actor"] == OWNER.lower()
    assert event["metadata"] == {"keyId": issued.record.id, "tier": "professional"}
    assert event["source_ip"] == "1.2.3.4"
    assert issued.raw_token not in str(event)


@pytest.mark.asyncio
async def test_creation_response(manager):
    issued = await manager.create(OWNER, "bot", "enterprise", expires_in_days=30)
    body = creation_response(issued)

    assert body["key"] == issued.raw_token
    assert body["id"] == issued.record.id
    assert body["maskedKey"] == issued.record.masked_key
    assert body["rateLimitPerMin"] == 500
    assert body["monthlyQuota"] is None
    assert body["expiresAt"] is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   ", None, "x" * 129])
async def test_create_rejects_bad_names(manager, name):
    with pytest.raises(InvalidKeyRequest):
        await manager.create(OWNER, name, "intelligence")


@pytest.mark.asyncio
async def test_create_rejects_bad_expiry(manager):
    with pytest.raises(InvalidKeyRequest):
        await manager.create(OWNER, "bot", "intelligence", expires_in_days=0)


@pytest.mark.asyncio
async def test_create_unknown_tier(manager):
    with pytest.raises(ConfigurationError):
        await manager.create(OWNER, "bot", "platinum")


@pytest.mark.asyncio
async def test_list_newest_first_and_scoped(manager):
    a = await manager.create(OWNER, "a", "intelligence")
    await asyncio.sleep(0.002)
    b = await manager.create(OWNER, "b", "intelligence")
    await manager.create("0x" + "1" * 40, "other", "intelligence")

    keys = await manager.list(OWNER.upper().replace("0X", "0x"))
    assert [k.id for k in keys] == [b.record.id, a.record.id]
    for k in keys:
        public = k.to_public()
        assert "key" not in public
        assert "keyDigest" not in public


@pytest.mark.asyncio
async def test_list_ties_broken_by_id(store, manager):
    a = await manager.create(OWNER, "a", "intelligence")
    b = await manager.create(OWNER, "b", "intelligence")
    same = a.record.created_at
    store._records[b.record.id] = store._records[b.record.id].model_copy(update={"created_at": same})

    keys = await manager.list(OWNER)
    assert [k.id for k in keys] == sorted([a.record.id, b.record.id], reverse=True)


@pytest.mark.asyncio
async def test_revoke_is_terminal(manager, store, sink):
    issued = await manager.create(OWNER, "bot", "intelligence")

    assert await manager.revoke(issued.record.id, OWNER) is True
    assert await manager.revoke(issued.record.id, OWNER) is False

    stored = await store.get_by_digest(manager.tokens.digest(issued.raw_token))
    assert stored.state() is KeyState.REVOKED
    assert stored.revoked_at is not None

    await manager.audit.drain()
    actions = [c[0][0]["action"] for c in sink.emit.call_args_list]
    assert actions == ["api_key_create", "api_key_revoke"]
    assert sink.emit.call_args_list[-1][0][0]["severity"] == "warning"


@pytest.mark.asyncio
async def test_revoke_foreign_or_missing_key(manager):
    issued = await manager.create(OWNER, "bot", "intelligence")
    assert await manager.revoke(issued.record.id, "0x" + "2" * 40) is False
    assert await manager.revoke("missing", OWNER) is False


@pytest.mark.asyncio
async def test_store_timeout_is_unavailable(audit):
    class SlowStore(MemoryApiKeyStore):
        async def insert(self, record):
            await asyncio.sleep(1)
            return record

    manager = KeyLifecycleManager(SlowStore(), TokenGenerator(), audit, store_timeout=0.05)
    with pytest.raises(StoreUnavailable):
        await manager.create(OWNER, "bot", "intelligence")


@pytest.mark.asyncio
async def test_audit_failure_does_not_block_create(store):
    sink = Mock()
    sink.emit = AsyncMock(side_effect=RuntimeError("sink down"))
    audit = AuditLogger(sink=sink)
    manager = KeyLifecycleManager(store, TokenGenerator(), audit)

    issued = await manager.create(OWNER, "bot", "intelligence")
    await audit.drain()
    assert issued.record.id


def test_expired_state():
    from credgate.domain.interfaces import ApiKeyRecord

    now = utcnow()
    record = ApiKeyRecord(
        id="k1", owner="0x", key_digest="d", masked_key="m", name="n", tier="intelligence",
        created_at=now - timedelta(days=2), expires_at=now - timedelta(seconds=1),
    )
    assert record.state(now) is KeyState.EXPIRED
    assert record.model_copy(update={"expires_at": now + timedelta(days=1)}).state(now) is KeyState.ACTIVE


@pytest.mark.asyncio
async def test_create_rejects_expiry_past_cap(manager):
    with pytest.raises(InvalidKeyRequest):
        await manager.create(OWNER, "bot", "intelligence", expires_in_days=5_000_000)
    issued = await manager.create(OWNER, "bot", "intelligence", expires_in_days=3650)
    assert issued.record.expires_at is not None


@pytest.mark.asyncio
async def test_revoke_expired_key_is_refused(manager, store, sink):
    issued = await manager.create(OWNER, "bot", "intelligence", expires_in_days=1)
    key_id = issued.record.id
    store._records[key_id] = store._records[key_id].model_copy(
        update={"expires_at": utcnow() - timedelta(seconds=1)}
    )

    assert await manager.revoke(key_id, OWNER) is False

    stored = await store.get_by_digest(manager.tokens.digest(issued.raw_token))
    assert stored.state() is KeyState.EXPIRED
    assert stored.revoked_at is None

    await manager.audit.drain()
    actions = [c[0][0]["action"] for c in sink.emit.call_args_list]
    assert actions == ["api_key_create"]
