import os

import pytest

from credgate.dependencies import reset_container

TEST_MASTER_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_WALLET = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"

# Never pick up a developer's .env during tests
os.environ.setdefault("AGENT_ENCRYPTION_KEY", TEST_MASTER_KEY_HEX)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    monkeypatch.setenv("AGENT_ENCRYPTION_KEY", TEST_MASTER_KEY_HEX)
    for var in ("DATABASE_URL", "REDIS_URL", "API_KEY_PEPPER", "MODE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "memory")
    monkeypatch.setenv("AUDIT_SINK", "stdout")
    reset_container()
    yield
    reset_container()
