import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from credgate.cli import cli
from credgate.dependencies import reset_container
from credgate.domain.secrets.kek_provider import load_master_key

OWNER = "0x" + "ab" * 20


@pytest.fixture
def database(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'credgate.db'}")
    reset_container()
    result = CliRunner().invoke(cli, ["init-db"])
    assert result.exit_code == 0
    reset_container()


def _invoke(args):
    # each CLI run is its own process in practice
    result = CliRunner().invoke(cli, args)
    reset_container()
    return result


def test_generate_master_key_formats():
    runner = CliRunner()
    for fmt in ("hex", "base64"):
        result = runner.invoke(cli, ["generate-master-key", "--format", fmt])
        assert result.exit_code == 0
        assert len(load_master_key(result.output.strip())) == 32


def test_tiers_json():
    result = CliRunner().invoke(cli, ["tiers", "--format", "json"])
    assert result.exit_code == 0
    assert [t["id"] for t in json.loads(result.output)] == ["intelligence", "professional", "enterprise"]


def test_issue_wallet_prints_address_only(database):
    result = _invoke(["issue-wallet", "--agent-id", "agent-7"])
    assert result.exit_code == 0
    assert result.output.startswith("✓ Wallet for 'agent-7': 0x")
    assert ":" not in result.output.split(": ", 1)[1]

    # the second issuance for the same agent hits the stored row
    assert _invoke(["issue-wallet", "--agent-id", "agent-7"]).exit_code != 0


def test_issue_wallet_without_master_key(database, monkeypatch):
    monkeypatch.setenv("AGENT_ENCRYPTION_KEY", "")
    result = _invoke(["issue-wallet", "--agent-id", "agent-7"])
    assert result.exit_code == 1
    assert "CONFIGURATION_ERROR" in result.output


@pytest.mark.parametrize("args", [
    ["issue-wallet", "--agent-id", "agent-7"],
    ["create-key", "--owner", OWNER, "--name", "ops"],
    ["audit-events", "--owner", OWNER],
    ["init-db"],
])
def test_persistent_commands_require_database(args):
    result = _invoke(args)
    assert result.exit_code == 1
    assert "DATABASE_URL is not set" in result.output
    assert "mf_live_" not in result.output


def test_create_key_persists(database):
    result = _invoke(["create-key", "--owner", OWNER, "--name", "ops", "--tier", "enterprise"])
    assert result.exit_code == 0
    body = json.loads(result.output[:result.output.rindex("}") + 1])
    assert body["key"].startswith("mf_live_")
    assert body["tier"] == "enterprise"

    from fastapi.testclient import TestClient
    from credgate.main import app

    with TestClient(app) as client:
        resp = client.get("/v1/tier", headers={"Authorization": f"Bearer {body['key']}"})
    assert resp.status_code == 200
    assert resp.json()["keyId"] == body["id"]


def test_audit_events_lists_recorded_actions(database, monkeypatch):
    monkeypatch.setenv("AUDIT_SINK", "postgres")
    reset_container()
    assert _invoke(["create-key", "--owner", OWNER, "--name", "ops"]).exit_code == 0

    result = _invoke(["audit-events", "--owner", OWNER.upper().replace("0X", "0x")])
    assert result.exit_code == 0
    assert "api_key_create" in result.output
    assert "mf_live_" not in result.output


def test_audit_events_empty(database):
    result = _invoke(["audit-events", "--owner", OWNER])
    assert result.exit_code == 0
    assert "No audit events." in result.output


def test_serve_runs_uvicorn():
    with patch("credgate.cli.uvicorn.run") as run:
        result = CliRunner().invoke(cli, ["serve", "--port", "9001"])
    assert result.exit_code == 0
    run.assert_called_once_with(
        "credgate.main:app", host="127.0.0.1", port=9001, reload=False, proxy_headers=True,
    )
