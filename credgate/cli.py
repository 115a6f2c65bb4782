"""CLI for Credgate operators."""
import asyncio
import base64
import json
import secrets

import click
import uvicorn

from credgate.dependencies import get_container
from credgate.domain import tiers
from credgate.domain.keys.manager import creation_response
from credgate.errors import CredgateError


@click.group()
def cli():
    """Credgate CLI."""
    pass


def _fail(e: CredgateError):
    click.echo(f"Error: {e.public_message} ({e.code})", err=True)
    raise SystemExit(1)


@cli.command("generate-master-key")
@click.option("--format", "fmt", type=click.Choice(["hex", "base64"]), default="hex")
def generate_master_key(fmt: str):
    """Print a fresh 32-byte AGENT_ENCRYPTION_KEY."""
    raw = secrets.token_bytes(32)
    click.echo(raw.hex() if fmt == "hex" else base64.b64encode(raw).decode("ascii"))


@cli.command("tiers")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
def list_tiers(fmt: str):
    """Show the tier policy table."""
    rows = [t.to_dict() for t in tiers.list_tiers()]
    if fmt == "json":
        click.echo(json.dumps(rows, indent=2))
        return
    click.echo(f"\n{'Tier':<14} {'Req/min':<8} {'Monthly quota':<14} {'Fee USD':<8}")
    click.echo("-" * 48)
    for r in rows:
        quota = "unlimited" if r["monthlyQuota"] is None else str(r["monthlyQuota"])
        click.echo(f"{r['id']:<14} {r['rateLimitPerMin']:<8} {quota:<14} {r['monthlyFeeUsd']:<8}")


def _database_container():
    """Container backed by SQL stores; in-memory records would vanish on exit."""
    container = get_container()
    if container.engine is None:
        click.echo("Error: DATABASE_URL is not set", err=True)
        raise SystemExit(1)
    return container


@cli.command("init-db")
def init_database():
    """Create the credential store tables."""
    try:
        container = _database_container()
    except CredgateError as e:
        _fail(e)
    from credgate.adapters.postgres.session import init_db
    init_db(container.engine)
    click.echo("✓ Schema ready")


@cli.command("issue-wallet")
@click.option("--agent-id", required=True, help="Agent that will own the wallet")
def issue_wallet(agent_id: str):
    """Create and store an encrypted agent wallet. Prints the address only."""
    async def run(container):
        try:
            wallet = container.wallet_issuer().issue_wallet()
            await container.wallets.save_wallet(wallet.to_record(agent_id))
            return wallet
        finally:
            await container.aclose()

    try:
        wallet = asyncio.run(run(_database_container()))
    except CredgateError as e:
        _fail(e)
    click.echo(f"✓ Wallet for '{agent_id}': {wallet.address}")


@cli.command("create-key")
@click.option("--owner", required=True, help="Owner wallet address")
@click.option("--name", required=True)
@click.option("--tier", type=click.Choice(sorted(tiers.TIERS)), default="intelligence")
@click.option("--expires-in-days", type=int, default=None)
def create_key(owner: str, name: str, tier: str, expires_in_days):
    """Issue an API key. The raw key is printed once."""
    async def run(container):
        try:
            return await container.manager.create(owner, name, tier, expires_in_days=expires_in_days)
        finally:
            await container.aclose()

    try:
        issued = asyncio.run(run(_database_container()))
    except CredgateError as e:
        _fail(e)
    click.echo(json.dumps(creation_response(issued), indent=2))
    click.echo("Store this key now; it cannot be shown again.", err=True)


@cli.command("audit-events")
@click.option("--owner", required=True, help="Owner wallet address")
@click.option("--limit", type=int, default=50, show_default=True)
def audit_events(owner: str, limit: int):
    """Show the newest audit events recorded for a wallet."""
    from credgate.adapters.postgres.session import create_session_factory
    from credgate.adapters.postgres.stores import PostgresAuditSink

    async def run(container):
        try:
            sink = PostgresAuditSink(create_session_factory(container.engine))
            return await sink.list_events(owner, limit=limit)
        finally:
            await container.aclose()

    try:
        events = asyncio.run(run(_database_container()))
    except CredgateError as e:
        _fail(e)
    if not events:
        click.echo("No audit events.")
        return
    for event in events:
        when = event["created_at"].isoformat() if event["created_at"] else "-"
        click.echo(f"{when}  {event['severity']:<8} {event['action']:<16} {event['description']}")


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(host: str, port: int, reload: bool):
    """Run the HTTP API."""
    uvicorn.run("credgate.main:app", host=host, port=port, reload=reload, proxy_headers=True)


if __name__ == "__main__":
    cli()
