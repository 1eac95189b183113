"""CLI entry point for the donation_sync daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click

from donation_sync.config import load_config
from donation_sync.daemon import DonationSyncDaemon, run_daemon
from donation_sync.errors import DonationSyncError
from donation_sync.models.claims import ChainId, DonationClaim
from donation_sync.storage.sqlite import SQLiteDonationStore


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """donation_sync - Multi-chain donation verification and session sync."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the verification and sync daemon."""
    cfg = load_config(ctx.obj["config_path"])
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    if not cfg.evm_chains and not cfg.solana.enabled:
        click.echo("Error: No chains configured.", err=True)
        click.echo("Add [chains.evm.<id>] / [chains.solana] or set DONATION_SYNC_EVM_RPC_<id>.", err=True)
        sys.exit(1)

    click.echo(f"Starting donation_sync daemon on {cfg.server.host}:{cfg.server.port}")
    asyncio.run(run_daemon(cfg))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show daemon configuration."""
    cfg = load_config(ctx.obj["config_path"])
    click.echo(f"DB path:       {cfg.db_path}")
    click.echo(f"Listen:        {cfg.server.host}:{cfg.server.port}")
    click.echo(f"Verify timeout:{cfg.verification_timeout:>6.1f}s")
    click.echo("")
    click.echo("Chains")
    if not cfg.evm_chains and not cfg.solana.enabled:
        click.echo("  (none configured)")
    for chain_id, evm in sorted(cfg.evm_chains.items()):
        contract = evm.donation_contract or "native transfers"
        click.echo(f"  eip155:{chain_id:<10} {evm.rpc_url}  confirmations={evm.min_confirmations}  {contract}")
    if cfg.solana.enabled:
        program = cfg.solana.donation_program_id or "system transfers"
        click.echo(f"  solana:{cfg.solana.cluster:<10} {cfg.solana.rpc_url}  {program}")
    click.echo("")
    click.echo("Sync")
    click.echo(f"  Queue size:    {cfg.sync.queue_size}")
    click.echo(f"  Backlog:       {cfg.sync.backlog_depth} events / {cfg.sync.backlog_horizon}s")
    click.echo(f"  Heartbeat:     every {cfg.sync.heartbeat_interval}s, timeout {cfg.sync.heartbeat_timeout}s")


# ── Verification ───────────────────────────────────────


@cli.command()
@click.argument("chain")
@click.argument("tx_reference")
@click.argument("recipient")
@click.argument("amount")
@click.option("--session", "session_id", required=True, help="Session the donation belongs to")
@click.option("--wait", is_flag=True, help="Poll until final or rejected")
@click.option(
    "--admit", is_flag=True,
    help="Admit into the session ledger when verified (a running daemon on the same DB streams it)",
)
@click.pass_context
def verify(
    ctx: click.Context,
    chain: str,
    tx_reference: str,
    recipient: str,
    amount: str,
    session_id: str,
    wait: bool,
    admit: bool,
) -> None:
    """Verify one donation claim (AMOUNT in base units: wei, lamports)."""
    cfg = load_config(ctx.obj["config_path"])

    async def _verify():
        daemon = DonationSyncDaemon(cfg)
        await daemon.initialize()
        try:
            claim = DonationClaim(
                chain_id=ChainId.parse(chain),
                tx_reference=tx_reference,
                recipient_address=recipient,
                claimed_amount=amount,
                session_id=session_id,
            )
            if wait:
                outcome = await daemon.verify_until_settled(claim)
            else:
                outcome = await daemon.submit_claim(claim)
            click.echo(json.dumps(outcome.to_dict(), indent=2))

            if admit:
                if not outcome.is_admissible:
                    click.echo(f"Not admitted: {outcome.status.value}", err=True)
                    sys.exit(2)
                donation = await daemon.admit_verified(session_id, outcome)
                click.echo(f"Admitted as sequence {donation.sequence} ({donation.donation_id[:16]}...)")
        finally:
            await daemon.shutdown()

    try:
        asyncio.run(_verify())
    except DonationSyncError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ── History ────────────────────────────────────────────


@cli.command()
@click.argument("session_id")
@click.pass_context
def donations(ctx: click.Context, session_id: str) -> None:
    """List persisted donations and per-chain totals for a session."""
    cfg = load_config(ctx.obj["config_path"])

    async def _donations():
        store = SQLiteDonationStore(cfg.db_path)
        await store.initialize()
        try:
            rows = await store.load_session(session_id)
            if not rows:
                click.echo(f"No donations for session {session_id}.")
                return

            totals: dict[str, int] = {}
            for d in rows:
                click.echo(f"  #{d.sequence:<5} {str(d.chain_id):<22} {d.amount:>24}  "
                           f"tx={d.tx_reference[:18]}... at={d.verified_at}")
                totals[str(d.chain_id)] = totals.get(str(d.chain_id), 0) + d.amount
            click.echo("")
            click.echo("Totals (base units)")
            for chain_id, total in sorted(totals.items()):
                click.echo(f"  {chain_id:<22} {total}")
            if await store.is_session_closed(session_id):
                click.echo("")
                click.echo("Session is closed.")
        finally:
            await store.close()

    asyncio.run(_donations())


@cli.command("log")
@click.option("--session", "session_id", default=None, help="Only this session")
@click.option("-n", "--limit", type=int, default=20, help="Number of entries to show")
@click.pass_context
def verification_log(ctx: click.Context, session_id: str | None, limit: int) -> None:
    """Show recent verification outcomes."""
    cfg = load_config(ctx.obj["config_path"])

    async def _log():
        store = SQLiteDonationStore(cfg.db_path)
        await store.initialize()
        try:
            entries = await store.get_verification_log(session_id, limit)
            if not entries:
                click.echo("No verifications recorded.")
                return

            for e in entries:
                click.echo(
                    f"  [{e.status:17s}] {e.chain_id:<18} tx={e.tx_reference[:18]}... "
                    f"session={e.session_id} at={e.checked_at}"
                    + (f" ({e.detail})" if e.detail else "")
                )
        finally:
            await store.close()

    asyncio.run(_log())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
