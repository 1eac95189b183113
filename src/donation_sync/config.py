"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from donation_sync.models.config import (
    DaemonConfig,
    EvmChainConfig,
    ServerConfig,
    SolanaConfig,
    SyncConfig,
)


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "DONATION_SYNC_",
) -> DaemonConfig:
    """Load daemon configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (DONATION_SYNC_DB_PATH, etc.)
        2. TOML config file
        3. Defaults from DaemonConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = DaemonConfig()

    # ── Daemon section ─────────────────────────────────────
    daemon = raw.get("daemon", {})
    if v := daemon.get("log_level"):
        cfg.log_level = str(v)

    # ── Verification section ───────────────────────────────
    verification = raw.get("verification", {})
    if v := verification.get("timeout"):
        cfg.verification_timeout = float(v)
    if v := verification.get("rpc_timeout"):
        cfg.rpc_timeout = float(v)
    if v := verification.get("retry_attempts"):
        cfg.retry_attempts = int(v)
    if v := verification.get("retry_backoff"):
        cfg.retry_backoff = float(v)

    # ── Chains section ─────────────────────────────────────
    chains = raw.get("chains", {})
    for key, evm_raw in chains.get("evm", {}).items():
        chain_id = int(evm_raw.get("chain_id", key))
        cfg.evm_chains[chain_id] = EvmChainConfig(
            chain_id=chain_id,
            rpc_url=str(evm_raw.get("rpc_url", "")),
            min_confirmations=int(evm_raw.get("min_confirmations", 12)),
            donation_contract=str(evm_raw.get("donation_contract", "")),
        )

    solana_raw = chains.get("solana", {})
    cfg.solana = SolanaConfig(
        enabled=solana_raw.get("enabled", bool(solana_raw)),
        cluster=solana_raw.get("cluster", "mainnet-beta"),
        rpc_url=solana_raw.get("rpc_url", SolanaConfig.rpc_url),
        donation_program_id=solana_raw.get("donation_program_id", ""),
    )

    # ── Sync section ───────────────────────────────────────
    sync_raw = raw.get("sync", {})
    cfg.sync = SyncConfig(
        queue_size=sync_raw.get("queue_size", 64),
        backlog_depth=sync_raw.get("backlog_depth", 1000),
        backlog_horizon=sync_raw.get("backlog_horizon", 300),
        heartbeat_interval=sync_raw.get("heartbeat_interval", 15),
        heartbeat_timeout=sync_raw.get("heartbeat_timeout", 45),
    )

    # ── Server section ─────────────────────────────────────
    server = raw.get("server", {})
    cfg.server = ServerConfig(
        host=server.get("host", "127.0.0.1"),
        port=int(server.get("port", 8765)),
    )

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)
    if (v := storage.get("poll_interval")) is not None:
        cfg.store_poll_interval = float(v)

    # ── Environment variable overrides (highest priority) ──
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level
    if timeout := os.environ.get(f"{env_prefix}VERIFY_TIMEOUT"):
        cfg.verification_timeout = float(timeout)
    if sol_rpc := os.environ.get(f"{env_prefix}SOLANA_RPC_URL"):
        cfg.solana.rpc_url = sol_rpc
        cfg.solana.enabled = True

    # DONATION_SYNC_EVM_RPC_<chain id>=<url> adds or overrides an EVM chain
    evm_prefix = f"{env_prefix}EVM_RPC_"
    for name, value in os.environ.items():
        if not name.startswith(evm_prefix) or not value:
            continue
        suffix = name[len(evm_prefix):]
        if not suffix.isdigit():
            continue
        chain_id = int(suffix)
        if chain_id in cfg.evm_chains:
            cfg.evm_chains[chain_id].rpc_url = value
        else:
            cfg.evm_chains[chain_id] = EvmChainConfig(chain_id=chain_id, rpc_url=value)

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
