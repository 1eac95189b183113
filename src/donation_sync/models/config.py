"""Configuration models for the daemon."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EvmChainConfig:
    """One EVM network reachable over JSON-RPC."""

    chain_id: int
    rpc_url: str
    min_confirmations: int = 12
    donation_contract: str = ""  # empty: verify plain native-value transfers


@dataclass
class SolanaConfig:
    """Solana cluster access."""

    enabled: bool = False
    cluster: str = "mainnet-beta"
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    donation_program_id: str = ""  # empty: accept plain system transfers


@dataclass
class SyncConfig:
    """Subscriber delivery tuning."""

    queue_size: int = 64  # max sent-but-unacknowledged events per subscriber
    backlog_depth: int = 1000  # max undelivered events while paused
    backlog_horizon: int = 300  # seconds a paused subscription may wait
    heartbeat_interval: int = 15  # seconds between pings
    heartbeat_timeout: int = 45  # silence before a connection counts as dropped


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class DaemonConfig:
    """Complete daemon configuration."""

    log_level: str = "info"

    # Verification
    verification_timeout: float = 15.0  # seconds per claim
    rpc_timeout: float = 10.0  # seconds per RPC request
    retry_attempts: int = 5  # caller-side polling in verify_until_settled
    retry_backoff: float = 2.0  # seconds, doubled per attempt

    # Chains
    evm_chains: dict[int, EvmChainConfig] = field(default_factory=dict)
    solana: SolanaConfig = field(default_factory=SolanaConfig)

    # Delivery
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Storage
    db_path: str = "~/.donation_sync/state.db"
    store_poll_interval: float = 2.0  # seconds between checks for other writers; 0 disables
