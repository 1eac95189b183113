"""Chain families: node access and per-family verifiers."""

from donation_sync.chains.evm import EvmVerifier
from donation_sync.chains.rpc import EvmRpcClient, SolanaRpcClient
from donation_sync.chains.solana import SolanaVerifier

__all__ = ["EvmRpcClient", "EvmVerifier", "SolanaRpcClient", "SolanaVerifier"]
