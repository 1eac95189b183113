"""Shared fixtures for donation_sync tests."""

from __future__ import annotations

import pytest

from donation_sync.chains.evm import EvmVerifier
from donation_sync.chains.solana import SolanaVerifier
from donation_sync.daemon import DonationSyncDaemon
from donation_sync.interfaces.session import OpenSessionDirectory
from donation_sync.ledger.ledger import DonationLedger
from donation_sync.models.config import DaemonConfig, EvmChainConfig, SolanaConfig, SyncConfig
from donation_sync.storage.sqlite import SQLiteDonationStore
from donation_sync.sync.hub import SessionSyncHub
from donation_sync.verify.router import VerificationRouter

from tests.factories import SEPOLIA, SOLANA
from tests.mocks import MockEvmAccess, MockSolanaAccess


def make_sync_config(**overrides) -> SyncConfig:
    """Small windows, no heartbeat task."""
    defaults = dict(
        queue_size=8,
        backlog_depth=50,
        backlog_horizon=5,
        heartbeat_interval=0,
        heartbeat_timeout=45,
    )
    defaults.update(overrides)
    return SyncConfig(**defaults)


def make_test_config(**overrides) -> DaemonConfig:
    """Build a DaemonConfig suitable for testing."""
    defaults = dict(
        verification_timeout=2.0,
        rpc_timeout=1.0,
        retry_attempts=3,
        retry_backoff=0.01,
        evm_chains={
            11155111: EvmChainConfig(
                chain_id=11155111, rpc_url="http://127.0.0.1:8545", min_confirmations=12,
            ),
        },
        solana=SolanaConfig(enabled=True, cluster="mainnet-beta", rpc_url="http://127.0.0.1:8899"),
        sync=make_sync_config(),
        db_path=":memory:",
    )
    defaults.update(overrides)
    return DaemonConfig(**defaults)


@pytest.fixture
def test_config():
    """Default DaemonConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteDonationStore."""
    s = SQLiteDonationStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def evm_access():
    return MockEvmAccess(depth=20)


@pytest.fixture
def solana_access():
    return MockSolanaAccess()


@pytest.fixture
def evm_verifier(evm_access):
    return EvmVerifier(SEPOLIA, evm_access, min_confirmations=12)


@pytest.fixture
def solana_verifier(solana_access):
    return SolanaVerifier(SOLANA, solana_access)


@pytest.fixture
def router(evm_verifier, solana_verifier):
    r = VerificationRouter(timeout=2.0)
    r.register(SEPOLIA, evm_verifier)
    r.register(SOLANA, solana_verifier)
    return r


@pytest.fixture
def sessions():
    return OpenSessionDirectory()


@pytest.fixture
def ledger(store, sessions):
    return DonationLedger(store, sessions)


@pytest.fixture
async def hub(ledger, sessions):
    h = SessionSyncHub(ledger, make_sync_config(), sessions)
    ledger.add_listener(h.publish)
    yield h
    await h.stop()


@pytest.fixture
async def daemon(test_config, store, router):
    """DonationSyncDaemon with mocked chain access and an in-memory store."""
    d = DonationSyncDaemon(test_config, router=router, store=store)
    yield d
    await d.hub.stop()
