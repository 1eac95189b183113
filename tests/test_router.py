"""Tests 17-23, 82: Verification routing, timeouts and status mapping."""

from __future__ import annotations

import pytest

from donation_sync.chains.evm import EvmVerifier
from donation_sync.chains.solana import SolanaVerifier
from donation_sync.errors import ChainUnavailable, MalformedClaim, MalformedReference, UnsupportedChain
from donation_sync.models.claims import ChainFamily, ChainId, OutcomeStatus, parse_amount
from donation_sync.verify.router import VerificationRouter

from tests.factories import (
    MAINNET,
    SEPOLIA,
    SOL_RECIPIENT,
    SOLANA,
    evm_tx_hash,
    make_claim,
    make_evm_tx,
    make_outcome,
    make_signature_status,
    make_solana_tx,
    solana_signature,
)
from tests.mocks import MockVerifier


# ── Test 17: Claims reach the verifier for their chain ───────────


async def test_router_dispatches_by_chain(router, evm_access, solana_access):
    tx_hash = evm_tx_hash("routed")
    evm_access.add(tx_hash, make_evm_tx(tx_hash))
    sig = solana_signature("routed")
    solana_access.add(sig, make_solana_tx(), make_signature_status())

    evm_outcome = await router.submit_claim(make_claim(tx_reference=tx_hash))
    sol_outcome = await router.submit_claim(make_claim(
        chain_id=SOLANA, tx_reference=sig, recipient=SOL_RECIPIENT, amount="500000000",
    ))

    assert evm_outcome.chain_id == SEPOLIA
    assert evm_outcome.status is OutcomeStatus.VERIFIED
    assert sol_outcome.chain_id == SOLANA
    assert sol_outcome.status is OutcomeStatus.VERIFIED


# ── Test 18: Unsupported chains are caller errors ────────────────


async def test_router_unsupported_chain(router):
    with pytest.raises(UnsupportedChain):
        await router.submit_claim(make_claim(chain_id=MAINNET))


def test_router_rejects_family_mismatch():
    r = VerificationRouter()
    with pytest.raises(ValueError):
        r.register(SOLANA, MockVerifier(family=ChainFamily.EVM))


def test_router_verifier_lookup_accepts_raw_ids(router):
    assert router.verifier_for(11155111) is router.verifier_for("eip155:11155111")
    assert router.verifier_for("solana") is router.verifier_for(SOLANA)
    with pytest.raises(UnsupportedChain):
        router.verifier_for("cosmos:hub")


# ── Test 19: Malformed claims raise before any chain call ────────


async def test_router_malformed_reference_raised(router, evm_access):
    with pytest.raises(MalformedReference):
        await router.submit_claim(make_claim(tx_reference="0x1234"))
    assert evm_access.calls == []


async def test_router_malformed_amount_raised(router, evm_access):
    with pytest.raises(MalformedClaim):
        await router.submit_claim(make_claim(amount="12.5"))
    assert evm_access.calls == []


# ── Test 20: Transient conditions become statuses ────────────────


async def test_router_not_found_status(router):
    outcome = await router.submit_claim(make_claim(tx_reference=evm_tx_hash("absent")))
    assert outcome.status is OutcomeStatus.NOT_FOUND
    assert not outcome.valid
    assert outcome.retryable


async def test_router_chain_unavailable_status(router, evm_access):
    evm_access.unavailable = True
    outcome = await router.submit_claim(make_claim())
    assert outcome.status is OutcomeStatus.CHAIN_UNAVAILABLE
    assert outcome.retryable


# ── Test 21: Mismatch is terminal ────────────────────────────────


async def test_router_mismatch_status(router, evm_access):
    tx_hash = evm_tx_hash("one-eth")
    evm_access.add(tx_hash, make_evm_tx(tx_hash, value=10**18))

    outcome = await router.submit_claim(
        make_claim(tx_reference=tx_hash, amount="999999999999999999"),
    )
    assert outcome.status is OutcomeStatus.MISMATCH
    assert not outcome.valid
    assert not outcome.retryable
    assert not outcome.is_admissible


# ── Test 22: Slow verifiers time out ─────────────────────────────


async def test_router_timeout_status():
    slow = MockVerifier(result=lambda c: make_outcome(), delay=1.0)
    r = VerificationRouter({SEPOLIA: slow}, timeout=0.05)

    outcome = await r.submit_claim(make_claim())
    assert outcome.status is OutcomeStatus.TIMEOUT
    assert outcome.retryable
    assert not outcome.is_admissible


# ── Test 23: Per-chain isolation ─────────────────────────────────


async def test_router_chain_outage_isolated(evm_access, solana_access):
    """A dead EVM endpoint does not affect Solana verification."""
    other = ChainId.parse("eip155:137")
    r = VerificationRouter()
    r.register(SEPOLIA, EvmVerifier(SEPOLIA, evm_access))
    r.register(other, MockVerifier(error=ChainUnavailable("polygon down")))
    r.register(SOLANA, SolanaVerifier(SOLANA, solana_access))
    evm_access.unavailable = True

    sig = solana_signature("isolated")
    solana_access.add(sig, make_solana_tx(), make_signature_status())

    polygon = await r.submit_claim(make_claim(chain_id=other))
    sol = await r.submit_claim(make_claim(
        chain_id=SOLANA, tx_reference=sig, recipient=SOL_RECIPIENT, amount="500000000",
    ))

    assert polygon.status is OutcomeStatus.CHAIN_UNAVAILABLE
    assert sol.status is OutcomeStatus.VERIFIED
    assert set(r.chains()) == {SEPOLIA, other, SOLANA}


# ── Test 82: Chain id and amount syntax ──────────────────────────


@pytest.mark.parametrize("raw, expected", [
    (11155111, "eip155:11155111"),
    ("11155111", "eip155:11155111"),
    ("EIP155:1", "eip155:1"),
    ("solana", "solana:mainnet-beta"),
    ("solana:devnet", "solana:devnet"),
    ("solana-devnet", "solana:devnet"),
])
def test_chain_id_parse(raw, expected):
    assert str(ChainId.parse(raw)) == expected


@pytest.mark.parametrize("raw", [0, -1, True, "eip155:", "eip155:abc", "bitcoin", ""])
def test_chain_id_parse_rejects(raw):
    with pytest.raises(UnsupportedChain):
        ChainId.parse(raw)


def test_parse_amount_bounds():
    assert parse_amount(" 1000 ") == 1000
    assert parse_amount("1e3") == 1000
    assert parse_amount(str(2**256 - 1)) == 2**256 - 1
    for bad in (str(2**256), "1e400000000", "Infinity"):
        with pytest.raises(MalformedClaim):
            parse_amount(bad)


async def test_router_close_releases_chain_access(router, evm_access, solana_access):
    await router.close()
    assert evm_access.closed
    assert solana_access.closed
