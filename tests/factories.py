"""Synthetic chain payload and claim factories for testing."""

from __future__ import annotations

import hashlib

import base58

from donation_sync.chains.evm import TRANSFER_TOPIC
from donation_sync.chains.solana import SYSTEM_PROGRAM_ID
from donation_sync.models.claims import (
    ChainId,
    DonationClaim,
    FinalityState,
    OutcomeStatus,
    VerificationOutcome,
)
from donation_sync.models.records import DonationCandidate, donation_id_for

SEPOLIA = ChainId.parse(11155111)
MAINNET = ChainId.parse(1)
SOLANA = ChainId.parse("solana")

EVM_RECIPIENT = "0x52908400098527886E0F7030069857D2E4169EE7"
EVM_SENDER = "0x8617E340B3D01FA5F11F306F4090FD50E238070D"
DONATION_CONTRACT = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

SOL_RECIPIENT = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SOL_SENDER = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
DONATION_PROGRAM = "Dona7ionProgram1111111111111111111111111111"


def evm_tx_hash(seed: str = "tx") -> str:
    """Valid 0x-prefixed 32-byte hash derived from ``seed``."""
    return "0x" + hashlib.sha256(seed.encode("utf-8")).hexdigest()


def solana_signature(seed: str = "sig") -> str:
    """Valid base58 64-byte signature derived from ``seed``."""
    digest = hashlib.sha512(seed.encode("utf-8")).digest()
    return base58.b58encode(digest).decode("ascii")


def make_claim(
    chain_id: ChainId = SEPOLIA,
    tx_reference: str | None = None,
    recipient: str = EVM_RECIPIENT,
    amount: str = "1000000000000000000",
    session_id: str = "session-1",
    donor_metadata: dict | None = None,
) -> DonationClaim:
    return DonationClaim(
        chain_id=chain_id,
        tx_reference=tx_reference or evm_tx_hash(),
        recipient_address=recipient,
        claimed_amount=amount,
        session_id=session_id,
        donor_metadata=donor_metadata,
    )


def make_outcome(
    chain_id: ChainId = SEPOLIA,
    tx_reference: str | None = None,
    session_id: str = "session-1",
    amount: int = 1_000_000_000_000_000_000,
    recipient: str = EVM_RECIPIENT.lower(),
    valid: bool = True,
    status: OutcomeStatus = OutcomeStatus.VERIFIED,
    finality: FinalityState = FinalityState.CONFIRMED,
) -> VerificationOutcome:
    return VerificationOutcome(
        chain_id=chain_id,
        tx_reference=tx_reference or evm_tx_hash(),
        session_id=session_id,
        valid=valid,
        status=status,
        finality=finality,
        confirmed_amount=amount if valid else None,
        confirmed_recipient=recipient if valid else None,
        height=100,
    )


def make_candidate(
    seed: str = "tx",
    session_id: str = "session-1",
    chain_id: ChainId = SEPOLIA,
    amount: int = 1_000,
) -> DonationCandidate:
    ref = evm_tx_hash(seed) if chain_id.family.value == "evm" else solana_signature(seed)
    return DonationCandidate(
        donation_id=donation_id_for(chain_id, ref),
        session_id=session_id,
        chain_id=chain_id,
        tx_reference=ref,
        recipient=EVM_RECIPIENT.lower(),
        amount=amount,
    )


# ── EVM payloads ─────────────────────────────────────────────────


def _pad_address(address: str) -> str:
    return "0x" + address.lower()[2:].rjust(64, "0")


def make_evm_tx(
    tx_hash: str | None = None,
    to: str = EVM_RECIPIENT,
    value: int = 1_000_000_000_000_000_000,
    chain_id: int = 11155111,
    block_number: int = 5_000_000,
    status: int = 1,
    logs: list[dict] | None = None,
    mined: bool = True,
) -> dict:
    """eth_getTransactionByHash + eth_getTransactionReceipt pair."""
    tx_hash = tx_hash or evm_tx_hash()
    tx = {
        "hash": tx_hash,
        "from": EVM_SENDER,
        "to": to,
        "value": hex(value),
        "chainId": hex(chain_id),
        "blockNumber": hex(block_number) if mined else None,
    }
    receipt = None
    if mined:
        receipt = {
            "transactionHash": tx_hash,
            "blockNumber": hex(block_number),
            "status": hex(status),
            "logs": logs or [],
        }
    return {"transaction": tx, "receipt": receipt}


def make_transfer_log(
    to: str = EVM_RECIPIENT,
    amount: int = 1_000_000,
    contract: str = DONATION_CONTRACT,
    sender: str = EVM_SENDER,
) -> dict:
    return {
        "address": contract,
        "topics": [TRANSFER_TOPIC, _pad_address(sender), _pad_address(to)],
        "data": "0x" + format(amount, "064x"),
    }


# ── Solana payloads ──────────────────────────────────────────────


def make_system_transfer(
    destination: str = SOL_RECIPIENT,
    lamports: int = 500_000_000,
    source: str = SOL_SENDER,
) -> dict:
    return {
        "program": "system",
        "programId": SYSTEM_PROGRAM_ID,
        "parsed": {
            "type": "transfer",
            "info": {"source": source, "destination": destination, "lamports": lamports},
        },
    }


def make_solana_tx(
    instructions: list[dict] | None = None,
    inner: list[dict] | None = None,
    slot: int = 250_000_000,
    err: object = None,
) -> dict:
    """getTransaction (jsonParsed) result."""
    return {
        "slot": slot,
        "meta": {
            "err": err,
            "innerInstructions": [{"index": 0, "instructions": inner}] if inner else [],
        },
        "transaction": {
            "message": {
                "instructions": instructions if instructions is not None
                else [make_system_transfer()],
            },
        },
    }


def make_signature_status(commitment: str = "finalized", slot: int = 250_000_000) -> dict:
    return {
        "slot": slot,
        "confirmations": None if commitment == "finalized" else 10,
        "err": None,
        "confirmationStatus": commitment,
    }
