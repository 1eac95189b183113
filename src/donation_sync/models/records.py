"""Ledger records and delivery events."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from donation_sync.models.claims import ChainFamily, ChainId, VerificationOutcome


def normalize_reference(chain_id: ChainId, tx_reference: str) -> str:
    """Canonical form of a tx reference (EVM hashes are case-insensitive)."""
    ref = tx_reference.strip()
    if chain_id.family is ChainFamily.EVM:
        return ref.lower()
    return ref


def donation_id_for(chain_id: ChainId, tx_reference: str) -> str:
    """Deterministic identity: the same on-chain event always yields the same id."""
    key = f"{chain_id}/{normalize_reference(chain_id, tx_reference)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DonationCandidate:
    """A verified donation waiting for admission (no sequence yet)."""

    donation_id: str
    session_id: str
    chain_id: ChainId
    tx_reference: str
    recipient: str
    amount: int  # base units of the chain (wei, lamports)
    donor_metadata: dict[str, Any] | None = field(default=None, compare=False)
    verified_at: str = field(default_factory=_now)


@dataclass(frozen=True)
class Donation:
    """An admitted donation. Immutable once created."""

    donation_id: str
    session_id: str
    chain_id: ChainId
    tx_reference: str
    recipient: str
    amount: int
    sequence: int  # per-session, assigned at admission
    donor_metadata: dict[str, Any] | None = field(default=None, compare=False)
    verified_at: str = ""

    @classmethod
    def from_candidate(cls, candidate: DonationCandidate, sequence: int) -> Donation:
        return cls(
            donation_id=candidate.donation_id,
            session_id=candidate.session_id,
            chain_id=candidate.chain_id,
            tx_reference=candidate.tx_reference,
            recipient=candidate.recipient,
            amount=candidate.amount,
            sequence=sequence,
            donor_metadata=candidate.donor_metadata,
            verified_at=candidate.verified_at,
        )

    def to_dict(self) -> dict[str, Any]:
        # Amounts travel as strings: wei values overflow JSON doubles.
        return {
            "donation_id": self.donation_id,
            "session_id": self.session_id,
            "chain_id": str(self.chain_id),
            "tx_reference": self.tx_reference,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "sequence": self.sequence,
            "donor_metadata": self.donor_metadata,
            "verified_at": self.verified_at,
        }


@dataclass(frozen=True)
class DonationEvent:
    """Emitted to subscribers: ``{sequence, donation}``."""

    sequence: int
    donation: Donation

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "donation",
            "sequence": self.sequence,
            "donation": self.donation.to_dict(),
        }


@dataclass(frozen=True)
class AdmitResult:
    """Result of a ledger admission. ``created`` is False for duplicates."""

    donation: Donation
    created: bool


@dataclass(frozen=True)
class ClaimResult:
    """A processed claim. ``donation`` is set only when the claim was admitted."""

    outcome: VerificationOutcome
    donation: Donation | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.to_dict(),
            "donation": self.donation.to_dict() if self.donation is not None else None,
        }


class SubscriptionState(str, Enum):
    ATTACHED = "attached"
    STREAMING = "streaming"
    DETACHED = "detached"  # terminal


class DetachReason(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    CONNECTION_CLOSED = "connection_closed"
    BACKLOG_OVERFLOW = "backlog_overflow"
    SESSION_CLOSED = "session_closed"
    SHUTDOWN = "shutdown"


@dataclass
class VerificationLogEntry:
    """A persisted verification outcome."""

    id: int
    chain_id: str
    tx_reference: str
    session_id: str
    status: str
    valid: bool
    finality: str
    confirmed_amount: str | None
    detail: str
    checked_at: str
