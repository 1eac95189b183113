"""Chain identifiers, donation claims and verification outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from donation_sync.errors import MalformedClaim, UnsupportedChain

EIP155_PREFIX = "eip155"
SOLANA_PREFIX = "solana"
DEFAULT_SOLANA_CLUSTER = "mainnet-beta"
# Largest value representable on any supported chain (uint256).
MAX_AMOUNT = 2**256 - 1


class ChainFamily(str, Enum):
    """Closed set of supported chain families."""

    EVM = "evm"
    SOLANA = "solana"


class FinalityState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


class OutcomeStatus(str, Enum):
    """Chain-agnostic verification status reported to callers."""

    VERIFIED = "verified"  # fields match, finality satisfied
    PENDING = "pending"  # fields match, below finality threshold
    TIMEOUT = "timeout"  # verification did not finish in time
    NOT_FOUND = "not_found"  # tx absent (may be transient)
    CHAIN_UNAVAILABLE = "chain_unavailable"  # RPC unreachable
    MISMATCH = "mismatch"  # terminal rejection


RETRYABLE_STATUSES = frozenset({
    OutcomeStatus.PENDING,
    OutcomeStatus.TIMEOUT,
    OutcomeStatus.NOT_FOUND,
    OutcomeStatus.CHAIN_UNAVAILABLE,
})


@dataclass(frozen=True)
class ChainId:
    """Routing key for a network: numeric for EVM chains, cluster name for Solana."""

    family: ChainFamily
    reference: str

    @classmethod
    def parse(cls, raw: str | int | ChainId) -> ChainId:
        """Parse ``11155111``, ``"eip155:1"``, ``"solana"`` or ``"solana:devnet"``."""
        if isinstance(raw, ChainId):
            return raw
        if isinstance(raw, bool):
            raise UnsupportedChain(raw)
        if isinstance(raw, int):
            if raw <= 0:
                raise UnsupportedChain(raw)
            return cls(ChainFamily.EVM, str(raw))

        text = str(raw).strip().lower()
        if text.isdigit() and int(text) > 0:
            return cls(ChainFamily.EVM, str(int(text)))

        prefix, _, rest = text.partition(":")
        if prefix == EIP155_PREFIX and rest.isdigit() and int(rest) > 0:
            return cls(ChainFamily.EVM, str(int(rest)))
        if prefix == SOLANA_PREFIX:
            return cls(ChainFamily.SOLANA, rest or DEFAULT_SOLANA_CLUSTER)
        if text.startswith(SOLANA_PREFIX + "-"):
            return cls(ChainFamily.SOLANA, text[len(SOLANA_PREFIX) + 1:])
        raise UnsupportedChain(raw)

    def __str__(self) -> str:
        if self.family is ChainFamily.EVM:
            return f"{EIP155_PREFIX}:{self.reference}"
        return f"{SOLANA_PREFIX}:{self.reference}"


def parse_amount(raw: str | int) -> int:
    """Parse a base-unit amount (wei, lamports) from a decimal string.

    Accepts only non-negative integral values. Never goes through float.
    """
    if isinstance(raw, bool):
        raise MalformedClaim(f"invalid amount: {raw!r}")
    if isinstance(raw, int):
        value = Decimal(raw)
    else:
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation as exc:
            raise MalformedClaim(f"invalid amount: {raw!r}") from exc
    if not value.is_finite() or value != value.to_integral_value() or value < 0:
        raise MalformedClaim(f"amount must be a non-negative integer of base units: {raw!r}")
    if value.adjusted() > 77 or int(value) > MAX_AMOUNT:
        raise MalformedClaim(f"amount out of range: {raw!r}")
    return int(value)


@dataclass(frozen=True)
class DonationClaim:
    """An unverified assertion that a donation occurred."""

    chain_id: ChainId
    tx_reference: str
    recipient_address: str
    claimed_amount: str  # decimal string, chain base units
    session_id: str
    donor_metadata: dict[str, Any] | None = field(default=None, compare=False)

    @property
    def amount(self) -> int:
        return parse_amount(self.claimed_amount)


@dataclass(frozen=True)
class VerificationOutcome:
    """A verifier's judgment on a single claim."""

    chain_id: ChainId
    tx_reference: str
    session_id: str
    valid: bool
    status: OutcomeStatus
    finality: FinalityState = FinalityState.PENDING
    confirmed_amount: int | None = None
    confirmed_recipient: str | None = None
    height: int | None = None  # block number (EVM) or slot (Solana)
    detail: str = ""

    @property
    def is_admissible(self) -> bool:
        """True only when fields match and the finality threshold is met."""
        return self.valid and self.finality in (
            FinalityState.CONFIRMED, FinalityState.FINALIZED,
        )

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @classmethod
    def unresolved(
        cls, claim: DonationClaim, status: OutcomeStatus, detail: str = "",
    ) -> VerificationOutcome:
        """Outcome for a claim that could not be judged (or was rejected)."""
        return cls(
            chain_id=claim.chain_id,
            tx_reference=claim.tx_reference,
            session_id=claim.session_id,
            valid=False,
            status=status,
            detail=detail,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": str(self.chain_id),
            "tx_reference": self.tx_reference,
            "session_id": self.session_id,
            "valid": self.valid,
            "status": self.status.value,
            "finality": self.finality.value,
            "confirmed_amount": (
                str(self.confirmed_amount) if self.confirmed_amount is not None else None
            ),
            "confirmed_recipient": self.confirmed_recipient,
            "height": self.height,
            "detail": self.detail,
        }
