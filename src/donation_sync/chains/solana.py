"""Solana verifier - system transfer instructions + cluster finalization."""

from __future__ import annotations

import logging
from typing import Any, Iterator

import base58

from donation_sync.errors import ChainUnavailable, Mismatch, MalformedReference, NotFound
from donation_sync.interfaces.chain import RecipientMatcher, SolanaChainAccess
from donation_sync.models.claims import (
    ChainFamily,
    ChainId,
    DonationClaim,
    FinalityState,
    OutcomeStatus,
    VerificationOutcome,
)

log = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SIGNATURE_BYTES = 64


def same_pubkey(a: str, b: str) -> bool:
    # base58 is case-sensitive: compare exactly
    return bool(a) and a.strip() == (b or "").strip()


def _instructions(tx: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """Top-level instructions followed by inner (CPI) instructions."""
    message = (tx.get("transaction") or {}).get("message") or {}
    yield from message.get("instructions") or []
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        yield from inner.get("instructions") or []


def _is_system_transfer(ix: dict[str, Any]) -> bool:
    if ix.get("programId") != SYSTEM_PROGRAM_ID and ix.get("program") != "system":
        return False
    parsed = ix.get("parsed")
    return isinstance(parsed, dict) and parsed.get("type") == "transfer"


class SolanaVerifier:
    """Verifies lamport donations on a Solana cluster.

    Sums system-program transfers (top-level and inner) whose destination
    is the recipient. When a donation program is configured the
    transaction must also invoke it. Outcomes are final only once the
    cluster reports the signature as ``finalized``.
    """

    family = ChainFamily.SOLANA

    def __init__(
        self,
        chain_id: ChainId,
        access: SolanaChainAccess,
        donation_program_id: str = "",
    ) -> None:
        self.chain_id = chain_id
        self._access = access
        self._program_id = donation_program_id.strip()

    def recipient_matcher(self) -> RecipientMatcher:
        return same_pubkey

    async def close(self) -> None:
        await self._access.close()

    @staticmethod
    def check_reference(ref: str) -> None:
        try:
            raw = base58.b58decode(ref or "")
        except ValueError as exc:
            raise MalformedReference(ref or "", "not valid base58") from exc
        if len(raw) != SIGNATURE_BYTES:
            raise MalformedReference(
                ref or "", f"expected {SIGNATURE_BYTES}-byte signature, got {len(raw)}",
            )

    async def verify(self, claim: DonationClaim) -> VerificationOutcome:
        self.check_reference(claim.tx_reference)
        expected = claim.amount

        tx = await self._access.get_transaction(claim.tx_reference)
        if tx is None:
            status = await self._access.get_signature_status(claim.tx_reference)
            if status is None:
                raise NotFound(f"signature {claim.tx_reference[:16]} unknown to {self.chain_id}")
            # Processed but not yet visible at "confirmed" commitment
            return VerificationOutcome.unresolved(
                claim, OutcomeStatus.PENDING, "transaction not yet confirmed",
            )

        try:
            amount = self._transferred_amount(tx, claim.recipient_address)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ChainUnavailable(
                f"malformed payload for {claim.tx_reference[:16]} from {self.chain_id}: {exc}"
            ) from exc

        if amount == 0:
            raise Mismatch(f"no transfer to {claim.recipient_address[:12]} in transaction")
        if amount != expected:
            raise Mismatch(f"transferred {amount} lamports, claimed {expected}")

        status = await self._access.get_signature_status(claim.tx_reference) or {}
        slot = tx.get("slot", status.get("slot"))
        commitment = status.get("confirmationStatus")
        if commitment == "finalized":
            finality, outcome_status = FinalityState.FINALIZED, OutcomeStatus.VERIFIED
        else:
            log.debug("%s %s at commitment %s", self.chain_id, claim.tx_reference[:16], commitment)
            finality, outcome_status = FinalityState.PENDING, OutcomeStatus.PENDING

        return VerificationOutcome(
            chain_id=claim.chain_id,
            tx_reference=claim.tx_reference,
            session_id=claim.session_id,
            valid=True,
            status=outcome_status,
            finality=finality,
            confirmed_amount=amount,
            confirmed_recipient=claim.recipient_address.strip(),
            height=slot,
            detail=f"commitment {commitment or 'unknown'}",
        )

    def _transferred_amount(self, tx: dict[str, Any], recipient: str) -> int:
        meta = tx.get("meta") or {}
        if meta.get("err") is not None:
            raise Mismatch(f"transaction failed: {meta['err']}")

        instructions = list(_instructions(tx))
        if self._program_id and not any(
            ix.get("programId") == self._program_id for ix in instructions
        ):
            raise Mismatch("transaction does not invoke the donation program")

        amount = 0
        for ix in instructions:
            if not _is_system_transfer(ix):
                continue
            info = ix["parsed"].get("info") or {}
            if same_pubkey(info.get("destination", ""), recipient):
                amount += int(info.get("lamports", 0))
        return amount
