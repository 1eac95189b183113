"""EVM verifier - receipt, transfer-log and confirmation-depth checks."""

from __future__ import annotations

import logging
import re
from typing import Any

from donation_sync.errors import ChainUnavailable, Mismatch, MalformedReference, NotFound
from donation_sync.interfaces.chain import EvmChainAccess, RecipientMatcher
from donation_sync.models.claims import (
    ChainFamily,
    ChainId,
    DonationClaim,
    FinalityState,
    OutcomeStatus,
    VerificationOutcome,
)

log = logging.getLogger(__name__)

_TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def hex_int(value: Any) -> int | None:
    """Decode an EVM quantity (``"0x1b4"`` or an int) to int. None passes through."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16)


def _normalize(address: str | None) -> str:
    return (address or "").strip().lower()


def same_address(a: str, b: str) -> bool:
    return bool(a) and _normalize(a) == _normalize(b)


def _topic_address(topic: str) -> str:
    """Last 20 bytes of a 32-byte indexed topic, as a 0x address."""
    return "0x" + topic[-40:].lower()


class EvmVerifier:
    """Verifies donations on one EVM chain.

    With a donation contract configured, the donation is the sum of
    ``Transfer`` logs emitted by that contract towards the recipient.
    Without one, it is the native value of a transaction sent to the
    recipient. Amounts are compared as wei integers.
    """

    family = ChainFamily.EVM

    def __init__(
        self,
        chain_id: ChainId,
        access: EvmChainAccess,
        min_confirmations: int = 12,
        donation_contract: str = "",
    ) -> None:
        self.chain_id = chain_id
        self._access = access
        self._min_confirmations = max(1, min_confirmations)
        self._donation_contract = _normalize(donation_contract)

    def recipient_matcher(self) -> RecipientMatcher:
        return same_address

    async def close(self) -> None:
        await self._access.close()

    @staticmethod
    def check_reference(ref: str) -> None:
        if not _TX_HASH.match(ref or ""):
            raise MalformedReference(ref or "", "expected 0x-prefixed 32-byte hex hash")

    async def verify(self, claim: DonationClaim) -> VerificationOutcome:
        self.check_reference(claim.tx_reference)
        expected = claim.amount

        data = await self._access.get_transaction(claim.tx_reference)
        if not data or data.get("transaction") is None:
            raise NotFound(f"transaction {claim.tx_reference[:18]} not found on {self.chain_id}")

        tx = data["transaction"]
        receipt = data.get("receipt")
        if receipt is None or receipt.get("blockNumber") is None:
            return VerificationOutcome.unresolved(
                claim, OutcomeStatus.PENDING, "transaction not yet mined",
            )

        try:
            self._check_chain(tx)
            if hex_int(receipt.get("status", "0x1")) == 0:
                raise Mismatch("transaction reverted")
            amount = self._transferred_amount(tx, receipt, claim.recipient_address)
            height = hex_int(receipt.get("blockNumber"))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            # A node answering with garbage is an unavailable node, not a bad claim.
            raise ChainUnavailable(
                f"malformed payload for {claim.tx_reference[:18]} from {self.chain_id}: {exc}"
            ) from exc

        if amount == 0:
            raise Mismatch(f"no transfer to {claim.recipient_address[:12]} in transaction")
        if amount != expected:
            raise Mismatch(f"transferred {amount} wei, claimed {expected}")

        depth = await self._access.get_finality_depth(claim.tx_reference)
        if depth is None or depth < self._min_confirmations:
            log.debug(
                "%s %s at depth %s (< %d)",
                self.chain_id, claim.tx_reference[:18], depth, self._min_confirmations,
            )
            return self._outcome(
                claim, amount, height, FinalityState.PENDING, OutcomeStatus.PENDING,
                f"{depth or 0}/{self._min_confirmations} confirmations",
            )
        return self._outcome(
            claim, amount, height, FinalityState.CONFIRMED, OutcomeStatus.VERIFIED,
            f"{depth} confirmations",
        )

    def _check_chain(self, tx: dict[str, Any]) -> None:
        # Legacy transactions may omit chainId; EIP-155+ ones must match.
        tx_chain = tx.get("chainId")
        if tx_chain is not None and str(hex_int(tx_chain)) != self.chain_id.reference:
            raise Mismatch(f"transaction belongs to chain {hex_int(tx_chain)}")

    def _transferred_amount(
        self, tx: dict[str, Any], receipt: dict[str, Any], recipient: str,
    ) -> int:
        if not self._donation_contract:
            if not same_address(tx.get("to") or "", recipient):
                return 0
            return hex_int(tx.get("value")) or 0

        total = 0
        for entry in receipt.get("logs") or []:
            if _normalize(entry.get("address")) != self._donation_contract:
                continue
            topics = entry.get("topics") or []
            if len(topics) < 3 or topics[0].lower() != TRANSFER_TOPIC:
                continue
            if not same_address(_topic_address(topics[2]), recipient):
                continue
            data = (entry.get("data") or "0x")[2:]
            total += int(data[:64] or "0", 16)
        return total

    def _outcome(
        self,
        claim: DonationClaim,
        amount: int,
        height: int | None,
        finality: FinalityState,
        status: OutcomeStatus,
        detail: str,
    ) -> VerificationOutcome:
        return VerificationOutcome(
            chain_id=claim.chain_id,
            tx_reference=claim.tx_reference,
            session_id=claim.session_id,
            valid=True,
            status=status,
            finality=finality,
            confirmed_amount=amount,
            confirmed_recipient=_normalize(claim.recipient_address),
            height=height,
            detail=detail,
        )
