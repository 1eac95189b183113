"""Chain access and verifier protocols."""

from __future__ import annotations

from typing import Any, Callable, Protocol

from donation_sync.models.claims import ChainFamily, DonationClaim, VerificationOutcome

RecipientMatcher = Callable[[str, str], bool]


class EvmChainAccess(Protocol):
    """Raw EVM lookups supplied by a JSON-RPC endpoint."""

    async def get_transaction(self, ref: str) -> dict[str, Any] | None:
        """Return ``{"transaction": {...}, "receipt": {...}}`` or None if absent.

        Quantities are ints or 0x-hex strings, byte fields 0x-hex strings.

        ``receipt`` is None while the transaction is still in the mempool.
        """
        ...

    async def get_finality_depth(self, ref: str) -> int | None:
        """Number of confirmations for the mined transaction, None if not mined."""
        ...

    async def close(self) -> None:
        ...


class SolanaChainAccess(Protocol):
    """Raw Solana lookups supplied by a JSON-RPC endpoint."""

    async def get_transaction(self, ref: str) -> dict[str, Any] | None:
        """Return the jsonParsed transaction, or None if the cluster doesn't know it."""
        ...

    async def get_signature_status(self, ref: str) -> dict[str, Any] | None:
        """Return the signature status (``confirmationStatus``, ``slot``...) or None."""
        ...

    async def close(self) -> None:
        ...


class ChainVerifier(Protocol):
    """Proves that a claim represents a donation on one chain family."""

    family: ChainFamily

    async def verify(self, claim: DonationClaim) -> VerificationOutcome:
        """Verify a claim.

        Raises MalformedReference, NotFound, Mismatch or ChainUnavailable.
        """
        ...

    def recipient_matcher(self) -> RecipientMatcher:
        """Equality on normalized addresses for this chain family."""
        ...

    async def close(self) -> None:
        """Release the underlying chain connection."""
        ...
