"""Verification router - dispatches claims to the verifier for their chain."""

from __future__ import annotations

import asyncio
import logging

from donation_sync.errors import ChainUnavailable, Mismatch, NotFound, UnsupportedChain
from donation_sync.interfaces.chain import ChainVerifier
from donation_sync.models.claims import (
    ChainId,
    DonationClaim,
    OutcomeStatus,
    VerificationOutcome,
    parse_amount,
)

log = logging.getLogger(__name__)


class VerificationRouter:
    """Stateless ``ChainId -> ChainVerifier`` dispatch.

    Caller errors (UnsupportedChain, MalformedReference, MalformedClaim)
    are raised. Everything the chain itself can answer - not found,
    unreachable, mismatch, timeout - comes back as a VerificationOutcome
    so the caller owns the retry policy.
    """

    def __init__(
        self,
        verifiers: dict[ChainId, ChainVerifier] | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._verifiers: dict[ChainId, ChainVerifier] = dict(verifiers or {})
        self._timeout = timeout

    def register(self, chain_id: ChainId, verifier: ChainVerifier) -> None:
        if verifier.family is not chain_id.family:
            raise ValueError(
                f"{type(verifier).__name__} cannot verify {chain_id} ({chain_id.family.value})"
            )
        self._verifiers[chain_id] = verifier

    def chains(self) -> list[ChainId]:
        return list(self._verifiers)

    def verifier_for(self, chain_id: ChainId | str | int) -> ChainVerifier:
        key = ChainId.parse(chain_id)
        verifier = self._verifiers.get(key)
        if verifier is None:
            raise UnsupportedChain(key)
        return verifier

    async def submit_claim(self, claim: DonationClaim) -> VerificationOutcome:
        """Verify one claim. May be polled again while the outcome is retryable."""
        verifier = self.verifier_for(claim.chain_id)
        # Amount syntax is a caller error: fail before touching the chain.
        parse_amount(claim.claimed_amount)

        try:
            outcome = await asyncio.wait_for(verifier.verify(claim), self._timeout)
        except asyncio.TimeoutError:
            log.info(
                "Verification of %s on %s timed out after %.1fs",
                claim.tx_reference[:18], claim.chain_id, self._timeout,
            )
            return VerificationOutcome.unresolved(
                claim, OutcomeStatus.TIMEOUT, f"timed out after {self._timeout}s",
            )
        except NotFound as exc:
            log.debug("Not found: %s", exc)
            return VerificationOutcome.unresolved(claim, OutcomeStatus.NOT_FOUND, str(exc))
        except ChainUnavailable as exc:
            log.warning("Chain %s unavailable: %s", claim.chain_id, exc)
            return VerificationOutcome.unresolved(
                claim, OutcomeStatus.CHAIN_UNAVAILABLE, str(exc),
            )
        except Mismatch as exc:
            log.warning(
                "Claim rejected: session=%s chain=%s tx=%s: %s",
                claim.session_id, claim.chain_id, claim.tx_reference[:18], exc,
            )
            return VerificationOutcome.unresolved(claim, OutcomeStatus.MISMATCH, str(exc))

        log.info(
            "Verified %s on %s: status=%s finality=%s",
            claim.tx_reference[:18], claim.chain_id,
            outcome.status.value, outcome.finality.value,
        )
        return outcome

    async def close(self) -> None:
        """Release the chain connections held by every verifier."""
        for verifier in self._verifiers.values():
            await verifier.close()
