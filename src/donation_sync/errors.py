"""Exception taxonomy for claim verification, admission and delivery."""

from __future__ import annotations


class DonationSyncError(Exception):
    """Base class for all donation_sync errors."""


# ── Caller / configuration errors (never retried) ─────────


class MalformedClaim(DonationSyncError):
    """Claim fields are syntactically invalid (e.g. non-integral amount)."""


class MalformedReference(MalformedClaim):
    """Transaction reference is not valid for the chain family."""

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(f"malformed reference {reference[:20]!r}: {reason}")
        self.reference = reference
        self.reason = reason


class UnsupportedChain(DonationSyncError):
    """No verifier is registered for the chain id."""

    def __init__(self, chain: object) -> None:
        super().__init__(f"unsupported chain: {chain}")
        self.chain = chain


# ── Transient conditions (caller decides retry policy) ────


class NotFound(DonationSyncError):
    """Transaction is absent from the chain (may not be propagated yet)."""


class ChainUnavailable(DonationSyncError):
    """The chain RPC endpoint could not be reached or answered with an error."""


# ── Terminal rejection ─────────────────────────────────────


class Mismatch(DonationSyncError):
    """Transaction exists but does not match the claimed recipient/amount."""


# ── Admission / delivery ───────────────────────────────────


class NotAdmissible(DonationSyncError):
    """Outcome is not valid or not final enough to create a Donation."""


class UnknownSession(DonationSyncError):
    """Session id is unknown to (or closed by) the session directory."""


class SubscriptionError(DonationSyncError):
    """Subscription request cannot be honored."""


class StoreConflict(DonationSyncError):
    """The store already holds this sequence or donation (another writer got there first)."""


class DeliveryFailed(DonationSyncError):
    """The connection rejected a frame; the subscriber may still reconnect."""


class BacklogOverflow(DonationSyncError):
    """Backlog bound exceeded while paused; subscriber must re-sync from the ledger."""

    def __init__(self, session_id: str, last_delivered_sequence: int) -> None:
        super().__init__(
            f"backlog overflow for session {session_id} "
            f"(last delivered sequence {last_delivered_sequence})"
        )
        self.session_id = session_id
        self.last_delivered_sequence = last_delivered_sequence
