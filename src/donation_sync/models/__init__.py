"""Data models for the donation_sync engine."""

from donation_sync.models.claims import (
    ChainFamily,
    ChainId,
    DonationClaim,
    FinalityState,
    OutcomeStatus,
    VerificationOutcome,
    parse_amount,
)
from donation_sync.models.records import (
    AdmitResult,
    ClaimResult,
    DetachReason,
    Donation,
    DonationCandidate,
    DonationEvent,
    SubscriptionState,
    VerificationLogEntry,
    donation_id_for,
)
from donation_sync.models.config import (
    DaemonConfig,
    EvmChainConfig,
    ServerConfig,
    SolanaConfig,
    SyncConfig,
)

__all__ = [
    "ChainFamily", "ChainId", "DonationClaim", "FinalityState", "OutcomeStatus",
    "VerificationOutcome", "parse_amount",
    "AdmitResult", "ClaimResult", "DetachReason", "Donation", "DonationCandidate", "DonationEvent",
    "SubscriptionState", "VerificationLogEntry", "donation_id_for",
    "DaemonConfig", "EvmChainConfig", "ServerConfig", "SolanaConfig", "SyncConfig",
]
