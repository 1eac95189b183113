"""Protocol interfaces for all donation_sync components."""

from donation_sync.interfaces.chain import (
    ChainVerifier,
    EvmChainAccess,
    RecipientMatcher,
    SolanaChainAccess,
)
from donation_sync.interfaces.session import OpenSessionDirectory, SessionDirectory
from donation_sync.interfaces.store import DonationStore
from donation_sync.interfaces.transport import Connection

__all__ = [
    "ChainVerifier", "EvmChainAccess", "RecipientMatcher", "SolanaChainAccess",
    "OpenSessionDirectory", "SessionDirectory",
    "DonationStore",
    "Connection",
]
