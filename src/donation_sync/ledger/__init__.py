"""Session donation ledgers."""

from donation_sync.ledger.ledger import DonationLedger, DonationListing, SessionLedger

__all__ = ["DonationLedger", "DonationListing", "SessionLedger"]
