from donation_sync.storage.sqlite import SQLiteDonationStore

__all__ = ["SQLiteDonationStore"]
