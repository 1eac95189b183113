"""DonationStore protocol - persists admitted donations and verification history."""

from __future__ import annotations

from typing import Protocol

from donation_sync.models.claims import VerificationOutcome
from donation_sync.models.records import Donation, VerificationLogEntry


class DonationStore(Protocol):
    """Durable backing for session ledgers."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Donations ──────────────────────────────────────────

    async def save_donation(self, donation: Donation) -> None:
        """Raises StoreConflict when the sequence or donation id is already stored."""
        ...

    async def load_session(self, session_id: str, after: int = 0) -> list[Donation]:
        """Donations for a session with sequence > ``after``, ordered by sequence."""
        ...

    async def list_sessions(self) -> list[str]:
        ...

    async def mark_session_closed(self, session_id: str) -> None:
        ...

    # ── Verification log ───────────────────────────────────

    async def record_verification(self, outcome: VerificationOutcome) -> None:
        ...

    async def get_verification_log(
        self, session_id: str | None = None, limit: int = 50,
    ) -> list[VerificationLogEntry]:
        ...
