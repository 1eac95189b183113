"""Per-session donation ledgers with idempotent, serialized admission."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterator

from donation_sync.errors import NotAdmissible, StoreConflict, UnknownSession
from donation_sync.interfaces.session import SessionDirectory
from donation_sync.interfaces.store import DonationStore
from donation_sync.models.claims import ChainId, VerificationOutcome
from donation_sync.models.records import (
    AdmitResult,
    Donation,
    DonationCandidate,
    DonationEvent,
    donation_id_for,
)

log = logging.getLogger(__name__)

EventListener = Callable[[DonationEvent], Awaitable[None]]


class SessionLedger:
    """Insertion-ordered donations for one session.

    ``_log[n - 1]`` holds the donation with sequence ``n``, so replay after
    a sequence is a slice. ``_by_id`` gives O(1) duplicate checks.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.lock = asyncio.Lock()
        self.loaded = False
        self._by_id: dict[str, Donation] = {}
        self._log: list[Donation] = []

    @property
    def head(self) -> int:
        return len(self._log)

    def get(self, donation_id: str) -> Donation | None:
        return self._by_id.get(donation_id)

    def append(self, donation: Donation) -> None:
        if donation.sequence != self.head + 1:
            raise ValueError(
                f"sequence {donation.sequence} does not follow head {self.head} "
                f"in session {self.session_id}"
            )
        self._by_id[donation.donation_id] = donation
        self._log.append(donation)

    def load(self, donations: list[Donation]) -> None:
        for donation in sorted(donations, key=lambda d: d.sequence):
            if donation.donation_id not in self._by_id:
                self.append(donation)

    def after(self, sequence: int, limit: int | None = None) -> list[Donation]:
        start = max(0, sequence)
        end = len(self._log) if limit is None else min(len(self._log), start + limit)
        return self._log[start:end]

    def at(self, index: int) -> Donation:
        return self._log[index]

    def totals(self) -> dict[ChainId, int]:
        totals: dict[ChainId, int] = {}
        for donation in self._log:
            totals[donation.chain_id] = totals.get(donation.chain_id, 0) + donation.amount
        return totals


class DonationListing:
    """Lazy, restartable view of a session's donations.

    Bounded by the ledger size when the listing was taken: donations
    admitted afterwards are not yielded.
    """

    def __init__(self, ledger: SessionLedger | None) -> None:
        self._ledger = ledger
        self._size = ledger.head if ledger is not None else 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[Donation]:
        for index in range(self._size):
            yield self._ledger.at(index)  # type: ignore[union-attr]


class DonationLedger:
    """Authoritative, deduplicated donation record for every active session.

    Admission is serialized per session (one asyncio.Lock each); sessions
    never contend with each other. Totals are always derived from the
    entries, never stored.
    """

    def __init__(
        self,
        store: DonationStore | None = None,
        sessions: SessionDirectory | None = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._ledgers: dict[str, SessionLedger] = {}
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        """Register a coroutine called once per newly admitted donation."""
        self._listeners.append(listener)

    # ── Session state ─────────────────────────────────────

    async def open(self, session_id: str) -> int:
        """Ensure the session ledger exists and is hydrated. Returns its head."""
        ledger = await self._session(session_id)
        return ledger.head

    def head(self, session_id: str) -> int:
        ledger = self._ledgers.get(session_id)
        return ledger.head if ledger is not None else 0

    def events_after(
        self, session_id: str, sequence: int, limit: int | None = None,
    ) -> list[DonationEvent]:
        """Range query: events with sequence > ``sequence`` in order."""
        ledger = self._ledgers.get(session_id)
        if ledger is None:
            return []
        return [DonationEvent(d.sequence, d) for d in ledger.after(sequence, limit)]

    async def release(self, session_id: str) -> None:
        """Drop in-memory state for a closed session."""
        if self._ledgers.pop(session_id, None) is not None:
            log.info("Released ledger for session %s", session_id)

    def active_sessions(self) -> list[str]:
        return list(self._ledgers)

    async def _session(self, session_id: str) -> SessionLedger:
        ledger = self._ledgers.get(session_id)
        if ledger is None:
            ledger = self._ledgers.setdefault(session_id, SessionLedger(session_id))
        if not ledger.loaded:
            async with ledger.lock:
                if not ledger.loaded:
                    if self._store is not None:
                        ledger.load(await self._store.load_session(session_id))
                        if ledger.head:
                            log.info(
                                "Hydrated session %s with %d donations",
                                session_id, ledger.head,
                            )
                    ledger.loaded = True
        return ledger

    async def _require_open(self, session_id: str) -> None:
        if self._sessions is not None and not await self._sessions.exists(session_id):
            raise UnknownSession(session_id)

    async def refresh(self, session_id: str) -> int:
        """Pick up donations another writer persisted for an active session.

        New donations are appended and announced to listeners. Returns how
        many were found.
        """
        ledger = self._ledgers.get(session_id)
        if ledger is None or self._store is None:
            return 0
        async with ledger.lock:
            if not ledger.loaded or self._ledgers.get(session_id) is not ledger:
                return 0
            return len(await self._catch_up(ledger))

    async def _catch_up(self, ledger: SessionLedger) -> list[Donation]:
        """Append stored donations beyond the in-memory head. Caller holds the lock."""
        if self._store is None:
            return []
        fresh = await self._store.load_session(ledger.session_id, after=ledger.head)
        for donation in fresh:
            ledger.append(donation)
            await self._notify(donation)
        if fresh:
            log.info(
                "Session %s caught up to sequence %d from the store",
                ledger.session_id, ledger.head,
            )
        return fresh

    async def _persist(self, donation: Donation) -> None:
        if self._store is not None:
            await self._store.save_donation(donation)

    async def _notify(self, donation: Donation) -> None:
        event = DonationEvent(donation.sequence, donation)
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as exc:
                log.error(
                    "Donation listener failed for session %s seq %d: %s",
                    donation.session_id, donation.sequence, exc, exc_info=True,
                )

    # ── Admission ─────────────────────────────────────────

    async def admit(self, session_id: str, candidate: DonationCandidate) -> AdmitResult:
        """Insert a donation unless its id is already present.

        Duplicates return the stored Donation unchanged and emit nothing.
        A new Donation is persisted, then listeners are notified exactly once.
        """
        if candidate.session_id != session_id:
            raise NotAdmissible(
                f"candidate belongs to session {candidate.session_id}, not {session_id}"
            )
        await self._require_open(session_id)

        ledger = await self._session(session_id)
        async with ledger.lock:
            # The session may have been closed while we waited for the lock.
            await self._require_open(session_id)

            existing = ledger.get(candidate.donation_id)
            donation = None
            if existing is None:
                donation = Donation.from_candidate(candidate, ledger.head + 1)
                try:
                    await self._persist(donation)
                except StoreConflict as exc:
                    # Another writer shares the store: catch up, then retry once.
                    log.warning("Store conflict in session %s, reloading: %s", session_id, exc)
                    await self._catch_up(ledger)
                    existing = ledger.get(candidate.donation_id)
                    if existing is None:
                        donation = Donation.from_candidate(candidate, ledger.head + 1)
                        await self._persist(donation)

            if existing is not None:
                log.debug(
                    "Duplicate donation %s in session %s (sequence %d)",
                    candidate.donation_id[:12], session_id, existing.sequence,
                )
                return AdmitResult(existing, created=False)

            ledger.append(donation)
            # Still under the session lock so listeners see sequences in order.
            await self._notify(donation)

        log.info(
            "Admitted donation seq=%d session=%s chain=%s amount=%d tx=%s",
            donation.sequence, session_id, donation.chain_id, donation.amount,
            donation.tx_reference[:18],
        )
        return AdmitResult(donation, created=True)

    async def admit_verified(
        self,
        session_id: str,
        outcome: VerificationOutcome,
        donor_metadata: dict | None = None,
    ) -> Donation:
        """Create (or return) the Donation for a verified, final outcome.

        Fail-closed: anything short of a valid outcome with finality
        satisfied raises NotAdmissible.
        """
        if not outcome.is_admissible:
            raise NotAdmissible(
                f"outcome for {outcome.tx_reference[:18]} is {outcome.status.value} "
                f"(finality {outcome.finality.value})"
            )
        if outcome.session_id != session_id:
            raise NotAdmissible(
                f"outcome belongs to session {outcome.session_id}, not {session_id}"
            )
        if outcome.confirmed_amount is None or not outcome.confirmed_recipient:
            raise NotAdmissible("outcome lacks a confirmed amount or recipient")

        candidate = DonationCandidate(
            donation_id=donation_id_for(outcome.chain_id, outcome.tx_reference),
            session_id=session_id,
            chain_id=outcome.chain_id,
            tx_reference=outcome.tx_reference,
            recipient=outcome.confirmed_recipient,
            amount=outcome.confirmed_amount,
            donor_metadata=donor_metadata,
        )
        result = await self.admit(session_id, candidate)
        return result.donation

    # ── Queries ───────────────────────────────────────────

    async def total_for(self, session_id: str) -> dict[ChainId, int]:
        """Per-chain subtotals in native base units.

        Units differ per chain, so nothing is summed across chains here;
        conversion for display is the caller's job.
        """
        ledger = await self._snapshot(session_id)
        return ledger.totals()

    async def list(self, session_id: str) -> DonationListing:
        ledger = await self._snapshot(session_id)
        return DonationListing(ledger)

    async def _snapshot(self, session_id: str) -> SessionLedger:
        """Active ledger, or an uncached one read from the store."""
        await self._require_open(session_id)
        ledger = self._ledgers.get(session_id)
        if ledger is not None:
            return await self._session(session_id)
        ledger = SessionLedger(session_id)
        if self._store is not None:
            ledger.load(await self._store.load_session(session_id))
        ledger.loaded = True
        return ledger
