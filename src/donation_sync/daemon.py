"""Main daemon - wires chain access, verification, ledger and sync together."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from aiohttp import web

from donation_sync.chains.evm import EvmVerifier
from donation_sync.chains.rpc import EvmRpcClient, SolanaRpcClient
from donation_sync.chains.solana import SolanaVerifier
from donation_sync.errors import UnknownSession
from donation_sync.interfaces.session import OpenSessionDirectory
from donation_sync.ledger.ledger import DonationLedger
from donation_sync.models.claims import (
    ChainFamily,
    ChainId,
    DonationClaim,
    VerificationOutcome,
)
from donation_sync.models.config import DaemonConfig
from donation_sync.models.records import ClaimResult, DetachReason, Donation
from donation_sync.storage.sqlite import SQLiteDonationStore
from donation_sync.sync.channel import EventChannel
from donation_sync.sync.hub import SessionSyncHub, Subscription
from donation_sync.server import create_app
from donation_sync.verify.router import VerificationRouter

log = logging.getLogger(__name__)


def build_router(cfg: DaemonConfig) -> VerificationRouter:
    """One verifier per configured chain, each over its own node client."""
    router = VerificationRouter(timeout=cfg.verification_timeout)
    for chain_id, evm in sorted(cfg.evm_chains.items()):
        if not evm.rpc_url:
            log.warning("EVM chain %d has no rpc_url, skipping", chain_id)
            continue
        key = ChainId(ChainFamily.EVM, str(chain_id))
        router.register(key, EvmVerifier(
            chain_id=key,
            access=EvmRpcClient(evm.rpc_url, cfg.rpc_timeout),
            min_confirmations=evm.min_confirmations,
            donation_contract=evm.donation_contract,
        ))
    if cfg.solana.enabled:
        key = ChainId(ChainFamily.SOLANA, cfg.solana.cluster)
        router.register(key, SolanaVerifier(
            chain_id=key,
            access=SolanaRpcClient(cfg.solana.rpc_url, cfg.rpc_timeout),
            donation_program_id=cfg.solana.donation_program_id,
        ))
    return router


class StoreSessionDirectory(OpenSessionDirectory):
    """Open directory that also remembers sessions closed in earlier runs."""

    def __init__(self, store: SQLiteDonationStore) -> None:
        super().__init__()
        self._store = store

    async def exists(self, session_id: str) -> bool:
        if not await super().exists(session_id):
            return False
        if await self._store.is_session_closed(session_id):
            self.close(session_id)
            return False
        return True


class DonationSyncDaemon:
    """Donation verification and session sync engine.

    Claims are verified by the router, admitted into the ledger (which
    persists them), and fanned out to WebSocket subscribers by the hub.
    """

    def __init__(
        self,
        cfg: DaemonConfig,
        router: VerificationRouter | None = None,
        store: SQLiteDonationStore | None = None,
    ) -> None:
        self._cfg = cfg
        self._stop_event = asyncio.Event()
        self._runner: web.AppRunner | None = None

        # Core components
        self.store = store or SQLiteDonationStore(cfg.db_path)
        self.sessions = StoreSessionDirectory(self.store)
        self.router = router or build_router(cfg)
        self.ledger = DonationLedger(self.store, self.sessions)
        self.hub = SessionSyncHub(self.ledger, cfg.sync, self.sessions)
        self.ledger.add_listener(self.hub.publish)

    # ── Lifecycle ─────────────────────────────────────────

    async def initialize(self) -> None:
        await self.store.initialize()

    async def start(self) -> None:
        """Initialize components, serve subscribers until stopped."""
        log.info("Starting donation_sync daemon")
        for chain_id in self.router.chains():
            log.info("  Chain: %s", chain_id)
        log.info("  DB: %s", self._cfg.db_path)

        await self.initialize()
        try:
            await self.serve(self._cfg.server.host, self._cfg.server.port)
            await self._main_loop()
        finally:
            await self.shutdown()
            log.info("Daemon shut down cleanly")

    async def serve(self, host: str, port: int) -> web.AppRunner:
        app = create_app(self.hub, self._cfg.sync, self.process_claim)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        log.info("Serving session events on ws://%s:%d/sessions/{id}/events", host, port)
        log.info("Accepting claims on http://%s:%d/sessions/{id}/claims", host, port)
        return self._runner

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._stop_event.set()

    async def _main_loop(self) -> None:
        """Watch the store for donations admitted by other processes until stopped."""
        interval = self._cfg.store_poll_interval
        while not self._stop_event.is_set():
            if interval > 0:
                try:
                    await self.sync_from_store()
                except asyncio.CancelledError:
                    log.info("Main loop cancelled")
                    break
                except Exception as exc:
                    log.error("Store sync error: %s", exc, exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), interval if interval > 0 else None)
            except asyncio.TimeoutError:
                pass

    async def sync_from_store(self) -> int:
        """Announce donations another writer (e.g. ``verify --admit``) persisted."""
        found = 0
        for session_id in self.ledger.active_sessions():
            found += await self.ledger.refresh(session_id)
        return found

    async def shutdown(self) -> None:
        await self.hub.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.router.close()
        await self.store.close()

    # ── Verification ──────────────────────────────────────

    async def submit_claim(self, claim: DonationClaim) -> VerificationOutcome:
        """Verify one claim and record the outcome. Does not admit."""
        outcome = await self.router.submit_claim(claim)
        try:
            await self.store.record_verification(outcome)
        except Exception as exc:
            log.error("Failed to record verification outcome: %s", exc, exc_info=True)
        return outcome

    async def verify_until_settled(
        self,
        claim: DonationClaim,
        attempts: int | None = None,
        backoff: float | None = None,
    ) -> VerificationOutcome:
        """Poll a claim until it is final, rejected, or attempts run out.

        Backoff doubles after every retryable outcome.
        """
        attempts = attempts if attempts is not None else self._cfg.retry_attempts
        delay = backoff if backoff is not None else self._cfg.retry_backoff
        outcome = await self.submit_claim(claim)
        for attempt in range(1, max(1, attempts)):
            if outcome.is_admissible or not outcome.retryable:
                break
            log.debug(
                "Claim %s still %s, retry %d/%d in %.1fs",
                claim.tx_reference[:18], outcome.status.value, attempt, attempts - 1, delay,
            )
            await asyncio.sleep(delay)
            delay *= 2
            outcome = await self.submit_claim(claim)
        return outcome

    async def admit_verified(
        self,
        session_id: str,
        outcome: VerificationOutcome,
        donor_metadata: dict[str, Any] | None = None,
    ) -> Donation:
        return await self.ledger.admit_verified(session_id, outcome, donor_metadata)

    async def process_claim(self, claim: DonationClaim, wait: bool = False) -> ClaimResult:
        """Verify, then admit when admissible.

        Refuses closed or unknown sessions before touching the chain.
        """
        if not await self.sessions.exists(claim.session_id):
            raise UnknownSession(claim.session_id)
        outcome = await (self.verify_until_settled(claim) if wait else self.submit_claim(claim))
        if not outcome.is_admissible:
            return ClaimResult(outcome)
        donation = await self.admit_verified(claim.session_id, outcome, claim.donor_metadata)
        return ClaimResult(outcome, donation)

    # ── Subscriptions ─────────────────────────────────────

    async def attach(
        self,
        session_id: str,
        channel: EventChannel,
        resume_from: int | None = None,
    ) -> Subscription:
        return await self.hub.attach(session_id, channel, resume_from)

    async def detach(self, subscription: Subscription) -> None:
        await self.hub.detach(subscription, DetachReason.UNSUBSCRIBED)

    async def close_session(self, session_id: str) -> None:
        """Session ended by its owner: detach subscribers, refuse new admissions."""
        if not await self.sessions.exists(session_id):
            raise UnknownSession(session_id)
        self.sessions.close(session_id)
        await self.store.mark_session_closed(session_id)
        await self.hub.close_session(session_id)
        log.info("Closed session %s", session_id)


async def run_daemon(cfg: DaemonConfig) -> None:
    """Entry point for running the daemon."""
    daemon = DonationSyncDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
