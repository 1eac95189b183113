"""Session sync hub - subscription registry and per-subscriber delivery pumps."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

from donation_sync.errors import BacklogOverflow, DeliveryFailed, SubscriptionError, UnknownSession
from donation_sync.interfaces.session import SessionDirectory
from donation_sync.ledger.ledger import DonationLedger
from donation_sync.models.config import SyncConfig
from donation_sync.models.records import DetachReason, DonationEvent, SubscriptionState
from donation_sync.sync.channel import EventChannel

log = logging.getLogger(__name__)


class Subscription:
    """One subscriber attached to one session.

    ``last_delivered_sequence`` is the highest sequence the subscriber has
    acknowledged; it never decreases. ``sent_sequence`` is the highest
    sequence pushed on the current connection.
    """

    def __init__(self, session_id: str, channel: EventChannel, start_after: int) -> None:
        self.subscription_id = uuid.uuid4().hex
        self.session_id = session_id
        self.channel = channel
        self.state = SubscriptionState.ATTACHED
        self.last_delivered_sequence = start_after
        self.sent_sequence = start_after
        self.paused = False
        self.paused_at: float | None = None
        self.detach_reason: DetachReason | None = None
        self.task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        self._detached = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return self.sent_sequence - self.last_delivered_sequence

    def acknowledge(self, sequence: int) -> bool:
        """Advance the acknowledged sequence. Stale or unsent sequences are ignored."""
        if sequence <= self.last_delivered_sequence:
            return False
        if sequence > self.sent_sequence:
            log.debug(
                "Ignoring ack %d beyond sent %d (subscription %s)",
                sequence, self.sent_sequence, self.subscription_id[:8],
            )
            return False
        self.last_delivered_sequence = sequence
        self.wake()
        return True

    def wake(self) -> None:
        self._wakeup.set()

    async def wait_detached(self) -> DetachReason | None:
        await self._detached.wait()
        return self.detach_reason

    def _mark_detached(self, reason: DetachReason) -> None:
        self.state = SubscriptionState.DETACHED
        self.detach_reason = reason
        self._detached.set()
        self.wake()


class SessionSyncHub:
    """Fans admitted donations out to every subscriber of their session.

    Each subscription owns a pump task that reads the session's
    sequence-indexed log, so ``publish`` never blocks on a subscriber and
    replay after a reconnect is a range query. A full in-flight window
    makes the pump wait for acknowledgements rather than dropping events.
    """

    def __init__(
        self,
        ledger: DonationLedger,
        config: SyncConfig | None = None,
        sessions: SessionDirectory | None = None,
    ) -> None:
        self._ledger = ledger
        self._config = config or SyncConfig()
        self._sessions = sessions
        self._subscriptions: dict[str, Subscription] = {}
        self._by_session: dict[str, set[str]] = {}
        self._overflowed: dict[str, Subscription] = {}

    # ── Registry ──────────────────────────────────────────

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id) or self._overflowed.get(subscription_id)

    def subscriptions_for(self, session_id: str) -> list[Subscription]:
        return [self._subscriptions[s] for s in self._by_session.get(session_id, ())]

    # ── Attach / detach ───────────────────────────────────

    async def attach(
        self,
        session_id: str,
        channel: EventChannel,
        resume_from: int | None = None,
    ) -> Subscription:
        """Attach a subscriber and replay everything after ``resume_from``.

        ``resume_from=None`` starts live from the current head; ``0`` replays
        the whole session.
        """
        if self._sessions is not None and not await self._sessions.exists(session_id):
            raise UnknownSession(session_id)
        head = await self._ledger.open(session_id)
        if resume_from is None:
            start = head
        elif resume_from < 0 or resume_from > head:
            raise SubscriptionError(
                f"cannot resume session {session_id} from {resume_from} (head is {head})"
            )
        else:
            start = resume_from

        sub = Subscription(session_id, channel, start)
        self._bind(sub, channel)
        try:
            await channel.handshake(sub.subscription_id, session_id, head, start)
        except DeliveryFailed as exc:
            raise SubscriptionError(f"handshake failed: {exc}") from exc

        self._subscriptions[sub.subscription_id] = sub
        self._by_session.setdefault(session_id, set()).add(sub.subscription_id)
        channel.start_heartbeat()
        sub.task = asyncio.create_task(self._pump(sub))
        log.info(
            "Attached subscription %s to session %s (resume after %d, head %d)",
            sub.subscription_id[:8], session_id, start, head,
        )
        return sub

    async def detach(
        self,
        subscription: Subscription,
        reason: DetachReason = DetachReason.UNSUBSCRIBED,
    ) -> None:
        """Terminal: stop delivery and forget the subscription."""
        if subscription.state is SubscriptionState.DETACHED:
            return
        subscription._mark_detached(reason)
        self._subscriptions.pop(subscription.subscription_id, None)
        members = self._by_session.get(subscription.session_id)
        if members is not None:
            members.discard(subscription.subscription_id)
            if not members:
                del self._by_session[subscription.session_id]
        if reason is DetachReason.BACKLOG_OVERFLOW:
            self._overflowed[subscription.subscription_id] = subscription

        await self._stop_pump(subscription)
        await subscription.channel.close(reason.value)
        log.info(
            "Detached subscription %s from session %s (%s, last delivered %d)",
            subscription.subscription_id[:8], subscription.session_id,
            reason.value, subscription.last_delivered_sequence,
        )

    # ── Connection events ─────────────────────────────────

    async def pause(self, subscription: Subscription) -> None:
        """Transient blip: keep the subscription, pause delivery, retain backlog."""
        if subscription.state is SubscriptionState.DETACHED or subscription.paused:
            return
        subscription.paused = True
        subscription.paused_at = time.monotonic()
        subscription.channel.stop_heartbeat()
        subscription.wake()
        log.info(
            "Paused subscription %s (session %s, last delivered %d)",
            subscription.subscription_id[:8], subscription.session_id,
            subscription.last_delivered_sequence,
        )

    async def resume(self, subscription: Subscription, channel: EventChannel) -> Subscription:
        """Continue a paused subscription on a new connection.

        Everything after the last acknowledged sequence is re-sent.
        Raises BacklogOverflow if the backlog bound was exceeded meanwhile.
        """
        if subscription.detach_reason is DetachReason.BACKLOG_OVERFLOW:
            self._overflowed.pop(subscription.subscription_id, None)
            try:
                await channel.send_overflow(
                    subscription.session_id, subscription.last_delivered_sequence,
                )
            except DeliveryFailed:
                pass
            raise BacklogOverflow(subscription.session_id, subscription.last_delivered_sequence)
        if subscription.state is SubscriptionState.DETACHED:
            raise SubscriptionError(
                f"subscription {subscription.subscription_id[:8]} is detached "
                f"({subscription.detach_reason.value if subscription.detach_reason else '?'})"
            )

        # The pump may be mid-batch on the old channel (reconnect before the
        # drop was noticed); it must be gone before the sequence is rewound.
        await self._stop_pump(subscription)
        try:
            old = subscription.channel
            if old is not channel:
                old.stop_heartbeat()
                await old.close("superseded")

            subscription.channel = channel
            self._bind(subscription, channel)
            head = self._ledger.head(subscription.session_id)
            try:
                await channel.handshake(
                    subscription.subscription_id, subscription.session_id,
                    head, subscription.last_delivered_sequence,
                )
            except DeliveryFailed as exc:
                subscription.paused = True
                subscription.paused_at = subscription.paused_at or time.monotonic()
                raise SubscriptionError(f"handshake failed: {exc}") from exc

            subscription.sent_sequence = subscription.last_delivered_sequence
            subscription.paused = False
            subscription.paused_at = None
            channel.start_heartbeat()
        finally:
            if subscription.state is not SubscriptionState.DETACHED:
                subscription.task = asyncio.create_task(self._pump(subscription))
        log.info(
            "Resumed subscription %s from sequence %d",
            subscription.subscription_id[:8], subscription.last_delivered_sequence,
        )
        return subscription

    async def _stop_pump(self, sub: Subscription) -> None:
        task, sub.task = sub.task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _bind(self, sub: Subscription, channel: EventChannel) -> None:
        # Callbacks from a superseded channel must not touch the subscription.
        async def on_ack(sequence: int) -> None:
            if sub.channel is channel:
                sub.acknowledge(sequence)

        async def on_transient() -> None:
            if sub.channel is channel:
                await self.pause(sub)

        async def on_terminal() -> None:
            if sub.channel is channel:
                await self.detach(sub, DetachReason.CONNECTION_CLOSED)

        channel.bind(on_ack, on_transient, on_terminal)

    # ── Fan-out ───────────────────────────────────────────

    async def publish(self, event: DonationEvent) -> None:
        """Ledger listener: wake every pump of the event's session."""
        for sub in self.subscriptions_for(event.donation.session_id):
            sub.wake()

    async def close_session(self, session_id: str) -> None:
        """Session closed by its owner: detach every subscriber and release the ledger."""
        for sub in self.subscriptions_for(session_id):
            await self.detach(sub, DetachReason.SESSION_CLOSED)
        for sub_id, sub in list(self._overflowed.items()):
            if sub.session_id == session_id:
                del self._overflowed[sub_id]
        await self._ledger.release(session_id)

    async def stop(self) -> None:
        for sub in list(self._subscriptions.values()):
            await self.detach(sub, DetachReason.SHUTDOWN)

    def _backlog_exceeded(self, sub: Subscription) -> bool:
        undelivered = self._ledger.head(sub.session_id) - sub.last_delivered_sequence
        if undelivered > self._config.backlog_depth:
            return True
        if sub.paused_at is not None:
            return time.monotonic() - sub.paused_at > self._config.backlog_horizon
        return False

    async def _pump(self, sub: Subscription) -> None:
        """Deliver the session log to one subscriber, strictly in sequence order."""
        window = max(1, self._config.queue_size)
        while sub.state is not SubscriptionState.DETACHED:
            sub._wakeup.clear()

            if sub.paused:
                if self._backlog_exceeded(sub):
                    log.warning(
                        "Backlog overflow for subscription %s (session %s)",
                        sub.subscription_id[:8], sub.session_id,
                    )
                    await self.detach(sub, DetachReason.BACKLOG_OVERFLOW)
                    return
                remaining = self._config.backlog_horizon
                if sub.paused_at is not None:
                    remaining -= time.monotonic() - sub.paused_at
                try:
                    await asyncio.wait_for(sub._wakeup.wait(), max(0.0, remaining) + 0.01)
                except asyncio.TimeoutError:
                    pass
                continue

            head = self._ledger.head(sub.session_id)
            if sub.sent_sequence >= head:
                if sub.state is SubscriptionState.ATTACHED:
                    sub.state = SubscriptionState.STREAMING
                await sub._wakeup.wait()
                continue

            room = window - sub.in_flight
            if room <= 0:
                # Backpressure: wait for the subscriber to acknowledge.
                await sub._wakeup.wait()
                continue

            for event in self._ledger.events_after(sub.session_id, sub.sent_sequence, room):
                try:
                    await sub.channel.send_event(event)
                except DeliveryFailed as exc:
                    log.info(
                        "Delivery to %s failed at seq %d: %s",
                        sub.subscription_id[:8], event.sequence, exc,
                    )
                    await self.pause(sub)
                    break
                sub.sent_sequence = event.sequence
