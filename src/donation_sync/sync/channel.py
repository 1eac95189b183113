"""Event channel - sequenced frames, acknowledgements and heartbeat over a Connection."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from donation_sync.errors import DeliveryFailed
from donation_sync.interfaces.transport import Connection
from donation_sync.models.records import DonationEvent

log = logging.getLogger(__name__)

AckCallback = Callable[[int], Awaitable[None]]
LossCallback = Callable[[], Awaitable[None]]


async def _noop_ack(sequence: int) -> None:
    return None


async def _noop_loss() -> None:
    return None


class EventChannel:
    """Reconnect-aware delivery path to one remote subscriber.

    Outbound frames: ``hello``, ``donation``, ``ping``, ``overflow``,
    ``closed``. Inbound frames (fed by the transport through
    ``handle_message``): ``ack``, ``pong``, ``bye``. Any inbound frame
    counts as proof of life; a silence longer than ``heartbeat_timeout``
    is reported as a transient disconnect.
    """

    def __init__(
        self,
        connection: Connection,
        heartbeat_interval: float = 15.0,
        heartbeat_timeout: float = 45.0,
    ) -> None:
        self._conn = connection
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._on_ack: AckCallback = _noop_ack
        self._on_transient: LossCallback = _noop_loss
        self._on_terminal: LossCallback = _noop_loss
        self._heartbeat_task: asyncio.Task | None = None
        self._last_seen = time.monotonic()
        self._highest_ack = 0
        self._lost = False

    def bind(
        self,
        on_ack: AckCallback,
        on_transient: LossCallback,
        on_terminal: LossCallback,
    ) -> None:
        """Route acknowledgements and disconnects to the owning subscription."""
        self._on_ack = on_ack
        self._on_transient = on_transient
        self._on_terminal = on_terminal

    @property
    def connection(self) -> Connection:
        return self._conn

    @property
    def highest_acknowledged(self) -> int:
        return self._highest_ack

    @property
    def lost(self) -> bool:
        return self._lost or self._conn.closed

    # ── Outbound ──────────────────────────────────────────

    async def _send(self, frame: dict[str, Any]) -> None:
        if self.lost:
            raise DeliveryFailed("connection is closed")
        try:
            await self._conn.send(frame)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise DeliveryFailed(f"send failed: {exc}") from exc

    async def handshake(
        self,
        subscription_id: str,
        session_id: str,
        head: int,
        resume_from: int,
    ) -> None:
        await self._send({
            "type": "hello",
            "subscription_id": subscription_id,
            "session_id": session_id,
            "head": head,
            "resume_from": resume_from,
        })
        self._last_seen = time.monotonic()

    async def send_event(self, event: DonationEvent) -> None:
        await self._send(event.to_frame())

    async def send_overflow(self, session_id: str, last_delivered_sequence: int) -> None:
        await self._send({
            "type": "overflow",
            "session_id": session_id,
            "last_delivered_sequence": last_delivered_sequence,
        })

    async def close(self, reason: str = "", code: int = 1000) -> None:
        """Best-effort ``closed`` frame, then close the connection."""
        self.stop_heartbeat()
        self._lost = True
        if self._conn.closed:
            return
        try:
            await self._conn.send({"type": "closed", "reason": reason})
        except Exception as exc:
            log.debug("Sending closed frame failed: %s", exc)
        try:
            await self._conn.close(code=code, reason=reason)
        except Exception as exc:
            log.debug("Closing connection failed: %s", exc)

    # ── Inbound ───────────────────────────────────────────

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Dispatch one inbound frame from the transport."""
        self._last_seen = time.monotonic()
        kind = message.get("type")

        if kind == "ack":
            try:
                sequence = int(message.get("sequence"))
            except (TypeError, ValueError):
                log.debug("Ignoring malformed ack: %r", message)
                return
            if sequence > self._highest_ack:
                self._highest_ack = sequence
                await self._on_ack(sequence)
        elif kind == "pong":
            pass
        elif kind == "bye":
            await self.connection_lost(terminal=True)
        else:
            log.debug("Ignoring unknown frame type %r", kind)

    async def connection_lost(self, terminal: bool) -> None:
        """Transport reports a disconnect. Only the first report counts."""
        if self._lost:
            return
        self._lost = True
        self.stop_heartbeat()
        if terminal:
            await self._on_terminal()
        else:
            await self._on_transient()

    # ── Heartbeat ─────────────────────────────────────────

    def start_heartbeat(self) -> None:
        if self._heartbeat_task is None and self._heartbeat_interval > 0:
            self._last_seen = time.monotonic()
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while not self._lost:
            await asyncio.sleep(self._heartbeat_interval)
            silent_for = time.monotonic() - self._last_seen
            if silent_for > self._heartbeat_timeout:
                log.info("Subscriber silent for %.0fs, treating as disconnected", silent_for)
                await self.connection_lost(terminal=False)
                return
            try:
                await self._send({"type": "ping", "ts": int(time.time())})
            except DeliveryFailed as exc:
                log.info("Heartbeat failed: %s", exc)
                await self.connection_lost(terminal=False)
                return
