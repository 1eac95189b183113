"""Tests 48-53: Event channel framing, acks and heartbeat."""

from __future__ import annotations

import asyncio

import pytest

from donation_sync.errors import DeliveryFailed
from donation_sync.models.records import Donation, DonationEvent
from donation_sync.sync.channel import EventChannel

from tests.factories import SEPOLIA
from tests.mocks import MockConnection, wait_until


class Recorder:
    def __init__(self) -> None:
        self.acks: list[int] = []
        self.transient = 0
        self.terminal = 0

    async def on_ack(self, sequence: int) -> None:
        self.acks.append(sequence)

    async def on_transient(self) -> None:
        self.transient += 1

    async def on_terminal(self) -> None:
        self.terminal += 1


def bound_channel(**kwargs) -> tuple[MockConnection, EventChannel, Recorder]:
    conn = MockConnection()
    channel = EventChannel(conn, **kwargs)
    rec = Recorder()
    channel.bind(rec.on_ack, rec.on_transient, rec.on_terminal)
    return conn, channel, rec


def make_event(sequence: int = 1) -> DonationEvent:
    donation = Donation(
        donation_id="d" * 64,
        session_id="session-1",
        chain_id=SEPOLIA,
        tx_reference="0x" + "ab" * 32,
        recipient="0x" + "cd" * 20,
        amount=2**70,
        sequence=sequence,
        verified_at="2026-01-01T00:00:00+00:00",
    )
    return DonationEvent(sequence, donation)


# ── Test 48: Donation frames carry exact amounts ─────────────────


async def test_channel_donation_frame():
    conn, channel, _ = bound_channel(heartbeat_interval=0)
    await channel.send_event(make_event(7))

    frame = conn.sent[0]
    assert frame["type"] == "donation"
    assert frame["sequence"] == 7
    assert frame["donation"]["amount"] == str(2**70)
    assert frame["donation"]["chain_id"] == "eip155:11155111"


# ── Test 49: Acks advance monotonically ──────────────────────────


async def test_channel_acks_monotonic():
    _, channel, rec = bound_channel(heartbeat_interval=0)

    await channel.handle_message({"type": "ack", "sequence": 3})
    await channel.handle_message({"type": "ack", "sequence": 2})
    await channel.handle_message({"type": "ack", "sequence": "5"})
    await channel.handle_message({"type": "ack", "sequence": "junk"})
    await channel.handle_message({"type": "ack"})

    assert rec.acks == [3, 5]
    assert channel.highest_acknowledged == 5


async def test_channel_unknown_frames_ignored():
    _, channel, rec = bound_channel(heartbeat_interval=0)
    await channel.handle_message({"type": "pong"})
    await channel.handle_message({"type": "subscribe-everything"})
    assert rec.acks == [] and rec.transient == 0 and rec.terminal == 0


# ── Test 50: Loss is reported once ───────────────────────────────


async def test_channel_loss_reported_once():
    _, channel, rec = bound_channel(heartbeat_interval=0)

    await channel.connection_lost(terminal=False)
    await channel.connection_lost(terminal=True)
    await channel.handle_message({"type": "bye"})

    assert rec.transient == 1
    assert rec.terminal == 0
    assert channel.lost


async def test_channel_bye_is_terminal():
    _, channel, rec = bound_channel(heartbeat_interval=0)
    await channel.handle_message({"type": "bye"})
    assert rec.terminal == 1


# ── Test 51: Failed sends raise DeliveryFailed ───────────────────


async def test_channel_send_failure():
    conn, channel, _ = bound_channel(heartbeat_interval=0)
    conn.drop()
    with pytest.raises(DeliveryFailed):
        await channel.send_event(make_event())


async def test_channel_send_after_close():
    conn, channel, _ = bound_channel(heartbeat_interval=0)
    await channel.close("session_closed")

    assert conn.frames("closed") == [{"type": "closed", "reason": "session_closed"}]
    assert conn.closed
    with pytest.raises(DeliveryFailed):
        await channel.send_event(make_event())


# ── Test 52: Heartbeat pings ─────────────────────────────────────


async def test_channel_heartbeat_pings():
    conn, channel, rec = bound_channel(heartbeat_interval=0.01, heartbeat_timeout=5)
    channel.start_heartbeat()
    try:
        await wait_until(lambda: len(conn.frames("ping")) >= 2)
    finally:
        channel.stop_heartbeat()
    assert rec.transient == 0
    assert "ts" in conn.frames("ping")[0]


# ── Test 53: Silence counts as a transient drop ──────────────────


async def test_channel_heartbeat_timeout():
    _, channel, rec = bound_channel(heartbeat_interval=0.01, heartbeat_timeout=0.03)
    channel.start_heartbeat()

    await wait_until(lambda: rec.transient == 1)
    assert channel.lost
    assert rec.terminal == 0


async def test_channel_heartbeat_kept_alive_by_pongs():
    _, channel, rec = bound_channel(heartbeat_interval=0.01, heartbeat_timeout=0.05)
    channel.start_heartbeat()
    try:
        for _ in range(10):
            await channel.handle_message({"type": "pong"})
            await asyncio.sleep(0.01)
    finally:
        channel.stop_heartbeat()
    assert rec.transient == 0
