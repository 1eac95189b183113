"""Tests 54-58: SQLite donation store."""

from __future__ import annotations

from dataclasses import replace

import pytest

from donation_sync.errors import StoreConflict
from donation_sync.models.claims import OutcomeStatus
from donation_sync.models.records import Donation
from donation_sync.storage.sqlite import SQLiteDonationStore

from tests.factories import SEPOLIA, SOLANA, make_candidate, make_outcome


def donation(seed: str, sequence: int, session_id: str = "session-1", **kw) -> Donation:
    return Donation.from_candidate(make_candidate(seed, session_id=session_id, **kw), sequence)


# ── Test 54: Donations round-trip with exact amounts ─────────────


async def test_store_donation_roundtrip(store):
    big = 2**100 + 1
    original = Donation.from_candidate(
        make_candidate("big", amount=big), 1,
    )
    await store.save_donation(original)

    loaded = await store.load_session("session-1")

    assert loaded == [original]
    assert loaded[0].amount == big
    assert loaded[0].chain_id == SEPOLIA


async def test_store_donor_metadata_preserved(store):
    d = replace(donation("meta", 1), donor_metadata={"name": "anon", "message": "gm"})
    await store.save_donation(d)

    loaded = (await store.load_session("session-1"))[0]
    assert loaded.donor_metadata == {"name": "anon", "message": "gm"}


# ── Test 55: Ordered by sequence, scoped by session ──────────────


async def test_store_load_orders_by_sequence(store):
    await store.save_donation(donation("c", 3))
    await store.save_donation(donation("a", 1))
    await store.save_donation(donation("b", 2))
    await store.save_donation(donation("z", 1, session_id="other"))

    assert [d.sequence for d in await store.load_session("session-1")] == [1, 2, 3]
    assert await store.list_sessions() == ["other", "session-1"]


async def test_store_duplicate_save_conflicts(store):
    d = donation("dup", 1)
    await store.save_donation(d)
    with pytest.raises(StoreConflict):
        await store.save_donation(d)
    assert len(await store.load_session("session-1")) == 1


async def test_store_sequence_taken_conflicts(store):
    await store.save_donation(donation("first", 1))
    with pytest.raises(StoreConflict):
        await store.save_donation(donation("second", 1))

    loaded = await store.load_session("session-1")
    assert [d.tx_reference for d in loaded] == [donation("first", 1).tx_reference]
    # The connection stays usable after a rejected insert
    await store.save_donation(donation("second", 2))
    assert [d.sequence for d in await store.load_session("session-1", after=1)] == [2]


async def test_store_mixed_chains(store):
    await store.save_donation(donation("e", 1))
    await store.save_donation(donation("s", 2, chain_id=SOLANA))

    chains = [d.chain_id for d in await store.load_session("session-1")]
    assert chains == [SEPOLIA, SOLANA]


# ── Test 56: Verification log ────────────────────────────────────


async def test_store_verification_log(store):
    await store.record_verification(make_outcome())
    await store.record_verification(make_outcome(
        valid=False, status=OutcomeStatus.MISMATCH, session_id="session-2",
    ))

    entries = await store.get_verification_log()
    assert [e.status for e in entries] == ["mismatch", "verified"]
    assert entries[1].valid
    assert entries[1].confirmed_amount == str(10**18)
    assert entries[0].confirmed_amount is None

    only = await store.get_verification_log("session-2")
    assert len(only) == 1 and only[0].session_id == "session-2"
    assert len(await store.get_verification_log(limit=1)) == 1


# ── Test 57: Closed sessions ─────────────────────────────────────


async def test_store_closed_sessions(store):
    assert not await store.is_session_closed("session-1")
    await store.mark_session_closed("session-1")
    await store.mark_session_closed("session-1")
    assert await store.is_session_closed("session-1")


# ── Test 58: File-backed store persists across reopen ────────────


async def test_store_persists_to_disk(tmp_path):
    path = str(tmp_path / "nested" / "state.db")
    first = SQLiteDonationStore(path)
    await first.initialize()
    await first.save_donation(donation("disk", 1))
    await first.close()

    second = SQLiteDonationStore(path)
    await second.initialize()
    try:
        assert len(await second.load_session("session-1")) == 1
    finally:
        await second.close()
