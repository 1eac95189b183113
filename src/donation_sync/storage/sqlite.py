"""SQLite implementation of the DonationStore protocol."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from donation_sync.errors import StoreConflict
from donation_sync.models.claims import ChainId, VerificationOutcome
from donation_sync.models.records import Donation, VerificationLogEntry

SCHEMA = """
-- Admitted donations (amount as TEXT: wei values exceed 64 bits)
CREATE TABLE IF NOT EXISTS donations (
    session_id TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    donation_id TEXT NOT NULL,
    chain_id TEXT NOT NULL,
    tx_reference TEXT NOT NULL,
    recipient TEXT NOT NULL,
    amount TEXT NOT NULL,
    donor_metadata TEXT,
    verified_at TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (session_id, sequence)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_donations_identity
    ON donations(session_id, donation_id);

-- Every verification outcome, rejections included
CREATE TABLE IF NOT EXISTS verification_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chain_id TEXT NOT NULL,
    tx_reference TEXT NOT NULL,
    session_id TEXT NOT NULL,
    status TEXT NOT NULL,
    valid INTEGER NOT NULL,
    finality TEXT NOT NULL,
    confirmed_amount TEXT,
    detail TEXT NOT NULL DEFAULT '',
    checked_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_vlog_session ON verification_log(session_id);
CREATE INDEX IF NOT EXISTS idx_vlog_checked ON verification_log(checked_at);

-- Sessions closed by their owner
CREATE TABLE IF NOT EXISTS closed_sessions (
    session_id TEXT PRIMARY KEY,
    closed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteDonationStore:
    """SQLite-backed implementation of the DonationStore protocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Donations ──────────────────────────────────────────

    async def save_donation(self, donation: Donation) -> None:
        """Insert one donation. Raises StoreConflict if its sequence or id is taken."""
        try:
            await self.db.execute(
                "INSERT INTO donations"
                " (session_id, sequence, donation_id, chain_id, tx_reference,"
                "  recipient, amount, donor_metadata, verified_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    donation.session_id, donation.sequence, donation.donation_id,
                    str(donation.chain_id), donation.tx_reference, donation.recipient,
                    str(donation.amount),
                    json.dumps(donation.donor_metadata) if donation.donor_metadata else None,
                    donation.verified_at or _now(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            await self.db.rollback()
            raise StoreConflict(
                f"session {donation.session_id} sequence {donation.sequence} "
                f"or donation {donation.donation_id[:12]} already stored"
            ) from exc
        await self.db.commit()

    async def load_session(self, session_id: str, after: int = 0) -> list[Donation]:
        """Donations with sequence > ``after``, ordered by sequence."""
        async with self.db.execute(
            "SELECT * FROM donations WHERE session_id=? AND sequence>? ORDER BY sequence",
            (session_id, after),
        ) as cur:
            return [_row_to_donation(row) async for row in cur]

    async def list_sessions(self) -> list[str]:
        async with self.db.execute(
            "SELECT DISTINCT session_id FROM donations ORDER BY session_id"
        ) as cur:
            return [row["session_id"] async for row in cur]

    async def mark_session_closed(self, session_id: str) -> None:
        await self.db.execute(
            "INSERT OR IGNORE INTO closed_sessions (session_id, closed_at) VALUES (?, ?)",
            (session_id, _now()),
        )
        await self.db.commit()

    async def is_session_closed(self, session_id: str) -> bool:
        async with self.db.execute(
            "SELECT 1 FROM closed_sessions WHERE session_id=?", (session_id,)
        ) as cur:
            return await cur.fetchone() is not None

    # ── Verification log ───────────────────────────────────

    async def record_verification(self, outcome: VerificationOutcome) -> None:
        await self.db.execute(
            "INSERT INTO verification_log"
            " (chain_id, tx_reference, session_id, status, valid, finality,"
            "  confirmed_amount, detail, checked_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(outcome.chain_id), outcome.tx_reference, outcome.session_id,
                outcome.status.value, int(outcome.valid), outcome.finality.value,
                str(outcome.confirmed_amount) if outcome.confirmed_amount is not None else None,
                outcome.detail, _now(),
            ),
        )
        await self.db.commit()

    async def get_verification_log(
        self, session_id: str | None = None, limit: int = 50,
    ) -> list[VerificationLogEntry]:
        if session_id is not None:
            sql = "SELECT * FROM verification_log WHERE session_id=? ORDER BY id DESC LIMIT ?"
            params: tuple = (session_id, limit)
        else:
            sql = "SELECT * FROM verification_log ORDER BY id DESC LIMIT ?"
            params = (limit,)
        async with self.db.execute(sql, params) as cur:
            return [
                VerificationLogEntry(
                    id=row["id"],
                    chain_id=row["chain_id"],
                    tx_reference=row["tx_reference"],
                    session_id=row["session_id"],
                    status=row["status"],
                    valid=bool(row["valid"]),
                    finality=row["finality"],
                    confirmed_amount=row["confirmed_amount"],
                    detail=row["detail"],
                    checked_at=row["checked_at"],
                )
                async for row in cur
            ]


# ── Row converters ─────────────────────────────────────


def _row_to_donation(row: aiosqlite.Row) -> Donation:
    metadata = row["donor_metadata"]
    return Donation(
        donation_id=row["donation_id"],
        session_id=row["session_id"],
        chain_id=ChainId.parse(row["chain_id"]),
        tx_reference=row["tx_reference"],
        recipient=row["recipient"],
        amount=int(row["amount"]),
        sequence=row["sequence"],
        donor_metadata=json.loads(metadata) if metadata else None,
        verified_at=row["verified_at"],
    )
