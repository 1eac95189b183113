"""Claim submission endpoint.

``POST /sessions/{session_id}/claims`` takes a JSON body::

    {
        "chain_id": "eip155:11155111",
        "tx_reference": "0x...",
        "recipient_address": "0x...",
        "claimed_amount": "1000000000000000000",
        "donor_metadata": {"name": "anon"},
        "wait": false
    }

and answers with the verification outcome plus the admitted donation:
201 when admitted, 202 while the claim may still settle (pending, not
found, chain unavailable, timeout), 422 when it was rejected.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from aiohttp import web

from donation_sync.errors import (
    DonationSyncError,
    MalformedClaim,
    UnknownSession,
    UnsupportedChain,
)
from donation_sync.models.claims import ChainId, DonationClaim
from donation_sync.models.records import ClaimResult

log = logging.getLogger(__name__)

ClaimProcessor = Callable[[DonationClaim, bool], Awaitable[ClaimResult]]

CLAIMS_KEY = web.AppKey("process_claim")

REQUIRED_FIELDS = ("chain_id", "tx_reference", "recipient_address", "claimed_amount")


def claim_from_json(session_id: str, body: Any) -> DonationClaim:
    """Build a DonationClaim from a request body. Raises MalformedClaim."""
    if not isinstance(body, dict):
        raise MalformedClaim("claim body must be a JSON object")
    missing = [name for name in REQUIRED_FIELDS if body.get(name) in (None, "")]
    if missing:
        raise MalformedClaim(f"missing field(s): {', '.join(missing)}")

    amount = body["claimed_amount"]
    if isinstance(amount, bool) or not isinstance(amount, (str, int)):
        raise MalformedClaim("claimed_amount must be a decimal string of base units")
    metadata = body.get("donor_metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise MalformedClaim("donor_metadata must be a JSON object")

    return DonationClaim(
        chain_id=ChainId.parse(body["chain_id"]),
        tx_reference=str(body["tx_reference"]).strip(),
        recipient_address=str(body["recipient_address"]).strip(),
        claimed_amount=str(amount),
        session_id=session_id,
        donor_metadata=metadata,
    )


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def handle_claim(request: web.Request) -> web.Response:
    process: ClaimProcessor = request.app[CLAIMS_KEY]
    session_id = request.match_info["session_id"]

    try:
        body = await request.json()
    except ValueError:
        return _error(400, "request body must be JSON")

    try:
        claim = claim_from_json(session_id, body)
        result = await process(claim, bool(body.get("wait", False)))
    except UnknownSession:
        return _error(404, f"unknown session: {session_id}")
    except (MalformedClaim, UnsupportedChain) as exc:
        return _error(400, str(exc))
    except DonationSyncError as exc:
        log.warning("Claim for session %s not admitted: %s", session_id, exc)
        return _error(409, str(exc))

    if result.donation is not None:
        status = 201
    elif result.outcome.retryable:
        status = 202
    else:
        status = 422
    return web.json_response(result.to_dict(), status=status)
