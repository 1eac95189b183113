"""aiohttp application: session event streams and claim submission."""

from __future__ import annotations

from aiohttp import web

from donation_sync.api.claims import CLAIMS_KEY, ClaimProcessor, handle_claim
from donation_sync.models.config import SyncConfig
from donation_sync.sync.hub import SessionSyncHub
from donation_sync.sync.websocket import HUB_KEY, SYNC_CONFIG_KEY, handle_events


def create_app(
    hub: SessionSyncHub,
    sync_config: SyncConfig | None = None,
    process_claim: ClaimProcessor | None = None,
) -> web.Application:
    """Routes:

    ``GET /sessions/{session_id}/events``   WebSocket event stream
    ``POST /sessions/{session_id}/claims``  claim submission (when a processor is given)
    """
    app = web.Application()
    app[HUB_KEY] = hub
    app[SYNC_CONFIG_KEY] = sync_config or SyncConfig()
    app.router.add_get("/sessions/{session_id}/events", handle_events)
    if process_claim is not None:
        app[CLAIMS_KEY] = process_claim
        app.router.add_post("/sessions/{session_id}/claims", handle_claim)
    return app
