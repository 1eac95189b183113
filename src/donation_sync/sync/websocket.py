"""aiohttp WebSocket transport for session event streams.

``GET /sessions/{session_id}/events`` upgrades to a WebSocket. Query
parameters:

    resume=<seq>         replay every donation after ``seq`` (0 = all)
    subscription=<id>    continue a paused subscription after a blip

Frames are JSON objects; see EventChannel for the frame types.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from donation_sync.errors import BacklogOverflow, DonationSyncError, SubscriptionError
from donation_sync.models.config import SyncConfig
from donation_sync.sync.channel import EventChannel
from donation_sync.sync.hub import SessionSyncHub

log = logging.getLogger(__name__)

HUB_KEY = web.AppKey("hub", SessionSyncHub)
SYNC_CONFIG_KEY = web.AppKey("sync_config", SyncConfig)


class WebSocketConnection:
    """Connection protocol over an aiohttp WebSocketResponse."""

    def __init__(self, ws: web.WebSocketResponse) -> None:
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, message: dict[str, Any]) -> None:
        await self._ws.send_json(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._ws.close(code=code, message=reason.encode("utf-8"))


def _parse_resume(raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise SubscriptionError(f"invalid resume sequence: {raw!r}") from exc


async def handle_events(request: web.Request) -> web.WebSocketResponse:
    hub = request.app[HUB_KEY]
    sync_cfg = request.app[SYNC_CONFIG_KEY]
    session_id = request.match_info["session_id"]

    ws = web.WebSocketResponse()
    await ws.prepare(request)
    channel = EventChannel(
        WebSocketConnection(ws),
        heartbeat_interval=sync_cfg.heartbeat_interval,
        heartbeat_timeout=sync_cfg.heartbeat_timeout,
    )

    try:
        subscription_id = request.query.get("subscription")
        existing = hub.get(subscription_id) if subscription_id else None
        if existing is not None and existing.session_id == session_id:
            await hub.resume(existing, channel)
        else:
            await hub.attach(session_id, channel, _parse_resume(request.query.get("resume")))
    except BacklogOverflow as exc:
        log.info("Refused resume for session %s: %s", session_id, exc)
        await channel.close("backlog_overflow", code=WSCloseCode.POLICY_VIOLATION)
        return ws
    except DonationSyncError as exc:
        log.info("Refused subscription to session %s: %s", session_id, exc)
        if not ws.closed:
            await ws.send_json({"type": "error", "error": str(exc)})
        await channel.close("refused", code=WSCloseCode.POLICY_VIOLATION)
        return ws

    async for msg in ws:
        if msg.type == WSMsgType.TEXT:
            try:
                frame = json.loads(msg.data)
            except ValueError:
                log.debug("Ignoring non-JSON frame from %s", request.remote)
                continue
            if isinstance(frame, dict):
                await channel.handle_message(frame)
        elif msg.type == WSMsgType.ERROR:
            log.info("WebSocket error on session %s: %s", session_id, ws.exception())
            break

    # A clean close is an explicit goodbye; anything else may reconnect.
    await channel.connection_lost(terminal=ws.close_code == WSCloseCode.OK)
    return ws

