"""WebSocket endpoint for real-time direct messaging."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

import anyio
from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.schemas import PublicUser
from relay.realtime.auth import authenticate
from relay.realtime.connections import safe_send_json
from relay.realtime.errors import AuthenticationFailure
from relay.realtime.events import PING_EVENT, error_event
from relay.realtime.managers import RealtimeHub

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or PING_EVENT
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _extract_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _resolve_user(websocket: WebSocket, hub: RealtimeHub) -> PublicUser | None:
    try:
        return await authenticate(_extract_token(websocket), hub.users)
    except AuthenticationFailure as exc:
        logger.info("Rejected chat socket: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc))
        return None


async def _receive_frame(websocket: WebSocket) -> str | None:
    """Receive one frame; binary frames are returned as ``None``."""

    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
    return message.get("text")


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, error_event(detail))


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """Handle the direct-message event stream of one authenticated client."""

    hub: RealtimeHub | None = getattr(websocket.app.state, "realtime", None)
    if hub is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Realtime service is not running")
        return

    user = await _resolve_user(websocket, hub)
    if user is None:
        return

    await websocket.accept()
    connection = await hub.connect(websocket, user)

    try:
        timeout_seconds = settings.websocket_keepalive_timeout_seconds
        ping_interval = settings.websocket_keepalive_ping_interval_seconds
        async for raw_message in iter_keepalive_messages(
            websocket,
            lambda: _receive_frame(websocket),
            timeout_seconds=timeout_seconds,
            ping_interval_seconds=ping_interval,
        ):
            if raw_message is None:
                await _send_error(websocket, "Invalid message format")
                continue
            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid message format")
                continue

            await hub.handle(connection, payload)
    finally:
        # Presence cleanup must finish even when the socket task is cancelled.
        with anyio.CancelScope(shield=True):
            await hub.disconnect(connection)
