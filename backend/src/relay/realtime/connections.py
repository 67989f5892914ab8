"""Live connection handles used by the realtime core."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False)
class Connection:
    """An authenticated websocket together with the identity resolved for it.

    Identity is fixed at handshake time; handlers read ``user_id`` from here and
    never from event payloads. Instances hash by identity so they can live in
    room membership sets.
    """

    websocket: WebSocket
    user_id: int
    username: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    closed: bool = False

    async def send(self, payload: dict[str, Any]) -> bool:
        if self.closed:
            return False
        return await safe_send_json(self.websocket, payload)

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id})"
