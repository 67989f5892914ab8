"""In-memory presence registry for the realtime process."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Set

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .connections import Connection


class PresenceRegistry:
    """Map user ids to their live connections.

    A user is online while at least one connection is registered. The
    registry is process-local and starts empty.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Set["Connection"]] = defaultdict(set)

    def add(self, user_id: int, connection: "Connection") -> bool:
        """Register ``connection``; True when it is the user's first one."""

        sockets = self._connections[user_id]
        first = not sockets
        sockets.add(connection)
        return first

    def remove(self, user_id: int, connection: "Connection") -> bool:
        """Deregister ``connection``; True when it was the user's last one."""

        sockets = self._connections.get(user_id)
        if not sockets or connection not in sockets:
            return False
        sockets.discard(connection)
        if not sockets:
            self._connections.pop(user_id, None)
            return True
        return False

    def is_online(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self, user_id: int | None = None) -> int:
        if user_id is not None:
            return len(self._connections.get(user_id, set()))
        return sum(len(sockets) for sockets in self._connections.values())

    def online_user_ids(self) -> list[int]:
        return sorted(user_id for user_id, sockets in self._connections.items() if sockets)

    def clear(self) -> list["Connection"]:
        """Drop every entry and return the connections that were registered."""

        dropped = [connection for sockets in self._connections.values() for connection in sockets]
        self._connections.clear()
        return dropped
