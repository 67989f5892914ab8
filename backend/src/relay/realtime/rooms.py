"""Conversation routing: room keys and broadcast group membership."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, Iterable, Set

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .connections import Connection


CONVERSATION_PREFIX = "conversation:"
PERSONAL_PREFIX = "user:"


def room_key_for(user_a: int, user_b: int) -> str:
    """Return the canonical key of the conversation between two users.

    The key does not depend on argument order.
    """

    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}_{high}"


def parse_room_key(key: str) -> tuple[int, int]:
    """Split a conversation key back into its two user ids.

    Raises ``ValueError`` for keys that are not in canonical form.
    """

    parts = str(key).split("_")
    if len(parts) != 2:
        raise ValueError(f"Malformed conversation key: {key!r}")
    low, high = (int(part) for part in parts)
    if low >= high:
        raise ValueError(f"Conversation key is not canonical: {key!r}")
    return low, high


def conversation_room(key: str) -> str:
    return f"{CONVERSATION_PREFIX}{key}"


def personal_room(user_id: int) -> str:
    return f"{PERSONAL_PREFIX}{user_id}"


class RoomRouter:
    """Track which live connections belong to which broadcast group.

    Mutations are synchronous so that a mutation and the reads that follow it
    inside one event handler cannot interleave with another handler.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set["Connection"]] = defaultdict(set)
        self._memberships: Dict["Connection", Set[str]] = defaultdict(set)

    def join(self, connection: "Connection", room: str) -> bool:
        """Add ``connection`` to ``room``; returns False if it already was a member."""

        members = self._rooms[room]
        if connection in members:
            return False
        members.add(connection)
        self._memberships[connection].add(room)
        return True

    def leave(self, connection: "Connection", room: str) -> bool:
        members = self._rooms.get(room)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            self._rooms.pop(room, None)
        rooms = self._memberships.get(connection)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                self._memberships.pop(connection, None)
        return True

    def leave_all(self, connection: "Connection") -> list[str]:
        """Remove ``connection`` from every room and return the rooms it left."""

        rooms = sorted(self._memberships.pop(connection, set()))
        for room in rooms:
            members = self._rooms.get(room)
            if not members:
                continue
            members.discard(connection)
            if not members:
                self._rooms.pop(room, None)
        return rooms

    def rooms_of(self, connection: "Connection") -> set[str]:
        return set(self._memberships.get(connection, set()))

    def members(self, *rooms: str) -> list["Connection"]:
        """Return the union of the members of ``rooms``, each connection once."""

        seen: set["Connection"] = set()
        ordered: list["Connection"] = []
        for room in rooms:
            for connection in self._rooms.get(room, set()):
                if connection in seen:
                    continue
                seen.add(connection)
                ordered.append(connection)
        return ordered

    def all_connections(self) -> list["Connection"]:
        return list(self._memberships)

    async def broadcast(
        self,
        rooms: Iterable[str],
        payload: dict[str, Any],
        *,
        exclude: Iterable["Connection"] | None = None,
    ) -> int:
        """Send ``payload`` once to every connection in any of ``rooms``.

        Returns the number of connections the payload was handed to.
        """

        exclude_set = set(exclude or [])
        targets = [
            connection for connection in self.members(*rooms) if connection not in exclude_set
        ]
        delivered = 0
        for connection in targets:
            if await connection.send(payload):
                delivered += 1
        return delivered

    async def broadcast_all(
        self,
        payload: dict[str, Any],
        *,
        exclude: Iterable["Connection"] | None = None,
    ) -> int:
        exclude_set = set(exclude or [])
        delivered = 0
        for connection in self.all_connections():
            if connection in exclude_set:
                continue
            if await connection.send(payload):
                delivered += 1
        return delivered
