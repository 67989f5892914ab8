"""Realtime core: rooms, presence, dispatch and the websocket hub.

Only dependency-free modules are re-exported here; ``managers`` and
``dispatch`` import the application layer and are imported explicitly.
"""

from .errors import AuthenticationFailure, PersistenceFailure, RealtimeError, ValidationFailure
from .registry import PresenceRegistry
from .rooms import RoomRouter, conversation_room, parse_room_key, personal_room, room_key_for

__all__ = [
    "AuthenticationFailure",
    "PersistenceFailure",
    "PresenceRegistry",
    "RealtimeError",
    "RoomRouter",
    "ValidationFailure",
    "conversation_room",
    "parse_room_key",
    "personal_room",
    "room_key_for",
]
