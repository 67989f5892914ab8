"""Realtime managers: presence, typing indicators and the connection hub."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from fastapi.concurrency import run_in_threadpool
from fastapi.websockets import WebSocket
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.monitoring.metrics import realtime_connections, realtime_events_total
from app.schemas import PublicUser
from app.services.stores import MessageStore, StoreError, UserStore

from .connections import Connection
from .dispatch import MessageDispatcher
from .events import (
    PONG_EVENT,
    EventParseError,
    JoinConversation,
    LeaveConversation,
    MarkRead,
    Ping,
    Pong,
    SendMessage,
    TypingStart,
    TypingStop,
    conversation_joined_event,
    conversation_left_event,
    error_event,
    message_error_event,
    online_users_event,
    parse_event,
    presence_changed_event,
    typing_changed_event,
)
from .registry import PresenceRegistry
from .rooms import RoomRouter, conversation_room, parse_room_key, personal_room, room_key_for

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal state helpers
# ---------------------------------------------------------------------------


class TypingStatusStore:
    """Stores transient typing indicators keyed by sender and receiver."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[int, Dict[int, tuple[str, float]]] = defaultdict(dict)

    def _expired(self, ts: float, now: float) -> bool:
        return now - ts > self._ttl

    def start(self, sender_id: int, receiver_id: int, conversation_key: str) -> bool:
        """Record that ``sender_id`` is typing; False if already recorded within the TTL."""

        now = self._clock()
        bucket = self._entries[sender_id]
        current = bucket.get(receiver_id)
        bucket[receiver_id] = (conversation_key, now)
        return current is None or self._expired(current[1], now)

    def stop(self, sender_id: int, receiver_id: int) -> bool:
        bucket = self._entries.get(sender_id)
        if not bucket or receiver_id not in bucket:
            return False
        bucket.pop(receiver_id, None)
        if not bucket:
            self._entries.pop(sender_id, None)
        return True

    def is_typing(self, sender_id: int, receiver_id: int) -> bool:
        entry = self._entries.get(sender_id, {}).get(receiver_id)
        return entry is not None and not self._expired(entry[1], self._clock())

    def clear_sender(self, sender_id: int) -> list[tuple[int, str]]:
        """Forget every indicator of ``sender_id``; returns the ones still live."""

        now = self._clock()
        bucket = self._entries.pop(sender_id, {})
        return [
            (receiver_id, key)
            for receiver_id, (key, ts) in sorted(bucket.items())
            if not self._expired(ts, now)
        ]


# ---------------------------------------------------------------------------
# Presence manager
# ---------------------------------------------------------------------------


class PresenceManager:
    """Track online users and broadcast their transitions to every client.

    Presence broadcasts are global, not scoped to conversations.
    """

    def __init__(self, registry: PresenceRegistry, router: RoomRouter, users: UserStore) -> None:
        self._registry = registry
        self._router = router
        self._users = users

    def _update_gauges(self) -> None:
        realtime_connections.labels("sockets").set(self._registry.connection_count())
        realtime_connections.labels("users").set(len(self._registry.online_user_ids()))

    async def mark_online(self, connection: Connection) -> bool:
        first = self._registry.add(connection.user_id, connection)
        self._router.join(connection, personal_room(connection.user_id))
        self._update_gauges()
        if not first:
            return False

        now = datetime.now(timezone.utc)
        await self._router.broadcast_all(
            presence_changed_event(connection.user_id, True, now), exclude={connection}
        )
        realtime_events_total.labels("presence", "outbound", "online").inc()
        await self._persist(connection.user_id, True, now)
        return True

    async def mark_offline(self, connection: Connection) -> bool:
        # Memberships go first so no later fan-out reaches the closed connection.
        connection.closed = True
        self._router.leave_all(connection)
        last = self._registry.remove(connection.user_id, connection)
        self._update_gauges()
        if not last:
            return False

        now = datetime.now(timezone.utc)
        await self._router.broadcast_all(presence_changed_event(connection.user_id, False, now))
        realtime_events_total.labels("presence", "outbound", "offline").inc()
        await self._persist(connection.user_id, False, now)
        return True

    async def _persist(self, user_id: int, is_online: bool, last_seen: datetime) -> None:
        if self._registry.is_online(user_id) != is_online:
            # The user reconnected or left again while the broadcast was in flight.
            logger.debug("Skipping stale %s status write for user %s", "online" if is_online else "offline", user_id)
            return
        try:
            await run_in_threadpool(
                lambda: self._users.set_presence(user_id, is_online=is_online, last_seen=last_seen)
            )
        except StoreError:
            logger.exception(
                "Failed to persist %s status for user %s",
                "online" if is_online else "offline",
                user_id,
            )

    def snapshot(self) -> list[int]:
        return self._registry.online_user_ids()


# ---------------------------------------------------------------------------
# Typing manager
# ---------------------------------------------------------------------------


class TypingManager:
    """Relay typing indicators to the receiver's personal room."""

    def __init__(self, router: RoomRouter, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._router = router
        self._store = TypingStatusStore(ttl_seconds, clock=clock)

    async def set_status(self, sender_id: int, receiver_id: int, is_typing: bool) -> bool:
        if sender_id == receiver_id:
            return False
        key = room_key_for(sender_id, receiver_id)
        if is_typing:
            if not self._store.start(sender_id, receiver_id, key):
                return False
        else:
            self._store.stop(sender_id, receiver_id)

        await self._router.broadcast(
            [personal_room(receiver_id)], typing_changed_event(sender_id, key, is_typing)
        )
        realtime_events_total.labels("typing", "outbound", "start" if is_typing else "stop").inc()
        return True

    async def clear_user(self, sender_id: int) -> None:
        for receiver_id, key in self._store.clear_sender(sender_id):
            await self._router.broadcast(
                [personal_room(receiver_id)], typing_changed_event(sender_id, key, False)
            )
            realtime_events_total.labels("typing", "outbound", "clear").inc()


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------


class RealtimeHub:
    """Own the realtime state of this process and route inbound events.

    Created by the application startup hook and torn down at shutdown.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        messages: MessageStore,
        typing_ttl_seconds: float = 8.0,
        max_content_length: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.users = users
        self.messages = messages
        self.registry = PresenceRegistry()
        self.router = RoomRouter()
        self.presence = PresenceManager(self.registry, self.router, users)
        self.typing = TypingManager(self.router, ttl_seconds=typing_ttl_seconds, clock=clock)
        self.dispatcher = MessageDispatcher(
            messages=messages,
            users=users,
            router=self.router,
            registry=self.registry,
            max_content_length=max_content_length,
        )

    async def connect(self, websocket: WebSocket, user: PublicUser) -> Connection:
        """Register an accepted, authenticated websocket."""

        connection = Connection(websocket=websocket, user_id=user.id, username=user.username)
        await self.presence.mark_online(connection)
        await connection.send(online_users_event(self.presence.snapshot()))
        logger.info("User %s connected (%s)", user.id, connection.id)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        last = await self.presence.mark_offline(connection)
        if last:
            await self.typing.clear_user(connection.user_id)
        logger.info("User %s disconnected (%s)", connection.user_id, connection.id)

    async def handle(self, connection: Connection, payload: Any) -> None:
        """Parse one decoded frame and run the matching handler."""

        try:
            event = parse_event(payload)
        except EventParseError as exc:
            realtime_events_total.labels("invalid", "inbound", exc.event_type or "unknown").inc()
            if exc.event_type == "send_message":
                await connection.send(message_error_event(exc.detail, "invalid_payload"))
            else:
                await connection.send(error_event(exc.detail))
            return

        realtime_events_total.labels("chat", "inbound", event.type).inc()

        if isinstance(event, SendMessage):
            await self.dispatcher.handle_send(connection, event)
        elif isinstance(event, MarkRead):
            await self.dispatcher.handle_mark_read(connection, event.message_id)
        elif isinstance(event, TypingStart):
            await self.typing.set_status(connection.user_id, event.receiver_id, True)
        elif isinstance(event, TypingStop):
            await self.typing.set_status(connection.user_id, event.receiver_id, False)
        elif isinstance(event, JoinConversation):
            await self._join(connection, event.conversation_key)
        elif isinstance(event, LeaveConversation):
            await self._leave(connection, event.conversation_key)
        elif isinstance(event, Ping):
            await connection.send(PONG_EVENT)
        elif isinstance(event, Pong):
            return

    async def _join(self, connection: Connection, conversation_key: str) -> None:
        try:
            participants = parse_room_key(conversation_key)
        except ValueError:
            await connection.send(error_event("Invalid conversation key"))
            return
        if connection.user_id not in participants:
            await connection.send(error_event("Not a participant in this conversation"))
            return
        # Rooms are keyed by the canonical form; "01_2" and "1_2" are one room.
        key = room_key_for(*participants)
        self.router.join(connection, conversation_room(key))
        await connection.send(conversation_joined_event(key))

    async def _leave(self, connection: Connection, conversation_key: str) -> None:
        try:
            key = room_key_for(*parse_room_key(conversation_key))
        except ValueError:
            await connection.send(error_event("Invalid conversation key"))
            return
        self.router.leave(connection, conversation_room(key))
        await connection.send(conversation_left_event(key))

    def online_user_ids(self) -> list[int]:
        return self.registry.online_user_ids()

    async def shutdown(self) -> None:
        """Forget every live connection; sockets are closed by their endpoints."""

        for connection in self.registry.clear():
            connection.closed = True
            self.router.leave_all(connection)
        realtime_connections.labels("sockets").set(0)
        realtime_connections.labels("users").set(0)


def build_realtime_hub(session_factory: sessionmaker[Session], settings: Settings) -> RealtimeHub:
    return RealtimeHub(
        users=UserStore(session_factory),
        messages=MessageStore(session_factory),
        typing_ttl_seconds=float(settings.realtime_typing_ttl_seconds),
        max_content_length=settings.chat_message_max_length,
    )


__all__ = [
    "PresenceManager",
    "RealtimeHub",
    "TypingManager",
    "TypingStatusStore",
    "build_realtime_hub",
]
