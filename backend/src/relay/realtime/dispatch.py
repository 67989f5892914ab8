"""Message dispatch pipeline shared by the websocket and HTTP send paths.

A send attempt moves through Received -> Validated -> Persisted -> Fanned-out
-> Acknowledged, or ends Rejected. Nothing is fanned out unless the store write
succeeded, and validation failures never reach the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi.concurrency import run_in_threadpool

from app.models.enums import DeliveryStatus, MessageKind
from app.monitoring.metrics import realtime_dispatch_failures_total, realtime_events_total
from app.schemas import MessageRead
from app.services.stores import MessageStore, StoreError, UserStore

from .connections import Connection
from .errors import PersistenceFailure, ValidationFailure
from .events import (
    SendMessage,
    message_error_event,
    message_read_event,
    message_sent_event,
    new_message_event,
)
from .registry import PresenceRegistry
from .rooms import RoomRouter, conversation_room, personal_room

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SendIntent:
    """A request to send one message; the sender comes from the caller's identity."""

    receiver_id: int
    content: str = ""
    kind: str = MessageKind.TEXT.value
    attachment_url: str | None = None
    reply_to_id: int | None = None

    @classmethod
    def from_event(cls, event: SendMessage) -> "SendIntent":
        return cls(
            receiver_id=event.receiver_id,
            content=event.content,
            kind=event.kind,
            attachment_url=event.attachment_url,
            reply_to_id=event.reply_to_id,
        )


@dataclass(slots=True)
class DispatchResult:
    message: MessageRead
    status: DeliveryStatus
    recipients: int


class MessageDispatcher:
    """Validate, persist and fan out direct messages and read receipts."""

    def __init__(
        self,
        *,
        messages: MessageStore,
        users: UserStore,
        router: RoomRouter,
        registry: PresenceRegistry,
        max_content_length: int = 1000,
    ) -> None:
        self.messages = messages
        self.users = users
        self.router = router
        self.registry = registry
        self.max_content_length = max_content_length

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def _check_payload(self, sender_id: int, intent: SendIntent) -> tuple[str, MessageKind]:
        if intent.receiver_id == sender_id:
            raise ValidationFailure("Cannot send a message to yourself", "self_message")
        content = (intent.content or "").strip()
        if not content:
            raise ValidationFailure("Message content cannot be empty", "empty_content")
        if len(content) > self.max_content_length:
            raise ValidationFailure(
                f"Message content cannot exceed {self.max_content_length} characters",
                "content_too_long",
            )
        try:
            kind = MessageKind(intent.kind)
        except ValueError:
            raise ValidationFailure(f"Unsupported message kind: {intent.kind}", "invalid_kind") from None
        return content, kind

    async def _validate(self, sender_id: int, intent: SendIntent) -> tuple[str, MessageKind]:
        content, kind = self._check_payload(sender_id, intent)
        try:
            receiver = await run_in_threadpool(self.users.get, intent.receiver_id)
            if receiver is None:
                raise ValidationFailure("Receiver not found", "receiver_not_found")
            if intent.reply_to_id is not None:
                found = await run_in_threadpool(self.messages.exists, intent.reply_to_id)
                if not found:
                    raise ValidationFailure("Replied-to message not found", "reply_not_found")
        except StoreError as exc:
            raise PersistenceFailure("Message could not be validated") from exc
        return content, kind

    async def send(self, sender_id: int, intent: SendIntent) -> DispatchResult:
        """Run one send attempt to completion.

        Raises :class:`ValidationFailure` or :class:`PersistenceFailure` when the
        attempt is rejected; in both cases nothing has been fanned out.
        """

        try:
            content, kind = await self._validate(sender_id, intent)
        except ValidationFailure as exc:
            realtime_dispatch_failures_total.labels("validate").inc()
            logger.info("Rejected message from user %s: %s", sender_id, exc.code)
            raise
        except PersistenceFailure:
            realtime_dispatch_failures_total.labels("validate").inc()
            logger.exception("Store failed while validating message from user %s", sender_id)
            raise

        try:
            message = await run_in_threadpool(
                lambda: self.messages.create(
                    sender_id=sender_id,
                    receiver_id=intent.receiver_id,
                    content=content,
                    kind=kind,
                    attachment_url=intent.attachment_url,
                    reply_to_id=intent.reply_to_id,
                )
            )
        except StoreError as exc:
            realtime_dispatch_failures_total.labels("persist").inc()
            logger.exception("Failed to persist message from user %s", sender_id)
            raise PersistenceFailure() from exc

        # Presence is read after the write so the status reflects fan-out time.
        status = (
            DeliveryStatus.DELIVERED
            if self.registry.is_online(message.receiver_id)
            else DeliveryStatus.SENT
        )
        recipients = await self.fan_out(message)
        logger.debug(
            "Message %s from %s to %s fanned out to %s connection(s)",
            message.id,
            message.sender_id,
            message.receiver_id,
            recipients,
        )
        return DispatchResult(message=message, status=status, recipients=recipients)

    async def fan_out(self, message: MessageRead) -> int:
        """Emit ``new_message`` to the conversation room and the receiver's personal room."""

        payload = new_message_event(message.model_dump(mode="json"))
        rooms = (conversation_room(message.conversation_key), personal_room(message.receiver_id))
        delivered = await self.router.broadcast(rooms, payload)
        realtime_events_total.labels("message", "outbound", "new_message").inc(delivered)
        return delivered

    async def handle_send(self, connection: Connection, event: SendMessage) -> DispatchResult | None:
        """Websocket entry point: run a send and answer the originating connection."""

        try:
            result = await self.send(connection.user_id, SendIntent.from_event(event))
        except (ValidationFailure, PersistenceFailure) as exc:
            await connection.send(message_error_event(exc.reason, exc.code))
            return None
        await connection.send(
            message_sent_event(result.message.id, result.status.value, result.message.conversation_key)
        )
        return result

    # ------------------------------------------------------------------
    # Read receipts
    # ------------------------------------------------------------------

    async def mark_read(self, user_id: int, message_id: int, *, strict: bool = False) -> MessageRead | None:
        """Flip a message to read on behalf of its receiver and notify the sender.

        With ``strict=False`` an unknown message or a caller who is not the
        receiver is ignored and ``None`` is returned. With ``strict=True`` those
        cases raise :class:`ValidationFailure`. A message that is already read is
        returned unchanged and produces no second receipt; when several calls race,
        only the one whose conditional write flips the row notifies the sender.
        """

        try:
            message = await run_in_threadpool(self.messages.get, message_id)
        except StoreError as exc:
            realtime_dispatch_failures_total.labels("read_receipt").inc()
            logger.exception("Failed to load message %s for read receipt", message_id)
            raise PersistenceFailure("Read receipt could not be stored") from exc

        if message is None:
            if strict:
                raise ValidationFailure("Message not found", "message_not_found")
            return None
        if message.receiver_id != user_id:
            if strict:
                raise ValidationFailure("Only the receiver can mark a message as read", "not_receiver")
            logger.debug("Ignoring read receipt for message %s from non-receiver %s", message_id, user_id)
            return None
        if message.is_read:
            return message

        read_at = datetime.now(timezone.utc)
        try:
            updated = await run_in_threadpool(self.messages.mark_read, message_id, read_at)
            if updated is None:
                # Another connection flipped it first, or the sender deleted it.
                return await run_in_threadpool(self.messages.get, message_id)
        except StoreError as exc:
            realtime_dispatch_failures_total.labels("read_receipt").inc()
            logger.exception("Failed to persist read receipt for message %s", message_id)
            raise PersistenceFailure("Read receipt could not be stored") from exc

        delivered = await self.router.broadcast(
            [personal_room(updated.sender_id)],
            message_read_event(updated.id, updated.read_at),
        )
        realtime_events_total.labels("receipt", "outbound", "message_read").inc(delivered)
        return updated

    async def handle_mark_read(self, connection: Connection, message_id: int) -> None:
        try:
            await self.mark_read(connection.user_id, message_id)
        except PersistenceFailure as exc:
            await connection.send(message_error_event(exc.reason, exc.code))


__all__ = ["DispatchResult", "MessageDispatcher", "SendIntent"]
