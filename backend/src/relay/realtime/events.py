"""Wire events exchanged over the chat websocket.

Inbound frames are parsed into one pydantic model per event kind, selected by
the ``type`` field. Outbound payloads are plain dicts built by the helpers at
the bottom of this module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

# Largest id a signed 64-bit integer column can hold.
MAX_ENTITY_ID = 2**63 - 1

EntityId = Annotated[int, Field(gt=0, le=MAX_ENTITY_ID)]


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JoinConversation(_Inbound):
    type: Literal["join_conversation"]
    conversation_key: str


class LeaveConversation(_Inbound):
    type: Literal["leave_conversation"]
    conversation_key: str


class SendMessage(_Inbound):
    type: Literal["send_message"]
    receiver_id: EntityId
    content: str = ""
    kind: str = "text"
    attachment_url: str | None = None
    reply_to_id: EntityId | None = None


class TypingStart(_Inbound):
    type: Literal["typing_start"]
    receiver_id: EntityId
    conversation_key: str | None = None


class TypingStop(_Inbound):
    type: Literal["typing_stop"]
    receiver_id: EntityId
    conversation_key: str | None = None


class MarkRead(_Inbound):
    type: Literal["mark_read"]
    message_id: EntityId


class Ping(_Inbound):
    type: Literal["ping"]


class Pong(_Inbound):
    type: Literal["pong"]


InboundEvent = Annotated[
    Union[
        JoinConversation,
        LeaveConversation,
        SendMessage,
        TypingStart,
        TypingStop,
        MarkRead,
        Ping,
        Pong,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


class EventParseError(ValueError):
    """Raised when an inbound frame is not a recognised, well-formed event."""

    def __init__(self, detail: str, *, event_type: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.event_type = event_type


def parse_event(payload: Any) -> InboundEvent:
    """Validate a decoded JSON frame into its typed event variant."""

    if not isinstance(payload, dict):
        raise EventParseError("Message payload must be a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventParseError("Missing event type")
    try:
        return _inbound_adapter.validate_python(payload)
    except ValidationError as exc:
        errors = exc.errors()
        if errors and errors[0].get("type") == "union_tag_invalid":
            raise EventParseError(f"Unsupported event type: {event_type}", event_type=event_type) from exc
        raise EventParseError(f"Invalid {event_type} payload", event_type=event_type) from exc


# ---------------------------------------------------------------------------
# Outbound payloads
# ---------------------------------------------------------------------------


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def new_message_event(message: dict[str, Any]) -> dict[str, Any]:
    return {"type": "new_message", "message": message}


def message_sent_event(message_id: int, status: str, conversation_key: str) -> dict[str, Any]:
    return {
        "type": "message_sent",
        "message_id": message_id,
        "status": status,
        "conversation_key": conversation_key,
    }


def message_error_event(reason: str, code: str) -> dict[str, Any]:
    return {"type": "message_error", "reason": reason, "code": code}


def typing_changed_event(sender_id: int, conversation_key: str, is_typing: bool) -> dict[str, Any]:
    return {
        "type": "typing_changed",
        "sender_id": sender_id,
        "conversation_key": conversation_key,
        "is_typing": is_typing,
    }


def message_read_event(message_id: int, read_at: datetime | None) -> dict[str, Any]:
    return {"type": "message_read", "message_id": message_id, "read_at": _timestamp(read_at)}


def presence_changed_event(user_id: int, is_online: bool, last_seen: datetime | None = None) -> dict[str, Any]:
    return {
        "type": "presence_changed",
        "user_id": user_id,
        "is_online": is_online,
        "last_seen": _timestamp(last_seen),
    }


def online_users_event(user_ids: list[int]) -> dict[str, Any]:
    return {"type": "online_users", "user_ids": list(user_ids)}


def conversation_joined_event(conversation_key: str) -> dict[str, Any]:
    return {"type": "conversation_joined", "conversation_key": conversation_key}


def conversation_left_event(conversation_key: str) -> dict[str, Any]:
    return {"type": "conversation_left", "conversation_key": conversation_key}


def error_event(detail: str) -> dict[str, Any]:
    return {"type": "error", "detail": detail}


PONG_EVENT: dict[str, Any] = {"type": "pong"}
PING_EVENT: dict[str, Any] = {"type": "ping"}
