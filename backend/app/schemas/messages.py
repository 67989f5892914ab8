"""Schemas related to direct messages and conversations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.enums import MessageKind
from app.schemas.users import PublicUser
from relay.realtime.events import EntityId


class MessageReference(BaseModel):
    """Short summary of the message being replied to."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: int
    content: str
    kind: MessageKind
    created_at: datetime


class MessageRead(BaseModel):
    """Enriched representation of a direct message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_key: str
    sender_id: int
    receiver_id: int
    sender: PublicUser
    receiver: PublicUser
    content: str
    kind: MessageKind = MessageKind.TEXT
    attachment_url: str | None = None
    reply_to_id: int | None = None
    reply_to: MessageReference | None = None
    is_read: bool = False
    read_at: datetime | None = None
    is_edited: bool = False
    edited_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MessageCreate(BaseModel):
    """Payload for sending a message over HTTP.

    Content and kind are checked by the dispatch pipeline, not here, so that
    HTTP and websocket sends share one set of rules.
    """

    receiver_id: EntityId
    content: str = ""
    kind: str = MessageKind.TEXT.value
    attachment_url: str | None = None
    reply_to_id: EntityId | None = None


class MessageByEmailCreate(BaseModel):
    """Payload for sending a message to a user addressed by email."""

    recipient_email: EmailStr
    content: str = ""
    kind: str = MessageKind.TEXT.value
    attachment_url: str | None = None
    reply_to_id: EntityId | None = None


class MarkReadRequest(BaseModel):
    message_id: EntityId


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_messages: int
    has_more: bool


class MessagePage(BaseModel):
    """One page of a conversation, oldest message first."""

    messages: list[MessageRead] = Field(default_factory=list)
    pagination: Pagination


class ConversationRead(BaseModel):
    """Read-model entry describing a conversation with one counterpart."""

    conversation_key: str
    user: PublicUser
    last_message: MessageRead
    unread_count: int = Field(0, ge=0)


class ConversationByEmailRead(MessagePage):
    other_user: PublicUser
