"""HTTP endpoints for direct messages.

Sending and read receipts go through the same dispatch pipeline as the
websocket, so messages created here reach live sockets too.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from fastapi.concurrency import run_in_threadpool

from app.api.deps import get_current_user, get_realtime
from app.config import get_settings
from app.models import User
from app.schemas import (
    ConversationByEmailRead,
    ConversationRead,
    MarkReadRequest,
    MessageByEmailCreate,
    MessageCreate,
    MessagePage,
    MessageRead,
    Pagination,
    PublicUser,
)
from app.services import StoreError, summarize_conversations
from relay.realtime.dispatch import SendIntent
from relay.realtime.errors import PersistenceFailure, ValidationFailure
from relay.realtime.events import MAX_ENTITY_ID
from relay.realtime.managers import RealtimeHub

router = APIRouter(prefix="/messages", tags=["messages"])

settings = get_settings()


def _to_http_error(exc: ValidationFailure | PersistenceFailure) -> HTTPException:
    if isinstance(exc, PersistenceFailure):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason)
    if exc.is_not_found:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.reason)
    if exc.code == "not_receiver":
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.reason)


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def _clamp_limit(limit: int | None) -> int:
    if limit is None:
        return settings.chat_history_default_limit
    return max(1, min(limit, settings.chat_history_max_limit))


async def _send(hub: RealtimeHub, sender_id: int, intent: SendIntent) -> MessageRead:
    try:
        result = await hub.dispatcher.send(sender_id, intent)
    except (ValidationFailure, PersistenceFailure) as exc:
        raise _to_http_error(exc) from exc
    return result.message


def _load_page(hub: RealtimeHub, user_id: int, other_id: int, page: int, limit: int) -> MessagePage:
    try:
        messages = hub.messages.list_between(user_id, other_id, page=page, limit=limit)
        total = hub.messages.count_between(user_id, other_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    offset = (page - 1) * limit
    return MessagePage(
        messages=messages,
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_messages=total,
            has_more=offset + limit < total,
        ),
    )


@router.post("", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> MessageRead:
    """Send a message to a user addressed by id."""

    intent = SendIntent(
        receiver_id=payload.receiver_id,
        content=payload.content,
        kind=payload.kind,
        attachment_url=payload.attachment_url,
        reply_to_id=payload.reply_to_id,
    )
    return await _send(hub, current_user.id, intent)


@router.post("/by-email", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message_by_email(
    payload: MessageByEmailCreate,
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> MessageRead:
    """Send a message to a user addressed by email."""

    try:
        receiver = await run_in_threadpool(hub.users.get_by_email, payload.recipient_email)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if receiver is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")

    intent = SendIntent(
        receiver_id=receiver.id,
        content=payload.content,
        kind=payload.kind,
        attachment_url=payload.attachment_url,
        reply_to_id=payload.reply_to_id,
    )
    return await _send(hub, current_user.id, intent)


@router.get("/history/{user_id}", response_model=MessagePage)
def read_history(
    user_id: int = Path(..., gt=0, le=MAX_ENTITY_ID),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> MessagePage:
    """Return one page of the conversation with ``user_id``, oldest message first."""

    try:
        other = hub.users.get(user_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if other is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _load_page(hub, current_user.id, other.id, page, _clamp_limit(limit))


@router.get("/by-email/{email}", response_model=ConversationByEmailRead)
def read_history_by_email(
    email: str,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> ConversationByEmailRead:
    try:
        other = hub.users.get_by_email(email)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if other is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    page_data = _load_page(hub, current_user.id, other.id, page, _clamp_limit(limit))
    return ConversationByEmailRead(
        messages=page_data.messages,
        pagination=page_data.pagination,
        other_user=PublicUser.model_validate(other),
    )


@router.get("/conversations", response_model=list[ConversationRead])
def list_conversations(
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> list[ConversationRead]:
    """List one entry per counterpart, most recent conversation first."""

    try:
        messages = hub.messages.list_involving(current_user.id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return summarize_conversations(current_user.id, messages)


@router.put("/read", response_model=MessageRead)
async def mark_message_read(
    payload: MarkReadRequest,
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> MessageRead:
    try:
        message = await hub.dispatcher.mark_read(current_user.id, payload.message_id, strict=True)
    except (ValidationFailure, PersistenceFailure) as exc:
        raise _to_http_error(exc) from exc
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
def delete_message(
    message_id: int = Path(..., gt=0, le=MAX_ENTITY_ID),
    current_user: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> Response:
    """Delete a message; only its sender may do so."""

    try:
        message = hub.messages.get(message_id)
        if message is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
        if message.sender_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the sender can delete a message")
        hub.messages.delete(message_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
