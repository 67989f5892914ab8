"""Conversation read model computed from message rows."""

from __future__ import annotations

from typing import Iterable

from app.schemas import ConversationRead, MessageRead


def _counterpart(message: MessageRead, user_id: int):
    return message.receiver if message.sender_id == user_id else message.sender


def summarize_conversations(user_id: int, messages: Iterable[MessageRead]) -> list[ConversationRead]:
    """Group messages by counterpart and derive last message and unread count.

    Messages not involving ``user_id`` are ignored. Unread counts only include
    messages received by ``user_id``. The result is ordered by the last
    message, newest conversation first.
    """

    latest: dict[int, MessageRead] = {}
    unread: dict[int, int] = {}
    for message in messages:
        if user_id not in (message.sender_id, message.receiver_id):
            continue
        other_id = _counterpart(message, user_id).id
        current = latest.get(other_id)
        if current is None or (message.created_at, message.id) > (current.created_at, current.id):
            latest[other_id] = message
        if message.receiver_id == user_id and not message.is_read:
            unread[other_id] = unread.get(other_id, 0) + 1
        else:
            unread.setdefault(other_id, 0)

    summaries = [
        ConversationRead(
            conversation_key=last.conversation_key,
            user=_counterpart(last, user_id),
            last_message=last,
            unread_count=unread.get(other_id, 0),
        )
        for other_id, last in latest.items()
    ]
    summaries.sort(
        key=lambda item: (item.last_message.created_at, item.last_message.id), reverse=True
    )
    return summaries
