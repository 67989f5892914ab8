"""Application service helpers."""

from .conversations import summarize_conversations
from .stores import DuplicateUserError, MessageStore, StoreError, UserStore, normalize_email

__all__ = [
    "MessageStore",
    "UserStore",
    "StoreError",
    "DuplicateUserError",
    "normalize_email",
    "summarize_conversations",
]
