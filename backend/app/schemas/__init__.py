"""Pydantic schemas for API payloads."""

from .messages import (
    ConversationByEmailRead,
    ConversationRead,
    MarkReadRequest,
    MessageByEmailCreate,
    MessageCreate,
    MessagePage,
    MessageRead,
    MessageReference,
    Pagination,
)
from .users import OnlineUsersRead, PublicUser, UserExistsRead, UserInvite

__all__ = [
    "PublicUser",
    "UserInvite",
    "UserExistsRead",
    "OnlineUsersRead",
    "MessageReference",
    "MessageRead",
    "MessageCreate",
    "MessageByEmailCreate",
    "MarkReadRequest",
    "Pagination",
    "MessagePage",
    "ConversationRead",
    "ConversationByEmailRead",
]
