"""Database models package."""

from .base import Base
from .chat import Message, User
from .enums import DeliveryStatus, MessageKind

__all__ = [
    "Base",
    "User",
    "Message",
    "MessageKind",
    "DeliveryStatus",
]
