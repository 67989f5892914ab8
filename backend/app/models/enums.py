from __future__ import annotations

from enum import Enum


class MessageKind(str, Enum):
    """Kinds of payload a direct message can carry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class DeliveryStatus(str, Enum):
    """Delivery state reported back to the sender of a message."""

    SENT = "sent"
    DELIVERED = "delivered"
