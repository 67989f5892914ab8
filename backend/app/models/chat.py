from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import MessageKind
from relay.realtime.rooms import room_key_for


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Chat participant as known to the identity collaborator."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    # stored normalized (trimmed, lower-cased) so uniqueness is case-insensitive
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    sent_messages: Mapped[list["Message"]] = relationship(
        back_populates="sender", foreign_keys="Message.sender_id", cascade="all, delete-orphan"
    )
    received_messages: Mapped[list["Message"]] = relationship(
        back_populates="receiver", foreign_keys="Message.receiver_id", cascade="all, delete-orphan"
    )


class Message(Base):
    """Direct message exchanged between two users."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_pair_created", "sender_id", "receiver_id", "created_at"),
        Index("ix_messages_receiver_unread", "receiver_id", "is_read"),
        CheckConstraint("sender_id <> receiver_id", name="ck_messages_not_self"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sender_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[MessageKind] = mapped_column(
        SAEnum(
            MessageKind,
            name="message_kind",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=MessageKind.TEXT,
        nullable=False,
    )
    attachment_url: Mapped[str | None] = mapped_column(String(1024))
    reply_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    sender: Mapped[User] = relationship(
        back_populates="sent_messages", foreign_keys=[sender_id]
    )
    receiver: Mapped[User] = relationship(
        back_populates="received_messages", foreign_keys=[receiver_id]
    )
    reply_to: Mapped["Message | None"] = relationship(remote_side=[id])

    @property
    def conversation_key(self) -> str:
        return room_key_for(self.sender_id, self.receiver_id)
