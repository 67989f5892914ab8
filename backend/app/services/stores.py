"""SQLAlchemy-backed stores shared by the HTTP layer and the realtime core.

Every method opens its own short-lived session and returns detached pydantic
snapshots, so callers may run them in a worker thread and keep the results
after the session is closed. Database errors are wrapped in :class:`StoreError`.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from app.models import Message, MessageKind, User
from app.schemas import MessageRead, PublicUser


_UNSET = object()


class StoreError(Exception):
    """Raised when the durable store fails to complete an operation."""


class DuplicateUserError(StoreError):
    """Raised when a user with the same email or username already exists."""


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _pair_clause(user_id: int, other_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == other_id),
        and_(Message.sender_id == other_id, Message.receiver_id == user_id),
    )


def _message_options():
    return (
        selectinload(Message.sender),
        selectinload(Message.receiver),
        selectinload(Message.reply_to),
    )


class UserStore:
    """Lookup and presence persistence for users."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, user_id: int) -> PublicUser | None:
        with self._session_factory() as db:
            try:
                user = db.get(User, user_id)
            except SQLAlchemyError as exc:
                raise StoreError("Failed to load user") from exc
            return PublicUser.model_validate(user) if user is not None else None

    def get_by_email(self, email: str) -> PublicUser | None:
        normalized = normalize_email(email)
        with self._session_factory() as db:
            try:
                user = db.execute(
                    select(User).where(func.lower(User.email) == normalized)
                ).scalar_one_or_none()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to look up user by email") from exc
            return PublicUser.model_validate(user) if user is not None else None

    def create(self, *, username: str, email: str) -> PublicUser:
        normalized = normalize_email(email)
        with self._session_factory() as db:
            try:
                duplicate = db.execute(
                    select(User.id).where(
                        or_(func.lower(User.email) == normalized, User.username == username)
                    )
                ).first()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to check for existing users") from exc
            if duplicate is not None:
                raise DuplicateUserError("User with this email or username already exists")
            user = User(
                username=username,
                email=normalized,
                is_online=False,
                last_seen=datetime.now(timezone.utc),
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateUserError("User with this email or username already exists") from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to create user") from exc
            db.refresh(user)
            return PublicUser.model_validate(user)

    def set_presence(self, user_id: int, *, is_online: bool, last_seen: datetime) -> None:
        with self._session_factory() as db:
            try:
                user = db.get(User, user_id)
                if user is None:
                    return
                user.is_online = is_online
                user.last_seen = last_seen
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to persist presence status") from exc


class MessageStore:
    """Durable log of direct messages with mutable read/edit flags."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _load(message_id: int, db: Session) -> Message | None:
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .options(*_message_options())
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()

    def create(
        self,
        *,
        sender_id: int,
        receiver_id: int,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        attachment_url: str | None = None,
        reply_to_id: int | None = None,
    ) -> MessageRead:
        with self._session_factory() as db:
            message = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                kind=kind,
                attachment_url=attachment_url,
                reply_to_id=reply_to_id,
                created_at=datetime.now(timezone.utc),
            )
            db.add(message)
            try:
                db.commit()
                stored = self._load(message.id, db)
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to store message") from exc
            return MessageRead.model_validate(stored)

    def get(self, message_id: int) -> MessageRead | None:
        with self._session_factory() as db:
            try:
                message = self._load(message_id, db)
            except SQLAlchemyError as exc:
                raise StoreError("Failed to load message") from exc
            return MessageRead.model_validate(message) if message is not None else None

    def exists(self, message_id: int) -> bool:
        with self._session_factory() as db:
            try:
                found = db.execute(select(Message.id).where(Message.id == message_id)).first()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to load message") from exc
            return found is not None

    def list_between(
        self, user_id: int, other_id: int, *, page: int = 1, limit: int = 50
    ) -> list[MessageRead]:
        """Return one page of the conversation, oldest message first.

        Pages count backwards from the newest message, page 1 being the most
        recent ``limit`` messages.
        """

        offset = max(page - 1, 0) * limit
        stmt = (
            select(Message)
            .where(_pair_clause(user_id, other_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
            .options(*_message_options())
        )
        with self._session_factory() as db:
            try:
                messages = db.execute(stmt).scalars().all()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to load conversation") from exc
            return [MessageRead.model_validate(message) for message in reversed(messages)]

    def count_between(self, user_id: int, other_id: int) -> int:
        stmt = select(func.count(Message.id)).where(_pair_clause(user_id, other_id))
        with self._session_factory() as db:
            try:
                return db.execute(stmt).scalar_one()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to count messages") from exc

    def list_involving(self, user_id: int) -> list[MessageRead]:
        stmt = (
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .options(*_message_options())
        )
        with self._session_factory() as db:
            try:
                messages = db.execute(stmt).scalars().all()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to load conversations") from exc
            return [MessageRead.model_validate(message) for message in messages]

    def update_flags(
        self,
        message_id: int,
        *,
        is_read: bool | None = None,
        read_at: datetime | None | object = _UNSET,
        is_edited: bool | None = None,
        edited_at: datetime | None | object = _UNSET,
    ) -> MessageRead | None:
        with self._session_factory() as db:
            try:
                message = self._load(message_id, db)
                if message is None:
                    return None
                if is_read is not None:
                    message.is_read = is_read
                if read_at is not _UNSET:
                    message.read_at = read_at
                if is_edited is not None:
                    message.is_edited = is_edited
                if edited_at is not _UNSET:
                    message.edited_at = edited_at
                db.commit()
                db.refresh(message)
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to update message") from exc
            return MessageRead.model_validate(message)

    def mark_read(self, message_id: int, read_at: datetime) -> MessageRead | None:
        """Flip an unread message to read in one conditional UPDATE.

        Returns the updated message only when this call changed the row, so
        ``None`` means the message is missing or was already read.
        """

        stmt = (
            update(Message)
            .where(Message.id == message_id, Message.is_read.is_(False))
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as db:
            try:
                result = db.execute(stmt)
                db.commit()
                if result.rowcount != 1:
                    return None
                message = self._load(message_id, db)
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to mark message as read") from exc
            return MessageRead.model_validate(message) if message is not None else None

    def delete(self, message_id: int) -> bool:
        with self._session_factory() as db:
            try:
                message = db.get(Message, message_id)
                if message is None:
                    return False
                db.delete(message)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreError("Failed to delete message") from exc
            return True
