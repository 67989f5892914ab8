"""SQLAlchemy-backed user and message stores."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.models import MessageKind
from app.services.stores import DuplicateUserError, MessageStore, StoreError, UserStore


def test_user_create_normalizes_email(user_store):
    user = user_store.create(username="dana", email="  Dana@Example.COM ")

    assert user.email == "dana@example.com"
    assert user_store.get_by_email("DANA@example.com").id == user.id


def test_user_create_rejects_duplicates(user_store):
    user_store.create(username="dana", email="dana@example.com")

    with pytest.raises(DuplicateUserError):
        user_store.create(username="dana2", email="DANA@example.com")
    with pytest.raises(DuplicateUserError):
        user_store.create(username="dana", email="other@example.com")


def test_set_presence(user_store, make_user):
    user = make_user("erin")
    seen = datetime(2024, 5, 1, tzinfo=timezone.utc)

    user_store.set_presence(user.id, is_online=True, last_seen=seen)

    stored = user_store.get(user.id)
    assert stored.is_online is True
    assert stored.last_seen.replace(tzinfo=timezone.utc) == seen
    assert user_store.get(999) is None


def test_message_lifecycle(message_store, make_user):
    alice = make_user("alice")
    bob = make_user("bob")

    created = message_store.create(sender_id=alice.id, receiver_id=bob.id, content="pic", kind=MessageKind.IMAGE)
    assert created.kind is MessageKind.IMAGE
    assert message_store.exists(created.id)
    assert message_store.count_between(bob.id, alice.id) == 1

    updated = message_store.update_flags(created.id, is_read=True, read_at=datetime.now(timezone.utc))
    assert updated.is_read is True and updated.read_at is not None

    edited = message_store.update_flags(created.id, is_edited=True, edited_at=datetime.now(timezone.utc))
    assert edited.is_edited is True and edited.is_read is True

    assert message_store.delete(created.id) is True
    assert message_store.delete(created.id) is False
    assert message_store.get(created.id) is None
    assert message_store.update_flags(created.id, is_read=True) is None


def test_list_involving_is_time_ordered(message_store, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    first = message_store.create(sender_id=alice.id, receiver_id=bob.id, content="one")
    second = message_store.create(sender_id=carol.id, receiver_id=alice.id, content="two")
    message_store.create(sender_id=bob.id, receiver_id=carol.id, content="not alice")

    assert [message.id for message in message_store.list_involving(alice.id)] == [first.id, second.id]


def test_store_errors_are_wrapped(session_factory, test_engine):
    users = UserStore(session_factory)
    messages = MessageStore(session_factory)
    with test_engine.begin() as connection:
        connection.exec_driver_sql("DROP TABLE messages")
        connection.exec_driver_sql("DROP TABLE users")

    with pytest.raises(StoreError):
        users.get(1)
    with pytest.raises(StoreError):
        messages.list_involving(1)
    with pytest.raises(StoreError):
        users.set_presence(1, is_online=False, last_seen=datetime.now(timezone.utc))


def test_mark_read_flips_only_once(message_store, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    created = message_store.create(sender_id=alice.id, receiver_id=bob.id, content="once")
    first_read = datetime(2024, 5, 1, tzinfo=timezone.utc)

    flipped = message_store.mark_read(created.id, first_read)
    again = message_store.mark_read(created.id, datetime.now(timezone.utc))

    assert flipped is not None and flipped.is_read is True
    assert again is None
    assert message_store.get(created.id).read_at.replace(tzinfo=timezone.utc) == first_read
    assert message_store.mark_read(999, first_read) is None
