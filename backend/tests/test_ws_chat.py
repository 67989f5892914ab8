"""End-to-end chat scenarios over the websocket endpoint."""

from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketDisconnect
from sqlalchemy import func, select

from app.models import Message


def _chat_url(token: str) -> str:
    return f"/ws/chat?token={token}"


def test_rejects_missing_and_invalid_tokens(client):
    for url in ("/ws/chat", _chat_url("not-a-jwt")):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url):
                pass
        assert exc.value.code == 1008


def test_rejects_token_of_deleted_user(client, make_user, token_for, session_factory):
    ghost = make_user("ghost")
    token = token_for(ghost)
    with session_factory() as session:
        session.delete(session.get(type(ghost), ghost.id))
        session.commit()

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(_chat_url(token)):
            pass
    assert exc.value.code == 1008


def test_accepts_bearer_header(client, make_user, token_for):
    alice = make_user("alice")

    with client.websocket_connect(
        "/ws/chat", headers={"Authorization": f"Bearer {token_for(alice)}"}
    ) as ws:
        snapshot = ws.receive_json()

    assert snapshot == {"type": "online_users", "user_ids": [alice.id]}


def test_alice_message_reaches_both_bob_tabs(client, make_user, token_for, session_factory):
    alice = make_user("alice")
    bob = make_user("bob")

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        assert alice_ws.receive_json()["type"] == "online_users"

        with client.websocket_connect(_chat_url(token_for(bob))) as bob_tab_one:
            assert bob_tab_one.receive_json()["type"] == "online_users"
            presence = alice_ws.receive_json()
            assert presence["type"] == "presence_changed"
            assert presence["user_id"] == bob.id and presence["is_online"] is True

            with client.websocket_connect(_chat_url(token_for(bob))) as bob_tab_two:
                assert bob_tab_two.receive_json()["type"] == "online_users"

                alice_ws.send_json({"type": "send_message", "receiver_id": bob.id, "content": "hi"})

                ack = alice_ws.receive_json()
                assert ack["type"] == "message_sent"
                assert ack["status"] == "delivered"

                for tab in (bob_tab_one, bob_tab_two):
                    event = tab.receive_json()
                    assert event["type"] == "new_message"
                    assert event["message"]["content"] == "hi"
                    assert event["message"]["sender"]["id"] == alice.id
                    assert event["message"]["id"] == ack["message_id"]

                # Round trip a ping so any stray duplicate would be observed first.
                for tab in (bob_tab_one, bob_tab_two):
                    tab.send_json({"type": "ping"})
                    assert tab.receive_json() == {"type": "pong"}

            # Bob still has one tab open.
            alice_ws.send_json({"type": "ping"})
            assert alice_ws.receive_json() == {"type": "pong"}

        offline = alice_ws.receive_json()
        assert offline["type"] == "presence_changed"
        assert offline["user_id"] == bob.id and offline["is_online"] is False

    with session_factory() as session:
        assert session.execute(select(func.count(Message.id))).scalar_one() == 1


def test_unknown_receiver_yields_message_error_only(client, make_user, token_for, session_factory):
    alice = make_user("alice")

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        alice_ws.receive_json()
        alice_ws.send_json({"type": "send_message", "receiver_id": 424242, "content": "anyone?"})

        error = alice_ws.receive_json()

    assert error["type"] == "message_error"
    assert error["code"] == "receiver_not_found"
    with session_factory() as session:
        assert session.execute(select(func.count(Message.id))).scalar_one() == 0


def test_read_receipt_and_typing_flow(client, make_user, token_for):
    alice = make_user("alice")
    bob = make_user("bob")

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        alice_ws.receive_json()
        with client.websocket_connect(_chat_url(token_for(bob))) as bob_ws:
            bob_ws.receive_json()
            alice_ws.receive_json()

            alice_ws.send_json({"type": "typing_start", "receiver_id": bob.id})
            typing = bob_ws.receive_json()
            assert typing["type"] == "typing_changed" and typing["is_typing"] is True

            alice_ws.send_json({"type": "send_message", "receiver_id": bob.id, "content": "seen?"})
            ack = alice_ws.receive_json()
            incoming = bob_ws.receive_json()
            assert incoming["type"] == "new_message"

            bob_ws.send_json({"type": "mark_read", "message_id": ack["message_id"]})
            receipt = alice_ws.receive_json()

    assert receipt["type"] == "message_read"
    assert receipt["message_id"] == ack["message_id"]
    assert receipt["read_at"]


def test_conversation_room_join_and_leave(client, make_user, token_for):
    alice = make_user("alice")
    bob = make_user("bob")
    key = f"{alice.id}_{bob.id}"

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        alice_ws.receive_json()
        alice_ws.send_json({"type": "join_conversation", "conversation_key": key})
        assert alice_ws.receive_json() == {"type": "conversation_joined", "conversation_key": key}

        alice_ws.send_json({"type": "send_message", "receiver_id": bob.id, "content": "note to self"})
        echoed = alice_ws.receive_json()
        ack = alice_ws.receive_json()
        assert echoed["type"] == "new_message"
        assert ack["type"] == "message_sent" and ack["status"] == "sent"

        alice_ws.send_json({"type": "leave_conversation", "conversation_key": key})
        assert alice_ws.receive_json() == {"type": "conversation_left", "conversation_key": key}


def test_invalid_json_frame_reports_error(client, make_user, token_for):
    alice = make_user("alice")

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        alice_ws.receive_json()
        alice_ws.send_text("{not json")
        error = alice_ws.receive_json()

    assert error == {"type": "error", "detail": "Invalid message format"}


def test_http_send_reaches_live_socket(client, make_user, token_for, auth_headers):
    alice = make_user("alice")
    bob = make_user("bob")

    with client.websocket_connect(_chat_url(token_for(bob))) as bob_ws:
        bob_ws.receive_json()

        response = client.post(
            "/api/messages",
            json={"receiver_id": bob.id, "content": "over http"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 201

        event = bob_ws.receive_json()

    assert event["type"] == "new_message"
    assert event["message"]["id"] == response.json()["id"]
    assert event["message"]["content"] == "over http"


def test_binary_frame_reports_error_and_keeps_socket(client, make_user, token_for):
    alice = make_user("alice")

    with client.websocket_connect(_chat_url(token_for(alice))) as alice_ws:
        alice_ws.receive_json()
        alice_ws.send_bytes(b"\x00\x01")
        error = alice_ws.receive_json()
        alice_ws.send_json({"type": "ping"})
        pong = alice_ws.receive_json()

    assert error == {"type": "error", "detail": "Invalid message format"}
    assert pong == {"type": "pong"}
