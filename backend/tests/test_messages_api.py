"""HTTP message endpoints."""

from __future__ import annotations

import pytest


@pytest.fixture()
def alice(make_user):
    return make_user("alice", "Alice@Example.com")


@pytest.fixture()
def bob(make_user):
    return make_user("bob")


def _send(client, headers, receiver_id, content="hello", **extra):
    return client.post("/api/messages", json={"receiver_id": receiver_id, "content": content, **extra}, headers=headers)


def test_requires_authentication(client):
    assert client.get("/api/messages/conversations").status_code == 401


def test_send_message_returns_enriched_message(client, alice, bob, auth_headers):
    response = _send(client, auth_headers(alice), bob.id, "  hi bob  ")

    assert response.status_code == 201
    body = response.json()
    assert body["content"] == "hi bob"
    assert body["sender"]["username"] == "alice"
    assert body["receiver"]["id"] == bob.id
    assert body["conversation_key"] == f"{alice.id}_{bob.id}"
    assert body["is_read"] is False and body["read_at"] is None


@pytest.mark.parametrize(
    "payload,status_code",
    [
        ({"receiver_id": 999, "content": "x"}, 404),
        ({"content": "x", "reply_to_id": 999}, 404),
        ({"content": ""}, 400),
        ({"content": "x" * 1001}, 400),
        ({"content": "x", "kind": "sticker"}, 400),
    ],
)
def test_send_message_validation(client, alice, bob, auth_headers, payload, status_code):
    body = {"receiver_id": bob.id, **payload}

    response = client.post("/api/messages", json=body, headers=auth_headers(alice))

    assert response.status_code == status_code


def test_send_to_self_is_rejected(client, alice, auth_headers):
    response = _send(client, auth_headers(alice), alice.id)

    assert response.status_code == 400
    assert "yourself" in response.json()["detail"]


def test_send_by_email_is_case_insensitive(client, alice, bob, auth_headers):
    response = client.post(
        "/api/messages/by-email",
        json={"recipient_email": "ALICE@example.com", "content": "found you"},
        headers=auth_headers(bob),
    )

    assert response.status_code == 201
    assert response.json()["receiver_id"] == alice.id

    missing = client.post(
        "/api/messages/by-email",
        json={"recipient_email": "nobody@example.com", "content": "hello?"},
        headers=auth_headers(bob),
    )
    assert missing.status_code == 404


def test_history_is_paginated_oldest_first(client, alice, bob, auth_headers):
    for index in range(5):
        sender, receiver = (alice, bob) if index % 2 == 0 else (bob, alice)
        assert _send(client, auth_headers(sender), receiver.id, f"m{index}").status_code == 201

    first = client.get(f"/api/messages/history/{bob.id}?page=1&limit=2", headers=auth_headers(alice))
    last = client.get(f"/api/messages/history/{bob.id}?page=3&limit=2", headers=auth_headers(alice))

    assert first.status_code == 200
    assert [message["content"] for message in first.json()["messages"]] == ["m3", "m4"]
    assert first.json()["pagination"] == {
        "current_page": 1,
        "total_pages": 3,
        "total_messages": 5,
        "has_more": True,
    }
    assert [message["content"] for message in last.json()["messages"]] == ["m0"]
    assert last.json()["pagination"]["has_more"] is False


def test_history_limit_is_capped(client, alice, bob, auth_headers):
    response = client.get(f"/api/messages/history/{bob.id}?limit=1000", headers=auth_headers(alice))

    assert response.status_code == 200
    assert response.json()["pagination"]["total_pages"] == 0


def test_history_unknown_user(client, alice, auth_headers):
    assert client.get("/api/messages/history/999", headers=auth_headers(alice)).status_code == 404


def test_history_by_email_includes_other_user(client, alice, bob, auth_headers):
    _send(client, auth_headers(bob), alice.id, "by mail")

    response = client.get("/api/messages/by-email/alice@example.com", headers=auth_headers(bob))

    assert response.status_code == 200
    body = response.json()
    assert body["other_user"]["id"] == alice.id
    assert [message["content"] for message in body["messages"]] == ["by mail"]


def test_mark_read_only_by_receiver(client, alice, bob, auth_headers):
    message_id = _send(client, auth_headers(alice), bob.id).json()["id"]

    forbidden = client.put("/api/messages/read", json={"message_id": message_id}, headers=auth_headers(alice))
    missing = client.put("/api/messages/read", json={"message_id": 999}, headers=auth_headers(bob))
    allowed = client.put("/api/messages/read", json={"message_id": message_id}, headers=auth_headers(bob))

    assert forbidden.status_code == 403
    assert missing.status_code == 404
    assert allowed.status_code == 200
    assert allowed.json()["is_read"] is True
    assert allowed.json()["read_at"] is not None


def test_delete_only_by_sender(client, alice, bob, auth_headers):
    message_id = _send(client, auth_headers(alice), bob.id).json()["id"]

    assert client.delete(f"/api/messages/{message_id}", headers=auth_headers(bob)).status_code == 403
    assert client.delete(f"/api/messages/{message_id}", headers=auth_headers(alice)).status_code == 204
    assert client.delete(f"/api/messages/{message_id}", headers=auth_headers(alice)).status_code == 404


def test_conversations_read_model(client, alice, bob, make_user, auth_headers):
    carol = make_user("carol")
    _send(client, auth_headers(bob), alice.id, "from bob 1")
    _send(client, auth_headers(bob), alice.id, "from bob 2")
    _send(client, auth_headers(alice), carol.id, "to carol")

    response = client.get("/api/messages/conversations", headers=auth_headers(alice))

    assert response.status_code == 200
    conversations = response.json()
    assert [entry["user"]["username"] for entry in conversations] == ["carol", "bob"]
    assert conversations[0]["unread_count"] == 0
    assert conversations[1]["unread_count"] == 2
    assert conversations[1]["last_message"]["content"] == "from bob 2"
    assert conversations[1]["conversation_key"] == f"{alice.id}_{bob.id}"


def test_out_of_range_ids_are_rejected(client, alice, auth_headers):
    headers = auth_headers(alice)

    assert _send(client, headers, 2**70).status_code == 422
    assert client.put("/api/messages/read", json={"message_id": 2**70}, headers=headers).status_code == 422
    assert client.get(f"/api/messages/history/{2**70}", headers=headers).status_code == 422
    assert client.delete(f"/api/messages/{2**70}", headers=headers).status_code == 422
