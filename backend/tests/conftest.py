"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

from app import database
from app.core.security import create_access_token
from app.main import app
from app.models import Base, User
from app.services.stores import MessageStore, UserStore


class DummyWebSocket:
    """Websocket stand-in that records every JSON payload sent to it."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("type") == event_type]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def user_store(session_factory) -> UserStore:
    return UserStore(session_factory)


@pytest.fixture()
def message_store(session_factory) -> MessageStore:
    return MessageStore(session_factory)


@pytest.fixture()
def make_user(session_factory) -> Callable[..., User]:
    """Create and persist a user, returning the detached row."""

    def factory(username: str, email: str | None = None) -> User:
        with session_factory() as session:
            user = User(username=username, email=email or f"{username}@example.com")
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    return factory


@pytest.fixture()
def token_for() -> Callable[[User], str]:
    def factory(user: User) -> str:
        return create_access_token({"sub": str(user.id)})

    return factory


@pytest.fixture()
def auth_headers(token_for) -> Callable[[User], dict[str, str]]:
    def factory(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return factory


@pytest.fixture()
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient whose stores and sessions use the test engine."""

    monkeypatch.setattr(database, "SessionLocal", session_factory)
    with TestClient(app) as test_client:
        yield test_client
