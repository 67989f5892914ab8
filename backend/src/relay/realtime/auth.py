"""Connection authenticator for realtime sockets."""

from __future__ import annotations

import logging

from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool

from app.core.security import decode_access_token, subject_user_id
from app.schemas import PublicUser
from app.services.stores import StoreError, UserStore

from .errors import AuthenticationFailure

logger = logging.getLogger(__name__)


async def authenticate(token: str | None, users: UserStore) -> PublicUser:
    """Resolve ``token`` to an existing user or raise :class:`AuthenticationFailure`.

    The user lookup is the only suspension point.
    """

    if not token:
        raise AuthenticationFailure("Missing token")

    try:
        payload = decode_access_token(token)
    except HTTPException as exc:
        raise AuthenticationFailure(str(exc.detail)) from exc

    user_id = subject_user_id(payload)
    if user_id is None:
        raise AuthenticationFailure("Could not validate credentials")

    try:
        user = await run_in_threadpool(users.get, user_id)
    except StoreError as exc:
        logger.exception("User lookup failed during socket authentication")
        raise AuthenticationFailure("Could not validate credentials") from exc

    if user is None:
        raise AuthenticationFailure("User no longer exists")
    return user
