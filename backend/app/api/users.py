"""User discovery endpoints: profiles, presence and email lookups."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from app.api.deps import get_current_user, get_realtime
from app.models import User
from app.schemas import OnlineUsersRead, PublicUser, UserExistsRead, UserInvite
from app.services.stores import DuplicateUserError, StoreError
from relay.realtime.events import MAX_ENTITY_ID
from relay.realtime.managers import RealtimeHub

router = APIRouter(prefix="/users", tags=["users"])


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get("/me", response_model=PublicUser)
def read_current_user(current_user: User = Depends(get_current_user)) -> PublicUser:
    """Return the profile of the authenticated user."""

    return PublicUser.model_validate(current_user)


@router.get("/online", response_model=OnlineUsersRead)
def list_online_users(
    _: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> OnlineUsersRead:
    return OnlineUsersRead(user_ids=hub.online_user_ids())


@router.get("/lookup", response_model=PublicUser)
def lookup_user_by_email(
    email: str = Query(..., min_length=3),
    _: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> PublicUser:
    """Find a user by email, ignoring case."""

    try:
        user = hub.users.get_by_email(email)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/exists", response_model=UserExistsRead)
def check_user_exists(
    email: str = Query(..., min_length=3),
    _: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> UserExistsRead:
    try:
        user = hub.users.get_by_email(email)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    return UserExistsRead(exists=user is not None, user=user)


@router.post("/invite", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
def invite_user(
    payload: UserInvite,
    _: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> PublicUser:
    """Create a user so that messages can be addressed to their email."""

    try:
        return hub.users.create(username=payload.username, email=payload.email)
    except DuplicateUserError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.get("/{user_id}", response_model=PublicUser)
def read_user(
    user_id: int = Path(..., gt=0, le=MAX_ENTITY_ID),
    _: User = Depends(get_current_user),
    hub: RealtimeHub = Depends(get_realtime),
) -> PublicUser:
    try:
        user = hub.users.get(user_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
