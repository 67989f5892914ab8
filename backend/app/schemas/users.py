"""Schemas related to user profiles and lookups."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, constr, field_validator


class PublicUser(BaseModel):
    """Public-facing user information attached to messages and lookups."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    avatar_url: str | None = None
    is_online: bool = False
    last_seen: datetime | None = None


class UserInvite(BaseModel):
    """Payload for creating a user addressed by email (invitation flow)."""

    email: EmailStr = Field(..., description="Email of the invited user")
    username: constr(min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_]+$") = Field(
        ..., description="Letters, digits and underscores only"
    )

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class UserExistsRead(BaseModel):
    """Result of an existence check by email."""

    exists: bool
    user: PublicUser | None = None


class OnlineUsersRead(BaseModel):
    """Identifiers of users holding at least one live connection."""

    user_ids: list[int] = Field(default_factory=list)
