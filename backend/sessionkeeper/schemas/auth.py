"""Pydantic schemas for authentication.

Includes the internal user/refresh-record shapes returned by the stores,
the request bodies accepted by the auth routes and the response payloads.
JSON field names are camelCase; Python attributes stay snake_case.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRole(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"
    BANNED = "banned"


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting either spelling."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class Profile(CamelModel):
    """Optional personal details attached to a user."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None


class DeviceInfo(CamelModel):
    """Client metadata recorded with each refresh token."""

    user_agent: Optional[str] = None
    ip: Optional[str] = None


class UserInDB(CamelModel):
    """Internal user model including the password hash."""

    id: str
    email: str
    username: str
    password_hash: str
    profile: Profile = Field(default_factory=Profile)
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    normalize_timestamps = field_validator("created_at", "updated_at")(as_utc)

    @property
    def is_active(self) -> bool:
        return self.status is UserStatus.ACTIVE


class UserPublic(CamelModel):
    """Public user representation returned by the API (no password hash)."""

    id: str
    email: str
    username: str
    profile: Profile
    role: UserRole
    status: UserStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: UserInDB) -> "UserPublic":
        return cls.model_validate(user.model_dump(exclude={"password_hash"}))


class RefreshTokenRecord(CamelModel):
    """Server-side state of one issued refresh token."""

    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)
    created_at: Optional[datetime] = None

    normalize_timestamps = field_validator("expires_at", "revoked_at", "created_at")(as_utc)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.revoked_at is None and self.expires_at > now


class RegisterRequest(CamelModel):
    """Request body for creating a new account."""

    email: str = Field(max_length=254)
    username: str = Field(min_length=3, max_length=30)
    # bcrypt only looks at the first 72 bytes of a password
    password: str = Field(min_length=8, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("must be a valid email address")
        return value

    @field_validator("username")
    @classmethod
    def _username_alnum(cls, value: str) -> str:
        if not value.isascii() or not value.isalnum():
            raise ValueError("must only contain letters and digits")
        return value.lower()

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        if len(value.encode("utf-8")) > 72:
            raise ValueError("must be at most 72 bytes")
        checks = (
            (r"[A-Z]", "an uppercase letter"),
            (r"[a-z]", "a lowercase letter"),
            (r"[0-9]", "a digit"),
            (r"[^A-Za-z0-9]", "a symbol"),
        )
        for pattern, label in checks:
            if not re.search(pattern, value):
                raise ValueError(f"must contain {label}")
        return value


class LoginRequest(CamelModel):
    """Request body for logging in with an email or username."""

    identifier: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=8, max_length=128)


class TokenRefresh(CamelModel):
    """Optional request body carrying a refresh token when no cookie is sent."""

    refresh_token: Optional[str] = None


class AccessToken(CamelModel):
    """Access token handed to the client; the refresh token travels in a cookie."""

    access_token: str
    expires_in: int


class AuthPayload(CamelModel):
    user: UserPublic
    tokens: AccessToken


class MessageResponse(CamelModel):
    message: str
