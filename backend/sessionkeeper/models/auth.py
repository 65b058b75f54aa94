"""Authentication models: users and refresh token tracking.

Models used for storing user accounts and the hashes of issued refresh
tokens for revocation and rotation.
"""

import uuid
from datetime import datetime, timezone

from db.session import Base
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Database model representing an application user.

    Attributes:
        id: Opaque primary key.
        email: Unique, lowercased login email.
        username: Unique, lowercased handle.
        password_hash: bcrypt hash of the password.
        profile: JSON document with firstName/lastName/bio/avatarUrl.
        role: One of user, moderator, admin.
        status: One of active, suspended, deleted, banned.
        created_at: Account creation timestamp.
        updated_at: Last modification timestamp.
    """

    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String(254), nullable=False, unique=True, index=True)
    username = Column(String(30), nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    profile = Column(JSON, nullable=False, default=dict)
    role = Column(String(16), nullable=False, default="user")
    status = Column(String(16), nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class RefreshToken(Base):
    """Server-side state of one issued refresh token.

    Only the SHA-256 hash of the signed token is kept so a leaked table
    cannot be replayed. A record is valid while ``revoked_at`` is null and
    ``expires_at`` is in the future.

    Attributes:
        id: Primary key.
        user_id: Foreign key to `users.id`.
        token_hash: Hex SHA-256 of the signed refresh token.
        expires_at: Mirrors the token's ``exp`` claim.
        revoked_at: Set when the token was rotated or logged out.
        user_agent: Optional device descriptor.
        ip_address: Optional originating IP address.
        created_at: Record creation timestamp.
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (Index("ix_refresh_tokens_user_revoked", "user_id", "revoked_at"),)

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    # NOTE: Device/session tracking, carried over on every rotation
    user_agent = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
