"""Store interfaces used by the session manager and profile service.

Stores are passive persistence: they validate nothing beyond their unique
indexes and never decide auth outcomes. Both interfaces have a SQLAlchemy
implementation (``sql_store``) and an in-process one (``memory_store``).
"""

from datetime import datetime
from typing import Optional, Protocol

from schemas.auth import (
    DeviceInfo,
    Profile,
    RefreshTokenRecord,
    UserInDB,
    UserRole,
    UserStatus,
)


class DuplicateKeyError(Exception):
    """A unique index rejected a write.

    Attributes:
        field: Name of the conflicting field (``email``, ``username`` or
            ``token_hash``).
    """

    def __init__(self, field: str) -> None:
        super().__init__(f"duplicate value for {field}")
        self.field = field


class CredentialStore(Protocol):
    async def find_by_email_or_username(
        self, email: Optional[str], username: Optional[str]
    ) -> Optional[UserInDB]: ...

    async def get_by_id(self, user_id: str) -> Optional[UserInDB]: ...

    async def create(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        profile: Profile,
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> UserInDB: ...

    async def update_profile(
        self, user_id: str, changes: dict
    ) -> Optional[UserInDB]: ...

    async def set_status(
        self, user_id: str, status: UserStatus
    ) -> Optional[UserInDB]: ...

    async def ping(self) -> None: ...


class TokenRecordStore(Protocol):
    async def create(
        self,
        *,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        device_info: Optional[DeviceInfo] = None,
    ) -> RefreshTokenRecord: ...

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]: ...

    async def find_valid_by_hash(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[RefreshTokenRecord]: ...

    async def revoke(self, token_hash: str) -> None: ...

    async def revoke_if_active(self, token_hash: str) -> bool: ...

    async def revoke_all_for_user(self, user_id: str) -> int: ...

    async def count_active_for_user(self, user_id: str) -> int: ...

    async def delete_expired(self, now: Optional[datetime] = None) -> int: ...
