"""In-process implementations of the credential and refresh token stores.

Used by the test-suite and when ``USE_MEMORY_STORE`` is set. All state lives
in dicts guarded by the single event loop: no method awaits between reading
and writing, so each operation is atomic with respect to other tasks, which
gives ``revoke_if_active`` the same compare-and-swap semantics as the SQL
conditional update.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from schemas.auth import (
    DeviceInfo,
    Profile,
    RefreshTokenRecord,
    UserInDB,
    UserRole,
    UserStatus,
)
from services.stores.base import DuplicateKeyError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryCredentialStore:
    def __init__(self) -> None:
        self._users: dict[str, UserInDB] = {}

    async def find_by_email_or_username(
        self, email: Optional[str], username: Optional[str]
    ) -> Optional[UserInDB]:
        email = email.strip().lower() if email else None
        username = username.strip().lower() if username else None
        for user in self._users.values():
            if (email and user.email == email) or (
                username and user.username == username
            ):
                return user.model_copy(deep=True)
        return None

    async def get_by_id(self, user_id: str) -> Optional[UserInDB]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def create(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        profile: Profile,
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> UserInDB:
        email = email.strip().lower()
        username = username.strip().lower()
        for existing in self._users.values():
            if existing.email == email:
                raise DuplicateKeyError("email")
            if existing.username == username:
                raise DuplicateKeyError("username")
        now = _utcnow()
        user = UserInDB(
            id=uuid.uuid4().hex,
            email=email,
            username=username,
            password_hash=password_hash,
            profile=profile.model_copy(),
            role=role,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self._users[user.id] = user
        return user.model_copy(deep=True)

    async def update_profile(
        self, user_id: str, changes: dict
    ) -> Optional[UserInDB]:
        user = self._users.get(user_id)
        if user is None:
            return None
        merged = {**user.profile.model_dump(by_alias=True), **changes}
        user.profile = Profile.model_validate(merged)
        user.updated_at = _utcnow()
        return user.model_copy(deep=True)

    async def set_status(
        self, user_id: str, status: UserStatus
    ) -> Optional[UserInDB]:
        user = self._users.get(user_id)
        if user is None:
            return None
        user.status = status
        user.updated_at = _utcnow()
        return user.model_copy(deep=True)

    async def ping(self) -> None:
        return None


class MemoryTokenRecordStore:
    def __init__(self) -> None:
        self._records: dict[str, RefreshTokenRecord] = {}

    async def create(
        self,
        *,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        device_info: Optional[DeviceInfo] = None,
    ) -> RefreshTokenRecord:
        if token_hash in self._records:
            raise DuplicateKeyError("token_hash")
        record = RefreshTokenRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            device_info=(device_info or DeviceInfo()).model_copy(),
            created_at=_utcnow(),
        )
        self._records[token_hash] = record
        return record.model_copy(deep=True)

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        record = self._records.get(token_hash)
        return record.model_copy(deep=True) if record else None

    async def find_valid_by_hash(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[RefreshTokenRecord]:
        record = self._records.get(token_hash)
        if record is None or not record.is_valid(now or _utcnow()):
            return None
        return record.model_copy(deep=True)

    async def revoke(self, token_hash: str) -> None:
        record = self._records.get(token_hash)
        if record is not None and record.revoked_at is None:
            record.revoked_at = _utcnow()

    async def revoke_if_active(self, token_hash: str) -> bool:
        record = self._records.get(token_hash)
        if record is None or record.revoked_at is not None:
            return False
        record.revoked_at = _utcnow()
        return True

    async def revoke_all_for_user(self, user_id: str) -> int:
        now = _utcnow()
        revoked = 0
        for record in self._records.values():
            if record.user_id == user_id and record.revoked_at is None:
                record.revoked_at = now
                revoked += 1
        return revoked

    async def count_active_for_user(self, user_id: str) -> int:
        now = _utcnow()
        return sum(
            1
            for record in self._records.values()
            if record.user_id == user_id and record.is_valid(now)
        )

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        expired = [h for h, r in self._records.items() if r.expires_at < now]
        for token_hash in expired:
            del self._records[token_hash]
        return len(expired)
