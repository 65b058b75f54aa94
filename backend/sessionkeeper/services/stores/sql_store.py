"""SQLAlchemy-backed credential and refresh token stores.

Each method opens its own session from the injected sessionmaker and
returns pydantic values (``UserInDB``/``RefreshTokenRecord``) so ORM objects
never leak past the store boundary.
"""

from datetime import datetime, timezone
from typing import Optional

from core.logging import logger
from models.auth import RefreshToken as RefreshTokenModel
from models.auth import User as UserModel
from schemas.auth import (
    DeviceInfo,
    Profile,
    RefreshTokenRecord,
    UserInDB,
    UserRole,
    UserStatus,
)
from services.stores.base import DuplicateKeyError
from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_record(row: RefreshTokenModel) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        device_info=DeviceInfo(user_agent=row.user_agent, ip=row.ip_address),
        created_at=row.created_at,
    )


class SqlCredentialStore:
    """Persist user accounts in the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_email_or_username(
        self, email: Optional[str], username: Optional[str]
    ) -> Optional[UserInDB]:
        """Return the first user whose email or username matches.

        Both values are compared lowercased; either may be None.
        """
        clauses = []
        if email:
            clauses.append(UserModel.email == email.strip().lower())
        if username:
            clauses.append(UserModel.username == username.strip().lower())
        if not clauses:
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(UserModel).filter(or_(*clauses)))
            user = result.scalars().first()
            if user:
                return UserInDB.model_validate(user)
        return None

    async def get_by_id(self, user_id: str) -> Optional[UserInDB]:
        async with self._session_factory() as db:
            user = await db.get(UserModel, user_id)
            if user:
                return UserInDB.model_validate(user)
        return None

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
        """Insert a user.

        Raises:
            DuplicateKeyError: If the email or username index rejects the row.
        """
        email = email.strip().lower()
        username = username.strip().lower()
        async with self._session_factory() as db:
            user = UserModel(
                email=email,
                username=username,
                password_hash=password_hash,
                profile=profile.model_dump(by_alias=True, exclude_none=True),
                role=role.value,
                status=status.value,
            )
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                # NOTE: the driver message format differs per database, so
                # find out which unique field lost the race by looking it up.
                taken = await db.execute(
                    select(UserModel.id).filter(UserModel.email == email)
                )
                field = "email" if taken.first() else "username"
                logger.info("Rejected duplicate {} on user insert", field)
                raise DuplicateKeyError(field) from None
            logger.debug("Inserted user id={}", user.id)
            return UserInDB.model_validate(user)

    async def update_profile(
        self, user_id: str, changes: dict
    ) -> Optional[UserInDB]:
        """Merge ``changes`` (camelCase profile keys) into the stored profile."""
        async with self._session_factory() as db:
            user = await db.get(UserModel, user_id)
            if user is None:
                return None
            # NOTE: assign a new dict so the JSON column change is detected
            user.profile = {**(user.profile or {}), **changes}
            user.updated_at = _utcnow()
            await db.commit()
            return UserInDB.model_validate(user)

    async def set_status(
        self, user_id: str, status: UserStatus
    ) -> Optional[UserInDB]:
        async with self._session_factory() as db:
            user = await db.get(UserModel, user_id)
            if user is None:
                return None
            user.status = status.value
            user.updated_at = _utcnow()
            await db.commit()
            logger.info("User id={} status set to {}", user_id, status.value)
            return UserInDB.model_validate(user)

    async def ping(self) -> None:
        async with self._session_factory() as db:
            await db.execute(text("SELECT 1"))


class SqlTokenRecordStore:
    """Persist refresh token hashes in the ``refresh_tokens`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        *,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
        device_info: Optional[DeviceInfo] = None,
    ) -> RefreshTokenRecord:
        """Insert a refresh token record.

        Raises:
            DuplicateKeyError: If ``token_hash`` already exists.
        """
        device_info = device_info or DeviceInfo()
        async with self._session_factory() as db:
            row = RefreshTokenModel(
                user_id=user_id,
                token_hash=token_hash,
                expires_at=expires_at,
                user_agent=device_info.user_agent,
                ip_address=device_info.ip,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise DuplicateKeyError("token_hash") from None
            return _to_record(row)

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokenModel).filter(
                    RefreshTokenModel.token_hash == token_hash
                )
            )
            row = result.scalars().first()
            return _to_record(row) if row else None

    async def find_valid_by_hash(
        self, token_hash: str, now: Optional[datetime] = None
    ) -> Optional[RefreshTokenRecord]:
        """Return the record only if it is neither revoked nor expired."""
        now = now or _utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(RefreshTokenModel).filter(
                    RefreshTokenModel.token_hash == token_hash,
                    RefreshTokenModel.revoked_at.is_(None),
                    RefreshTokenModel.expires_at > now,
                )
            )
            row = result.scalars().first()
            return _to_record(row) if row else None

    async def revoke(self, token_hash: str) -> None:
        """Mark the record revoked; unknown or already revoked hashes are a no-op."""
        async with self._session_factory() as db:
            await db.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.token_hash == token_hash,
                    RefreshTokenModel.revoked_at.is_(None),
                )
                .values(revoked_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()

    async def revoke_if_active(self, token_hash: str) -> bool:
        """Revoke the record only if it is not revoked yet.

        The guard on ``revoked_at IS NULL`` makes this a single-row
        compare-and-swap: of several concurrent callers exactly one sees
        ``True``.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.token_hash == token_hash,
                    RefreshTokenModel.revoked_at.is_(None),
                )
                .values(revoked_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def revoke_all_for_user(self, user_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                update(RefreshTokenModel)
                .where(
                    RefreshTokenModel.user_id == user_id,
                    RefreshTokenModel.revoked_at.is_(None),
                )
                .values(revoked_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount

    async def count_active_for_user(self, user_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(RefreshTokenModel)
                .filter(
                    RefreshTokenModel.user_id == user_id,
                    RefreshTokenModel.revoked_at.is_(None),
                    RefreshTokenModel.expires_at > _utcnow(),
                )
            )
            return result.scalar_one()

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Physically delete every record past its expiry, revoked or not."""
        now = now or _utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                delete(RefreshTokenModel)
                .where(RefreshTokenModel.expires_at < now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount
