"""Profile retrieval and update with a cache-aside projection."""

from core.circuit_breaker import CircuitBreaker
from core.errors import NotFoundError
from core.logging import logger
from schemas.auth import UserPublic, UserStatus
from schemas.users import ProfileChanges
from services.cache import Cache
from services.stores.base import CredentialStore


def profile_cache_key(user_id: str) -> str:
    return f"user:profile:{user_id}"


class ProfileService:
    """Read and update the public projection of a user.

    Args:
        credential_store: User persistence.
        cache: Cache holding serialized ``UserPublic`` projections.
        breaker: Guard for credential store calls.
        ttl_seconds: Lifetime of a cached projection.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        cache: Cache,
        breaker: CircuitBreaker,
        *,
        ttl_seconds: int = 300,
    ):
        self._users = credential_store
        self._cache = cache
        self._breaker = breaker
        self.ttl_seconds = ttl_seconds

    async def get_profile(self, user_id: str) -> UserPublic:
        """Return the user's public projection, from cache when possible.

        Raises:
            NotFoundError: If the user does not exist or is deleted.
        """
        key = profile_cache_key(user_id)
        cached = await self._cache.get_json(key)
        if cached is not None:
            logger.debug("Profile cache hit user_id={}", user_id)
            return UserPublic.model_validate(cached)

        user = await self._breaker.call(self._users.get_by_id, user_id)
        if user is None or user.status is UserStatus.DELETED:
            raise NotFoundError("User")

        public = UserPublic.from_user(user)
        await self._cache.set_json(
            key, public.model_dump(by_alias=True, mode="json"), self.ttl_seconds
        )
        logger.info("User retrieved user_id={}", user_id)
        return public

    async def update_profile(self, user_id: str, changes: ProfileChanges) -> UserPublic:
        """Apply a partial profile update and drop the cached projection.

        Raises:
            NotFoundError: If the user does not exist or is deleted.
        """
        current = await self._breaker.call(self._users.get_by_id, user_id)
        if current is None or current.status is UserStatus.DELETED:
            raise NotFoundError("User")

        patch = changes.model_dump(by_alias=True, exclude_unset=True)
        user = await self._breaker.call(self._users.update_profile, user_id, patch)
        if user is None:
            raise NotFoundError("User")

        await self._cache.delete(profile_cache_key(user_id))
        logger.info("User profile updated user_id={}", user_id)
        return UserPublic.from_user(user)
