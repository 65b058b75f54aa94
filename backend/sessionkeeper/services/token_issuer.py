"""JWT issuance and verification for access and refresh tokens.

TOKEN TYPES:

- Access token: ``{userId, role, tokenType="access"}``, signed with the
  access secret, short lived, never persisted.
- Refresh token: ``{userId, tokenType="refresh", jti}``, signed with a
  separate refresh secret, long lived. Issuing one stores the SHA-256 hash
  of the signed string in the token record store; the raw token only ever
  goes back to the caller.

Two secrets keep a leaked access key from minting refresh tokens and the
other way round. The random ``jti`` keeps two refresh tokens minted for the
same user in the same second distinct, so their hashes never collide.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from core.circuit_breaker import CircuitBreaker
from core.errors import AuthInvalidError, InternalError
from core.logging import logger
from jwt.exceptions import InvalidTokenError
from schemas.auth import DeviceInfo, UserInDB
from services.stores.base import TokenRecordStore

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def hash_token(token: str) -> str:
    """Return the hex SHA-256 digest stored in place of a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    role: str


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    jti: str
    expires_at: datetime


class TokenIssuer:
    """Mint and verify signed tokens.

    Args:
        token_store: Store receiving a record for every refresh token.
        access_secret: Signing key for access tokens.
        refresh_secret: Signing key for refresh tokens.
        algorithm: JWT algorithm shared by both token types.
        access_ttl: Access token lifetime.
        refresh_ttl: Refresh token lifetime.
        store_breaker: Guard for the token store write. Signing stays
            outside it, so a signing fault never counts as a store failure.
    """

    def __init__(
        self,
        token_store: TokenRecordStore,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        store_breaker: Optional[CircuitBreaker] = None,
    ):
        self._token_store = token_store
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._store_breaker = store_breaker

    @classmethod
    def from_settings(
        cls,
        token_store: TokenRecordStore,
        settings,
        *,
        store_breaker: Optional[CircuitBreaker] = None,
    ) -> "TokenIssuer":
        return cls(
            token_store,
            store_breaker=store_breaker,
            access_secret=settings.JWT_ACCESS_SECRET,
            refresh_secret=settings.JWT_REFRESH_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    @property
    def access_expires_in(self) -> int:
        """Access token lifetime in seconds, as reported to clients."""
        return int(self.access_ttl.total_seconds())

    async def _store_call(self, func, *args: Any, **kwargs: Any) -> Any:
        if self._store_breaker is None:
            return await func(*args, **kwargs)
        return await self._store_breaker.call(func, *args, **kwargs)

    def _encode(self, claims: dict[str, Any], secret: str) -> str:
        try:
            return jwt.encode(claims, secret, algorithm=self._algorithm)
        except (TypeError, ValueError, jwt.PyJWTError) as exc:
            logger.error("Token signing failed: {}", type(exc).__name__)
            raise InternalError("Token signing failed") from exc

    def issue_access_token(self, user: UserInDB) -> str:
        """Create a short-lived access token carrying the user id and role."""
        now = datetime.now(timezone.utc)
        claims = {
            "userId": user.id,
            "role": user.role.value,
            "tokenType": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return self._encode(claims, self._access_secret)

    async def issue_refresh_token(
        self, user: UserInDB, device_info: Optional[DeviceInfo] = None
    ) -> str:
        """Create a refresh token and persist the hash of it.

        Args:
            user: Owner of the token.
            device_info: Client metadata stored alongside the hash.

        Returns:
            str: The signed refresh token. It is not stored anywhere.
        """
        now = datetime.now(timezone.utc)
        expires_at = now + self.refresh_ttl
        claims = {
            "userId": user.id,
            "tokenType": REFRESH_TOKEN_TYPE,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": expires_at,
        }
        token = self._encode(claims, self._refresh_secret)
        # NOTE: the stored expiry mirrors the exp claim, which JWT truncates
        # to whole seconds.
        await self._store_call(
            self._token_store.create,
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=expires_at.replace(microsecond=0),
            device_info=device_info,
        )
        logger.debug("Issued refresh token for user_id={}", user.id)
        return token

    def verify_refresh_signature(
        self, token: str, *, verify_exp: bool = True
    ) -> RefreshClaims:
        """Check signature, expiry and type of a refresh token.

        Args:
            token: Signed refresh token presented by the client.
            verify_exp: Set False to accept expired (but authentic) tokens.

        Raises:
            AuthInvalidError: If the token is forged, expired or not a
                refresh token.
        """
        try:
            payload = jwt.decode(
                token,
                self._refresh_secret,
                algorithms=[self._algorithm],
                options={"verify_exp": verify_exp, "require": ["exp", "userId"]},
            )
        except InvalidTokenError:
            raise AuthInvalidError("Invalid or expired refresh token") from None

        if payload.get("tokenType") != REFRESH_TOKEN_TYPE:
            raise AuthInvalidError("Invalid token type")
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise AuthInvalidError("Invalid or expired refresh token")
        return RefreshClaims(
            user_id=user_id,
            jti=str(payload.get("jti", "")),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

    def decode_access_token(self, token: str) -> AccessClaims:
        """Validate an access token and return its claims.

        Raises:
            AuthInvalidError: If the token is invalid, expired or not an
                access token.
        """
        try:
            payload = jwt.decode(
                token,
                self._access_secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "userId"]},
            )
        except InvalidTokenError:
            raise AuthInvalidError("Invalid or expired token") from None

        if payload.get("tokenType") != ACCESS_TOKEN_TYPE:
            raise AuthInvalidError("Invalid token type")
        return AccessClaims(user_id=payload["userId"], role=payload.get("role", "user"))
