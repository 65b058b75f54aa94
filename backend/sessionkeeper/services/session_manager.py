"""Session lifecycle: register, login, refresh (with rotation) and logout.

SESSION FLOW:

1. REGISTER / LOGIN:
   - Credentials are checked against the credential store
   - An access token (stateless) and a refresh token (hash persisted in the
     token record store) are issued

2. REFRESH:
   - The refresh token must carry a valid signature, be of type "refresh",
     and its hash must match a record that is neither revoked nor expired
   - The owning user must still be active
   - The matched record is revoked with a compare-and-swap before a new
     pair is issued, so each refresh token works exactly once; a concurrent
     second use loses the swap and is rejected
   - Device metadata of the old record is carried to the new one

3. LOGOUT:
   - Revoke the record matching the presented token; unknown or already
     revoked hashes are accepted silently

State lives only in the stores (user status, record revocation) and in the
bearer tokens held by clients; the manager itself is stateless and safe to
share between concurrent requests.
"""

from dataclasses import dataclass
from typing import Optional

from core.circuit_breaker import BreakerFactory
from core.errors import (
    AppError,
    AuthForbiddenError,
    AuthInvalidError,
    AuthRequiredError,
    ConflictError,
    InternalError,
)
from core.logging import logger, token_fingerprint
from schemas.auth import DeviceInfo, Profile, UserInDB, UserRole, UserStatus
from services.password_hasher import PasswordHasher
from services.stores.base import CredentialStore, DuplicateKeyError, TokenRecordStore
from services.token_issuer import TokenIssuer, hash_token

CREDENTIAL_STORE = "credential-store"
TOKEN_STORE = "token-store"


@dataclass
class AuthResult:
    """Outcome of register, login and refresh."""

    user: UserInDB
    access_token: str
    refresh_token: str
    expires_in: int


class SessionManager:
    """Orchestrates the credential and token lifecycle.

    Args:
        credential_store: User persistence.
        token_store: Refresh token record persistence.
        hasher: Password hasher.
        issuer: Token issuer (writes to ``token_store`` on refresh issuance).
        breakers: Factory for the guarded-call wrappers around both stores.
    """

    def __init__(
        self,
        *,
        credential_store: CredentialStore,
        token_store: TokenRecordStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        breakers: BreakerFactory,
    ):
        self._users = credential_store
        self._tokens = token_store
        self._hasher = hasher
        self._issuer = issuer
        self._user_breaker = breakers.get(CREDENTIAL_STORE)
        self._token_breaker = breakers.get(TOKEN_STORE)

    async def register(
        self,
        *,
        email: str,
        username: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        device_info: Optional[DeviceInfo] = None,
    ) -> AuthResult:
        """Create an active account and open its first session.

        Raises:
            ConflictError: If the email or username is already taken; the
                ``field`` attribute names which one.
        """
        email = email.strip().lower()
        username = username.strip().lower()

        existing = await self._user_breaker.call(
            self._users.find_by_email_or_username, email, username
        )
        if existing:
            field = "email" if existing.email == email else "username"
            logger.info("Registration rejected, {} already in use", field)
            raise ConflictError(field)

        password_hash = await self._hasher.hash(password)
        try:
            user = await self._user_breaker.call(
                self._users.create,
                email=email,
                username=username,
                password_hash=password_hash,
                profile=Profile(first_name=first_name, last_name=last_name),
                role=UserRole.USER,
                status=UserStatus.ACTIVE,
            )
        except DuplicateKeyError as exc:
            # NOTE: lost a race against a concurrent registration
            raise ConflictError(exc.field) from None

        logger.info("User registered user_id={}", user.id)
        return await self._open_session(user, device_info)

    async def login(
        self,
        identifier: str,
        password: str,
        device_info: Optional[DeviceInfo] = None,
    ) -> AuthResult:
        """Authenticate by email or username and open a session.

        Raises:
            AuthInvalidError: Unknown identifier or wrong password; both
                produce the same message.
            AuthForbiddenError: The account exists but is not active.
        """
        identifier = identifier.strip().lower()
        user = await self._user_breaker.call(
            self._users.find_by_email_or_username, identifier, identifier
        )
        if user is None:
            # NOTE: burn one bcrypt verification so unknown accounts take as
            # long as wrong passwords
            await self._hasher.verify_dummy(password)
            logger.info("Login failed: unknown identifier")
            raise AuthInvalidError()
        if not user.is_active:
            logger.info(
                "Login refused for user_id={} status={}", user.id, user.status.value
            )
            raise AuthForbiddenError("Account is not active")
        if not await self._hasher.verify(password, user.password_hash):
            logger.info("Login failed: bad password for user_id={}", user.id)
            raise AuthInvalidError()

        logger.info("User logged in user_id={}", user.id)
        return await self._open_session(user, device_info)

    async def refresh_tokens(self, refresh_token: Optional[str]) -> AuthResult:
        """Exchange a refresh token for a new access/refresh pair.

        Raises:
            AuthRequiredError: No token presented.
            AuthInvalidError: Bad signature, wrong type, expired, revoked,
                unknown, or already used by a concurrent refresh.
            AuthForbiddenError: Owner missing or not active.
        """
        if not refresh_token:
            raise AuthRequiredError("Refresh token missing")

        claims = self._issuer.verify_refresh_signature(refresh_token)
        token_hash = hash_token(refresh_token)

        record = await self._token_breaker.call(
            self._tokens.find_valid_by_hash, token_hash
        )
        if record is None or record.user_id != claims.user_id:
            logger.warning(
                "Refresh rejected, token revoked or expired fp={}",
                token_fingerprint(refresh_token),
            )
            raise AuthInvalidError("Refresh token revoked or expired")

        user = await self._user_breaker.call(self._users.get_by_id, record.user_id)
        if user is None or not user.is_active:
            raise AuthForbiddenError("User not found or inactive")

        rotated = await self._token_breaker.call(
            self._tokens.revoke_if_active, token_hash
        )
        if not rotated:
            logger.warning(
                "Refresh rejected, token already used fp={}",
                token_fingerprint(refresh_token),
            )
            raise AuthInvalidError("Refresh token revoked or expired")

        logger.info("Rotated refresh token for user_id={}", user.id)
        return await self._open_session(user, record.device_info)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the session behind ``refresh_token``.

        Expired tokens are still accepted as long as the signature is
        authentic, and revoking an unknown or already revoked token succeeds.

        Raises:
            AuthRequiredError: No token presented.
            AuthInvalidError: Forged or non-refresh token.
        """
        if not refresh_token:
            raise AuthRequiredError("Refresh token missing")
        claims = self._issuer.verify_refresh_signature(refresh_token, verify_exp=False)
        try:
            await self._token_breaker.call(
                self._tokens.revoke, hash_token(refresh_token)
            )
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Logout failed for user_id={}", claims.user_id)
            raise InternalError("Logout failed") from exc
        logger.info("User logged out user_id={}", claims.user_id)

    async def logout_all(self, user_id: str) -> int:
        """Revoke every active refresh token of ``user_id``; returns the count."""
        revoked = await self._token_breaker.call(
            self._tokens.revoke_all_for_user, user_id
        )
        logger.info("Revoked {} refresh tokens for user_id={}", revoked, user_id)
        return revoked

    async def _open_session(
        self, user: UserInDB, device_info: Optional[DeviceInfo]
    ) -> AuthResult:
        access_token = self._issuer.issue_access_token(user)
        refresh_token = await self._issuer.issue_refresh_token(user, device_info)
        return AuthResult(
            user=user,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._issuer.access_expires_in,
        )
