"""Adaptive password hashing on top of pwdlib's bcrypt hasher.

bcrypt is CPU bound; both operations run in a worker thread to
keep the event loop free for other requests.
"""

import asyncio
import secrets
from typing import Optional

from core.errors import InternalError
from core.logging import logger
from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError
from pwdlib.hashers.bcrypt import BcryptHasher


class PasswordHasher:
    """Hash and verify passwords with a configurable bcrypt cost factor.

    Args:
        rounds: bcrypt log2 cost factor (12 in production, 4 in tests).
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._password_hash = PasswordHash((BcryptHasher(rounds=rounds),))
        self._dummy_hash: Optional[str] = None

    def hash_sync(self, password: str) -> str:
        try:
            return self._password_hash.hash(password)
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: {}", type(exc).__name__)
            raise InternalError("Password hashing failed") from exc

    def verify_sync(self, password: str, hashed_password: str) -> bool:
        try:
            return self._password_hash.verify(password, hashed_password)
        except (UnknownHashError, ValueError, TypeError):
            # NOTE: malformed stored hashes are a mismatch, never an error
            logger.warning("Password verification against malformed hash")
            return False

    async def hash(self, password: str) -> str:
        """Return the bcrypt hash (``$2b$<cost>$<salt+digest>``) of ``password``.

        Raises:
            InternalError: If the hashing engine fails.
        """
        return await asyncio.to_thread(self.hash_sync, password)

    async def verify(self, password: str, hashed_password: str) -> bool:
        """Return True when ``password`` matches ``hashed_password``.

        The comparison is constant time inside bcrypt; malformed hashes give
        False instead of raising.
        """
        return await asyncio.to_thread(self.verify_sync, password, hashed_password)

    async def verify_dummy(self, password: str) -> None:
        """Spend one verification against a throwaway hash of the same cost.

        Used when there is no stored hash to compare with, so the caller's
        response time does not depend on whether the account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = await self.hash(secrets.token_urlsafe(16))
        await self.verify(password, self._dummy_hash)
