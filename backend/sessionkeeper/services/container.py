"""Explicit wiring of stores, cache and services.

``build_services`` picks the SQL or in-memory stores and the Redis or
in-memory cache from settings and hands every collaborator to its consumer
through the constructor. The resulting :class:`AppServices` is attached to
``app.state`` by the application factory.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from core.circuit_breaker import BreakerFactory
from core.errors import ErrorCode
from core.logging import logger
from db.session import create_engine, create_sessionmaker, initialize_database
from services.cache import CACHE, Cache, FailOpenCache, MemoryCache, RedisCache
from services.password_hasher import PasswordHasher
from services.profile_service import ProfileService
from services.rate_limiter import RateLimiter
from services.session_manager import CREDENTIAL_STORE, TOKEN_STORE, SessionManager
from services.stores.base import CredentialStore, DuplicateKeyError, TokenRecordStore
from services.stores.memory_store import MemoryCredentialStore, MemoryTokenRecordStore
from services.stores.sql_store import SqlCredentialStore, SqlTokenRecordStore
from services.token_issuer import TokenIssuer


@dataclass
class AppServices:
    """Everything the HTTP layer needs, built once per application."""

    settings: Any
    credential_store: CredentialStore
    token_store: TokenRecordStore
    cache: Cache
    breakers: BreakerFactory
    issuer: TokenIssuer
    session_manager: SessionManager
    profile_service: ProfileService
    login_limiter: RateLimiter
    register_limiter: RateLimiter
    global_limiter: RateLimiter
    startup: Optional[Callable[[], Awaitable[None]]] = None
    shutdown_hooks: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def storage_ping(self) -> None:
        await self.credential_store.ping()

    async def close(self) -> None:
        for hook in self.shutdown_hooks:
            await hook()
        await self.cache.close()


def assemble_services(
    settings,
    *,
    credential_store: CredentialStore,
    token_store: TokenRecordStore,
    cache: Cache,
    hasher: Optional[PasswordHasher] = None,
    clock: Callable[[], float] = time.monotonic,
) -> AppServices:
    """Wire services around already constructed stores and cache."""
    breakers = BreakerFactory.from_settings(
        settings, ignored_exceptions=(DuplicateKeyError,), clock=clock
    )
    hasher = hasher or PasswordHasher(rounds=settings.BCRYPT_ROUNDS)
    issuer = TokenIssuer.from_settings(
        token_store, settings, store_breaker=breakers.get(TOKEN_STORE)
    )
    guarded_cache = FailOpenCache(cache, breakers.get(CACHE))
    session_manager = SessionManager(
        credential_store=credential_store,
        token_store=token_store,
        hasher=hasher,
        issuer=issuer,
        breakers=breakers,
    )
    profile_service = ProfileService(
        credential_store,
        guarded_cache,
        breakers.get(CREDENTIAL_STORE),
        ttl_seconds=settings.PROFILE_CACHE_TTL_SECONDS,
    )
    login_limiter = RateLimiter(
        guarded_cache,
        "login",
        limit=settings.LOGIN_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS,
        code=ErrorCode.RATE_LIMIT_LOGIN,
        message="Too many login attempts, please try again later",
    )
    register_limiter = RateLimiter(
        guarded_cache,
        "register",
        limit=settings.REGISTER_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.REGISTER_RATE_LIMIT_WINDOW_SECONDS,
        code=ErrorCode.RATE_LIMIT_REGISTRATION,
        message="Too many registration attempts, please try again later",
    )
    global_limiter = RateLimiter(
        guarded_cache,
        "global",
        limit=settings.GLOBAL_RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.GLOBAL_RATE_LIMIT_WINDOW_SECONDS,
    )
    return AppServices(
        settings=settings,
        credential_store=credential_store,
        token_store=token_store,
        cache=cache,
        breakers=breakers,
        issuer=issuer,
        session_manager=session_manager,
        profile_service=profile_service,
        login_limiter=login_limiter,
        register_limiter=register_limiter,
        global_limiter=global_limiter,
    )


def build_memory_services(settings, **kwargs: Any) -> AppServices:
    """Services backed entirely by process memory."""
    return assemble_services(
        settings,
        credential_store=MemoryCredentialStore(),
        token_store=MemoryTokenRecordStore(),
        cache=MemoryCache(),
        **kwargs,
    )


def build_services(settings) -> AppServices:
    """Services for a running deployment, chosen from settings."""
    cache: Cache
    if settings.REDIS_URL:
        cache = RedisCache(settings.REDIS_URL)
        logger.info("Using Redis cache")
    else:
        cache = MemoryCache()
        logger.warning("REDIS_URL not set, using in-process cache")

    if settings.USE_MEMORY_STORE:
        logger.warning("USE_MEMORY_STORE set, accounts will not survive restarts")
        return assemble_services(
            settings,
            credential_store=MemoryCredentialStore(),
            token_store=MemoryTokenRecordStore(),
            cache=cache,
        )

    engine = create_engine(settings.DATABASE_URL_ASYNC)
    session_factory = create_sessionmaker(engine)
    services = assemble_services(
        settings,
        credential_store=SqlCredentialStore(session_factory),
        token_store=SqlTokenRecordStore(session_factory),
        cache=cache,
    )

    async def startup() -> None:
        await initialize_database(engine)

    services.startup = startup
    services.shutdown_hooks.append(engine.dispose)
    return services
