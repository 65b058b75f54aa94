"""FastAPI application entrypoint for the session-keeper backend.

``create_app`` sets up middleware, error handlers and routes. Every request
counts against a per-IP budget and is cut off with 408 once it runs past
the request timeout. Its lifespan builds the service container from
settings (unless one was injected), initializes storage, runs the
expired-token purge in the background, and releases connections on
shutdown.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager, suppress
from typing import Optional

import uvicorn
from api.error_handling import app_error_response, register_exception_handlers
from api.routes.auth import router as auth_router
from api.routes.health import router as health_router
from api.routes.users import router as users_router
from config.config import settings
from core.auth_helper import get_client_ip
from core.errors import RateLimitedError, RequestTimeoutError
from core.logging import logger
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from services.container import AppServices, build_services
from services.token_cleanup import run_token_cleanup

API_PREFIX = "/api/v1"
CORRELATION_HEADER = "X-Correlation-ID"


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built container (tests inject memory-backed ones).
            When omitted, the lifespan builds one from ``settings``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup and shutdown routines around the serving period.

        Yields:
            None: Control is returned to FastAPI while the app is running.
        """
        logger.info("Starting up")
        app_services = services or build_services(settings)
        app.state.services = app_services
        if app_services.startup is not None:
            await app_services.startup()

        cleanup = asyncio.create_task(
            run_token_cleanup(
                app_services.token_store,
                app_services.settings.TOKEN_CLEANUP_INTERVAL_SECONDS,
            )
        )

        yield

        logger.info("Shutting down")
        cleanup.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup
        await app_services.close()

    app = FastAPI(title="Session Keeper", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def request_timeout(request: Request, call_next):
        """Answer 408 when a request outlives ``REQUEST_TIMEOUT_SECONDS``."""
        timeout = request.app.state.services.settings.REQUEST_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(call_next(request), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "{} {} timed out after {}s", request.method, request.url.path, timeout
            )
            return app_error_response(RequestTimeoutError())

    @app.middleware("http")
    async def global_rate_limit(request: Request, call_next):
        """Count every request against the per-IP budget."""
        limiter = request.app.state.services.global_limiter
        try:
            await limiter.hit(get_client_ip(request) or "unknown")
        except RateLimitedError as exc:
            return app_error_response(exc)
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id(request: Request, call_next):
        """Tag every log record of a request with its correlation id."""
        cid = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        with logger.contextualize(correlation_id=cid):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = cid
        return response

    register_exception_handlers(app)

    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(health_router, prefix=API_PREFIX)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
