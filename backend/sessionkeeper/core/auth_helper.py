"""Request-level authentication helpers for the FastAPI routes.

- ``get_services``: resolve the service container attached to the app.
- ``get_current_user``: validate the ``Authorization: Bearer`` access token.
- ``get_device_info`` / ``get_client_ip``: client metadata recorded with
  each refresh token.
- ``set_refresh_cookie`` / ``clear_refresh_cookie``: the refresh token
  travels in an HttpOnly, same-site strict cookie so page scripts never see
  it.
"""

from typing import Annotated, Optional

from core.errors import AuthRequiredError
from core.logging import logger
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from schemas.auth import DeviceInfo
from services.container import AppServices
from services.token_issuer import AccessClaims

REFRESH_COOKIE_NAME = "refreshToken"

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> AppServices:
    """Return the :class:`AppServices` built for this application."""
    return request.app.state.services


async def get_current_user(
    services: Annotated[AppServices, Depends(get_services)],
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)
    ],
) -> AccessClaims:
    """Validate the access token and return its claims.

    Only accepts access tokens (tokenType="access").

    Raises:
        AuthRequiredError: If no bearer token was sent.
        AuthInvalidError: If the token is invalid or expired.
    """
    if credentials is None or not credentials.credentials:
        raise AuthRequiredError()
    claims = services.issuer.decode_access_token(credentials.credentials)
    logger.debug("Access token accepted for user_id={}", claims.user_id)
    return claims


def get_client_ip(request: Request) -> Optional[str]:
    """Determine the client's IP address from the request.

    Prefers the `X-Forwarded-For` header when present (typical when
    the app is behind a proxy/load-balancer), otherwise falls back to the
    direct client address exposed by the ASGI server.
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_device_info(request: Request) -> DeviceInfo:
    """Build the device metadata (user-agent, IP) for a new refresh token.

    The user-agent is truncated to 255 characters.
    """

    user_agent = request.headers.get("user-agent")
    return DeviceInfo(
        user_agent=user_agent[:255] if user_agent else None,
        ip=get_client_ip(request),
    )


def set_refresh_cookie(response: Response, refresh_token: str, settings) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        max_age=settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_refresh_cookie(response: Response, settings) -> None:
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )
