"""Authentication routes with refresh token rotation.

Endpoints:
    - POST /auth/register: Create an account (returns access token, sets
      refresh cookie)
    - POST /auth/login: Login by email or username
    - POST /auth/refresh: Exchange a refresh token for a new pair
    - POST /auth/logout: Revoke a single refresh token
    - POST /auth/logout-all: Revoke all of the caller's refresh tokens
"""

from typing import Annotated, Optional

from api.error_handling import success_response
from core.auth_helper import (
    REFRESH_COOKIE_NAME,
    clear_refresh_cookie,
    get_client_ip,
    get_current_user,
    get_device_info,
    get_services,
    set_refresh_cookie,
)
from core.errors import AuthInvalidError
from core.logging import logger
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from schemas.auth import (
    AccessToken,
    AuthPayload,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokenRefresh,
    UserPublic,
)
from services.container import AppServices
from services.session_manager import AuthResult
from services.token_issuer import AccessClaims

router = APIRouter(prefix="/auth", tags=["auth"])

Services = Annotated[AppServices, Depends(get_services)]


def _session_response(
    services: AppServices, result: AuthResult, status_code: int = status.HTTP_200_OK
) -> JSONResponse:
    """Access token in the body, refresh token as an HttpOnly cookie."""
    payload = AuthPayload(
        user=UserPublic.from_user(result.user),
        tokens=AccessToken(
            access_token=result.access_token, expires_in=result.expires_in
        ),
    )
    resp = success_response(
        payload.model_dump(by_alias=True, mode="json"), status_code=status_code
    )
    set_refresh_cookie(resp, result.refresh_token, services.settings)
    return resp


def _presented_refresh_token(
    request: Request, body: Optional[TokenRefresh]
) -> Optional[str]:
    # NOTE: the cookie wins; the body is for clients that cannot hold cookies
    token = request.cookies.get(REFRESH_COOKIE_NAME)
    if not token and body is not None:
        token = body.refresh_token
    return token


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: Request, body: RegisterRequest, services: Services):
    """Create an account and open its first session.

    Raises:
        RateLimitedError: Too many registrations from this IP.
        ConflictError: Email or username already taken.
    """
    await services.register_limiter.hit(get_client_ip(request) or "unknown")
    result = await services.session_manager.register(
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        device_info=get_device_info(request),
    )
    return _session_response(services, result, status.HTTP_201_CREATED)


@router.post("/login")
async def login(request: Request, body: LoginRequest, services: Services):
    """Authenticate by email or username.

    Only failed attempts count towards the per-identifier limit.
    """
    identifier = body.identifier.strip().lower()
    await services.login_limiter.check(identifier)
    try:
        result = await services.session_manager.login(
            identifier, body.password, get_device_info(request)
        )
    except AuthInvalidError:
        await services.login_limiter.record_failure(identifier)
        raise
    return _session_response(services, result)


@router.post("/refresh")
async def refresh(
    request: Request, services: Services, body: Optional[TokenRefresh] = None
):
    """Rotate the refresh token and issue a new access token.

    The presented token is revoked before the new pair is issued; a second
    use of the same token fails.
    """
    token = _presented_refresh_token(request, body)
    result = await services.session_manager.refresh_tokens(token)
    return _session_response(services, result)


@router.post("/logout")
async def logout(
    request: Request, services: Services, body: Optional[TokenRefresh] = None
):
    """Revoke the presented refresh token and clear the cookie."""
    token = _presented_refresh_token(request, body)
    await services.session_manager.logout(token)
    resp = success_response(
        MessageResponse(message="Logged out successfully").model_dump()
    )
    clear_refresh_cookie(resp, services.settings)
    return resp


@router.post("/logout-all")
async def logout_all(
    services: Services,
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
):
    """Revoke every refresh token of the current user (logout everywhere)."""
    revoked = await services.session_manager.logout_all(current_user.user_id)
    logger.info("Logout from all devices for user_id={}", current_user.user_id)
    resp = success_response(
        {"message": "Logged out from all devices", "revoked": revoked}
    )
    clear_refresh_cookie(resp, services.settings)
    return resp
