"""Profile routes for the authenticated user."""

from typing import Annotated

from api.error_handling import success_response
from core.auth_helper import get_current_user, get_services
from fastapi import APIRouter, Depends
from schemas.users import ProfileUpdate
from services.container import AppServices
from services.token_issuer import AccessClaims

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
async def read_users_me(
    services: Annotated[AppServices, Depends(get_services)],
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
):
    """Return the current authenticated user's public profile.

    Requires a valid access token (provided via Authorization header).
    """
    user = await services.profile_service.get_profile(current_user.user_id)
    return success_response(user.model_dump(by_alias=True, mode="json"))


@router.patch("/me")
async def update_users_me(
    body: ProfileUpdate,
    services: Annotated[AppServices, Depends(get_services)],
    current_user: Annotated[AccessClaims, Depends(get_current_user)],
):
    """Apply a partial profile update and return the refreshed profile."""
    user = await services.profile_service.update_profile(
        current_user.user_id, body.profile
    )
    return success_response(user.model_dump(by_alias=True, mode="json"))
