"""Schemas for the profile endpoints."""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from schemas.auth import CamelModel


class ProfileChanges(CamelModel):
    """Partial profile update; only fields present in the body are applied."""

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=200)
    avatar_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("avatar_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value

    @model_validator(mode="after")
    def _at_least_one_field(self) -> "ProfileChanges":
        if not self.model_fields_set:
            raise ValueError("at least one profile field is required")
        return self


class ProfileUpdate(CamelModel):
    """Request body for ``PATCH /users/me``."""

    profile: ProfileChanges
