"""Tests for cached profile reads and partial updates."""

import pytest
from conftest import FailingCache
from core.circuit_breaker import CircuitBreaker
from core.errors import NotFoundError
from pydantic import ValidationError
from schemas.auth import Profile, UserStatus
from schemas.users import ProfileChanges
from services.cache import FailOpenCache, MemoryCache
from services.profile_service import ProfileService, profile_cache_key


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def profiles(credential_store, cache, clock):
    return ProfileService(
        credential_store, cache, CircuitBreaker("credential-store", clock=clock), ttl_seconds=300
    )


async def _create(store):
    return await store.create(
        email="carol@example.com",
        username="carol",
        password_hash="$2b$04$hash",
        profile=Profile(first_name="Carol"),
    )


async def test_get_profile_populates_cache(profiles, credential_store, cache):
    user = await _create(credential_store)

    public = await profiles.get_profile(user.id)

    assert public.username == "carol"
    assert "passwordHash" not in public.model_dump(by_alias=True)
    cached = await cache.get_json(profile_cache_key(user.id))
    assert cached["profile"]["firstName"] == "Carol"


async def test_cached_projection_is_served(profiles, credential_store, cache):
    user = await _create(credential_store)
    await profiles.get_profile(user.id)

    # A stale cache entry wins until it expires or is invalidated
    await credential_store.update_profile(user.id, {"firstName": "Changed"})
    assert (await profiles.get_profile(user.id)).profile.first_name == "Carol"


async def test_update_applies_only_present_fields_and_invalidates(
    profiles, credential_store, cache
):
    user = await _create(credential_store)
    await profiles.get_profile(user.id)

    updated = await profiles.update_profile(
        user.id, ProfileChanges.model_validate({"bio": "Hi there"})
    )

    assert updated.profile.bio == "Hi there"
    assert updated.profile.first_name == "Carol"
    assert await cache.get_json(profile_cache_key(user.id)) is None
    assert (await profiles.get_profile(user.id)).profile.bio == "Hi there"


async def test_missing_and_deleted_users_are_not_found(profiles, credential_store):
    with pytest.raises(NotFoundError):
        await profiles.get_profile("missing")

    user = await _create(credential_store)
    await credential_store.set_status(user.id, UserStatus.DELETED)
    with pytest.raises(NotFoundError):
        await profiles.get_profile(user.id)
    with pytest.raises(NotFoundError):
        await profiles.update_profile(user.id, ProfileChanges(bio="x"))


def test_profile_changes_validation():
    with pytest.raises(ValidationError):
        ProfileChanges.model_validate({})
    with pytest.raises(ValidationError):
        ProfileChanges.model_validate({"avatarUrl": "ftp://example.com/a.png"})
    with pytest.raises(ValidationError):
        ProfileChanges.model_validate({"bio": "x" * 201})

    changes = ProfileChanges.model_validate({"avatarUrl": "https://example.com/a.png"})
    assert changes.model_dump(by_alias=True, exclude_unset=True) == {
        "avatarUrl": "https://example.com/a.png"
    }


async def test_unreachable_cache_reads_through_to_store(credential_store, clock):
    backend = FailingCache()
    profiles = ProfileService(
        credential_store,
        FailOpenCache(backend, CircuitBreaker("cache", clock=clock)),
        CircuitBreaker("credential-store", clock=clock),
    )
    user = await _create(credential_store)

    assert (await profiles.get_profile(user.id)).username == "carol"
    updated = await profiles.update_profile(user.id, ProfileChanges(bio="offline"))
    assert updated.profile.bio == "offline"
    assert (await profiles.get_profile(user.id)).profile.bio == "offline"
    assert backend.calls > 0
