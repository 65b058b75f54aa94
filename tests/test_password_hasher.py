"""Tests for bcrypt password hashing."""

from services.password_hasher import PasswordHasher


async def test_hash_embeds_cost_factor_and_verifies(hasher):
    hashed = await hasher.hash("Sup3r$ecret")

    assert hashed.startswith("$2b$04$")
    assert await hasher.verify("Sup3r$ecret", hashed) is True
    assert await hasher.verify("Sup3r$ecreT", hashed) is False


async def test_same_password_hashes_differently(hasher):
    first = await hasher.hash("Sup3r$ecret")
    second = await hasher.hash("Sup3r$ecret")

    assert first != second
    assert await hasher.verify("Sup3r$ecret", first)
    assert await hasher.verify("Sup3r$ecret", second)


async def test_malformed_hash_is_a_mismatch_not_an_error(hasher):
    assert await hasher.verify("Sup3r$ecret", "not-a-bcrypt-hash") is False
    assert await hasher.verify("Sup3r$ecret", "") is False


def test_rounds_are_configurable():
    hashed = PasswordHasher(rounds=5).hash_sync("Sup3r$ecret")

    assert hashed.startswith("$2b$05$")
