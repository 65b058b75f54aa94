import asyncio
import inspect
import os
import sys
from pathlib import Path

# Settings are read at import time, seed them before any application import
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-do-not-use-in-production")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-do-not-use-in-production")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from redis.exceptions import ConnectionError as RedisConnectionError  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
APP_DIR = ROOT / "backend" / "sessionkeeper"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from config.config import settings as app_settings  # noqa: E402
from services.container import build_memory_services  # noqa: E402
from services.password_hasher import PasswordHasher  # noqa: E402
from services.stores.memory_store import (  # noqa: E402
    MemoryCredentialStore,
    MemoryTokenRecordStore,
)

STRONG_PASSWORD = "Sup3r$ecret"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingCache:
    """Cache whose backend is unreachable."""

    def __init__(self):
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise RedisConnectionError("Error 111 connecting to localhost:6379")

    get_json = set_json = delete = _fail
    incr_window = get_count = ttl = ping = _fail

    async def close(self):
        return None


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def settings():
    """Application settings with a cheap bcrypt cost."""
    return app_settings.model_copy(update={"BCRYPT_ROUNDS": 4})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    return PasswordHasher(rounds=4)


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def token_store():
    return MemoryTokenRecordStore()


@pytest.fixture
def services(settings, hasher):
    return build_memory_services(settings, hasher=hasher)


@pytest.fixture
def manager(services):
    return services.session_manager
