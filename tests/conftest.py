import asyncio
import inspect
import os

# Configure the hermetic environment before anything reads settings
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("USE_MEMORY_CACHE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from argon2 import PasswordHasher  # noqa: E402

from userhub.service.passwords import PasswordService  # noqa: E402
from userhub.service.runtime import reset_runtime_for_tests  # noqa: E402
from userhub.storage.errors import CacheUnavailableError  # noqa: E402
from userhub.storage.memory import MemoryCache  # noqa: E402
from userhub.storage.redis_cache import DEFAULT_REFRESH_TTL_SECONDS  # noqa: E402

TEST_SECRET = os.environ["JWT_SECRET"]


class FakeClock:
    """Settable clock returning seconds; shared by the codec and MemoryCache."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingCache(MemoryCache):
    """MemoryCache whose selected operations raise ``CacheUnavailableError``."""

    def __init__(self, failing, **kwargs):
        super().__init__(**kwargs)
        self.failing = set(failing)

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise CacheUnavailableError(operation)

    async def store_refresh_token(self, user_id, token, ttl_seconds=DEFAULT_REFRESH_TTL_SECONDS):
        self._maybe_fail("store_refresh_token")
        await super().store_refresh_token(user_id, token, ttl_seconds)

    async def get_refresh_token(self, user_id):
        self._maybe_fail("get_refresh_token")
        return await super().get_refresh_token(user_id)

    async def remove_refresh_token(self, user_id):
        self._maybe_fail("remove_refresh_token")
        await super().remove_refresh_token(user_id)

    async def blacklist_token(self, token, ttl_seconds):
        self._maybe_fail("blacklist_token")
        await super().blacklist_token(token, ttl_seconds)

    async def is_blacklisted(self, token):
        self._maybe_fail("is_blacklisted")
        return await super().is_blacklisted(token)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def failing_cache(clock):
    """Factory for a cache that fails the named operations."""

    def make(*operations):
        return FailingCache(operations, clock=clock)

    return make


@pytest.fixture
def passwords():
    """argon2id with minimal cost so hashing does not dominate test time."""
    return PasswordService(PasswordHasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def secret():
    return TEST_SECRET


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
