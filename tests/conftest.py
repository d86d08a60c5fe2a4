"""
Pytest Configuration and Fixtures

Shared fixtures for the store, cache, session and HTTP tests. Store-level
fixtures run against both backends: the in-memory store and RedisStore
over fakeredis. The HTTP client uses the in-memory store; a live Redis
is never required.
"""

import time
from typing import List, Optional

import pytest
import pytest_asyncio
from dependency_injector import providers
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from fastapi.testclient import TestClient

from core.cache import CacheService
from core.config import Settings
from core.container import container
from core.store import InMemoryStore, KeyValueStore, RedisStore
from services.sessions import SessionStore


class FakeClock:
    """Controllable replacement for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenStore(KeyValueStore):
    """Store whose every operation fails, as if Redis dropped mid-run."""

    backend = "broken"

    async def get(self, key: str) -> Optional[str]:
        raise ConnectionError("store unavailable")

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        raise ConnectionError("store unavailable")

    async def delete(self, *keys: str) -> int:
        raise ConnectionError("store unavailable")

    async def keys(self, pattern: str = "*") -> List[str]:
        raise ConnectionError("store unavailable")

    async def ttl(self, key: str) -> Optional[float]:
        raise ConnectionError("store unavailable")

    async def ping(self) -> bool:
        raise ConnectionError("store unavailable")


# ============================================================================
# Settings & Store Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        redis_enabled=False,
        cache_ttl=60,
        session_ttl=3600,
        session_max_ttl=7 * 86400,
        admin_user_ids=["admin"],
        cleanup_enabled=False,
        log_format="console",
    )


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    """Freeze time.time() for expiry tests; advance it explicitly.

    fakeredis reads time.time() on every command, so Redis-backed
    tests follow the same clock.
    """
    fake = FakeClock()
    monkeypatch.setattr(time, "time", fake)
    return fake


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


def fake_redis_store() -> RedisStore:
    """RedisStore over an isolated fakeredis server."""
    return RedisStore(FakeRedis(server=FakeServer(), decode_responses=True))


@pytest_asyncio.fixture
async def redis_store():
    store = fake_redis_store()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "redis"])
async def store(request):
    """Each test using this runs once per backend."""
    store = InMemoryStore() if request.param == "memory" else fake_redis_store()
    yield store
    await store.close()


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()


class ReadOnlyStore(InMemoryStore):
    """In-memory store that can turn read-only mid-test, like a demoted Redis primary."""

    def __init__(self):
        super().__init__()
        self.read_only = False

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        if self.read_only:
            raise ConnectionError("READONLY You can't write against a read only replica")
        await super().set(key, value, ttl)


@pytest.fixture
def read_only_store() -> ReadOnlyStore:
    return ReadOnlyStore()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def cache(store: KeyValueStore, settings: Settings) -> CacheService:
    return CacheService(store, settings)


@pytest.fixture
def broken_cache(broken_store: BrokenStore, settings: Settings) -> CacheService:
    return CacheService(broken_store, settings)


@pytest.fixture
def sessions(store: KeyValueStore, settings: Settings) -> SessionStore:
    return SessionStore(store, settings)


# ============================================================================
# HTTP Fixtures
# ============================================================================

@pytest.fixture
def client(settings: Settings):
    """TestClient running the full app lifespan on an in-memory store."""
    from main import app

    container.settings.override(providers.Object(settings))
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        container.settings.reset_override()
        container.reset_singletons()


@pytest_asyncio.fixture
async def populated_cache(cache: CacheService) -> CacheService:
    """Cache holding user and org keys for invalidation tests."""
    await cache.set("user:1", {"name": "Anna"})
    await cache.set("user:2", {"name": "Boris"})
    await cache.set("user:2:worklogs", [1, 2, 3])
    await cache.set("org:1", {"name": "Acme"})
    return cache
