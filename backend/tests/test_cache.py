"""Redis caching of project provider settings."""

import pytest

from conftest import PROJECT_ID
from provisioner.config import settings
from provisioner.services.project_settings import get_project_settings, update_project_settings
from provisioner.utils.cache import cache_key, cached, close_redis, invalidate_cache


@pytest.mark.unit
@pytest.mark.asyncio
class TestCacheHelpers:
    """Key building and fallbacks that need no Redis server."""

    async def test_cache_key_generation(self):
        """Same arguments give the same key."""
        key1 = cache_key(project_id=1, include_secrets=False)
        key2 = cache_key(include_secrets=False, project_id=1)
        key3 = cache_key(project_id=2, include_secrets=False)

        assert key1 == key2
        assert key1 != key3
        assert cache_key() == "default"

    async def test_disabled_cache_calls_through(self, monkeypatch):
        """With caching off every call reaches the function."""
        monkeypatch.setattr(settings, "cache_enabled", False)
        calls = 0

        @cached(ttl=10, prefix="test")
        async def lookup(project_id: int):
            nonlocal calls
            calls += 1
            return {"project_id": project_id}

        await lookup(project_id=1)
        await lookup(project_id=1)
        assert calls == 2

    async def test_unreachable_redis_falls_back(self, monkeypatch):
        """A Redis outage degrades to uncached calls."""
        monkeypatch.setattr(settings, "cache_enabled", True)
        monkeypatch.setattr(settings, "redis_url", "redis://127.0.0.1:1/0")
        await close_redis()
        calls = 0

        @cached(ttl=10, prefix="test")
        async def lookup(project_id: int):
            nonlocal calls
            calls += 1
            return {"project_id": project_id}

        try:
            assert await lookup(project_id=3) == {"project_id": 3}
            await invalidate_cache("test:*")
        finally:
            await close_redis()
        assert calls == 1


@pytest.mark.cache
@pytest.mark.asyncio
class TestRedisCache:
    """Cache behaviour against a live Redis."""

    async def test_cached_decorator(self, redis_client):
        """Second call with the same arguments is served from Redis."""
        calls = 0

        @cached(ttl=10, prefix="test")
        async def lookup(project_id: int):
            nonlocal calls
            calls += 1
            return {"project_id": project_id}

        assert await lookup(project_id=10) == {"project_id": 10}
        assert await lookup(project_id=10) == {"project_id": 10}
        assert calls == 1

        await lookup(project_id=20)
        assert calls == 2

    async def test_cache_invalidation(self, redis_client):
        """Only keys matching the pattern are removed."""
        await redis_client.set("test:func1:abc123", "value1")
        await redis_client.set("test:func2:def456", "value2")
        await redis_client.set("other:func:xyz789", "value3")

        await invalidate_cache("test:*")

        keys = [key async for key in redis_client.scan_iter(match="test:*")]
        assert keys == []
        assert await redis_client.get("other:func:xyz789") == "value3"

    async def test_cache_ttl(self, redis_client):
        """Cached entries carry the configured TTL."""
        @cached(ttl=1, prefix="test_ttl")
        async def fast_expiring():
            return {"value": "expires soon"}

        await fast_expiring()

        keys = [key async for key in redis_client.scan_iter(match="test_ttl:*")]
        assert len(keys) == 1
        ttl = await redis_client.ttl(keys[0])
        assert 0 < ttl <= 1

    async def test_project_settings_are_cached_and_invalidated(self, redis_client, db_session):
        """Settings reads are cached until the next write."""
        await update_project_settings(db_session, PROJECT_ID, {"cpanel_domain": "a.example.net"})
        await db_session.commit()

        first = await get_project_settings(db_session, PROJECT_ID)
        assert first["cpanel_domain"] == "a.example.net"
        assert await redis_client.exists(f"project_settings:{PROJECT_ID}")

        await update_project_settings(db_session, PROJECT_ID, {"cpanel_domain": "b.example.net"})
        await db_session.commit()

        assert not await redis_client.exists(f"project_settings:{PROJECT_ID}")
        second = await get_project_settings(db_session, PROJECT_ID)
        assert second["cpanel_domain"] == "b.example.net"
