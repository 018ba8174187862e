"""Tests for permission cache adapters."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ad_rbac.core.exceptions import CacheError, CacheInvalidationError
from ad_rbac.features.cache.adapters import MemoryPermissionCache, RedisPermissionCache
from ad_rbac.features.cache.entities import PermissionCache


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestMemoryPermissionCache:

    @pytest.mark.asyncio
    async def test_set_get_and_expire(self):
        clock = FakeMonotonic()
        cache = MemoryPermissionCache(clock=clock)

        await cache.set(1, ["a.read", "a.read", "b.update"], ttl=60)
        assert await cache.get(1) == {"a.read", "b.update"}

        clock.value += 60
        assert await cache.get(1) is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_empty_set_is_a_hit(self):
        cache = MemoryPermissionCache()

        await cache.set(1, [], ttl=60)

        assert await cache.get(1) == frozenset()

    @pytest.mark.asyncio
    async def test_invalidate_many_and_clear(self):
        cache = MemoryPermissionCache()
        for employee_id in (1, 2, 3):
            await cache.set(employee_id, ["x.read"], ttl=60)

        await cache.invalidate_many([1, 2])
        assert await cache.get(1) is None
        assert await cache.get(3) == {"x.read"}

        await cache.clear()
        assert await cache.get(3) is None

    @pytest.mark.asyncio
    async def test_versioned_set_refused_after_invalidate(self):
        cache = MemoryPermissionCache()
        version = await cache.version(1)

        await cache.invalidate(1)

        assert await cache.set(1, ["x.read"], ttl=60, version=version) is False
        assert await cache.get(1) is None
        assert await cache.set(1, ["x.read"], ttl=60, version=await cache.version(1)) is True
        assert await cache.get(1) == {"x.read"}

    @pytest.mark.asyncio
    async def test_pruned_versions_never_match_again(self):
        cache = MemoryPermissionCache(max_tracked_versions=2)
        await cache.invalidate_many([1, 2])
        stale = await cache.version(1)
        untouched = await cache.version(9)

        await cache.invalidate(3)

        assert await cache.version(1) != stale
        assert await cache.set(1, ["x.read"], ttl=60, version=stale) is False
        assert await cache.set(9, ["x.read"], ttl=60, version=untouched) is False

    def test_satisfies_protocol(self):
        assert isinstance(MemoryPermissionCache(), PermissionCache)


class TestRedisPermissionCache:

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.get = AsyncMock(return_value=None)
        client.setex = AsyncMock()
        client.delete = AsyncMock()
        client.eval = AsyncMock(return_value=1)
        client.aclose = AsyncMock()
        client.pipeline = MagicMock(return_value=MagicMock(execute=AsyncMock()))
        return client

    @pytest.fixture
    def cache(self, redis_client):
        return RedisPermissionCache(redis_client, key_prefix="test:")

    @pytest.mark.asyncio
    async def test_set_writes_sorted_json_with_ttl(self, cache, redis_client):
        await cache.set(7, {"b.update", "a.read"}, ttl=120)

        redis_client.setex.assert_awaited_once_with(
            "test:employee:7:permissions", 120, json.dumps(["a.read", "b.update"])
        )

    @pytest.mark.asyncio
    async def test_versioned_set_compares_and_sets_in_script(self, cache, redis_client):
        written = await cache.set(7, {"b.update", "a.read"}, ttl=120, version=3)

        assert written is True
        redis_client.setex.assert_not_awaited()
        args = redis_client.eval.await_args.args
        assert args[1:] == (
            2,
            "test:employee:7:permissions",
            "test:employee:7:permissions:version",
            "3",
            json.dumps(["a.read", "b.update"]),
            120,
        )

    @pytest.mark.asyncio
    async def test_versioned_set_refused_when_version_moved(self, cache, redis_client):
        redis_client.eval.return_value = 0

        assert await cache.set(7, ["a.read"], ttl=120, version=3) is False

    @pytest.mark.asyncio
    async def test_version_reads_counter(self, cache, redis_client):
        assert await cache.version(7) == 0

        redis_client.get.return_value = "5"

        assert await cache.version(7) == 5
        redis_client.get.assert_awaited_with("test:employee:7:permissions:version")

    @pytest.mark.asyncio
    async def test_corrupt_version_raises_cache_error(self, cache, redis_client):
        redis_client.get.return_value = "abc"

        with pytest.raises(CacheError):
            await cache.version(7)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, cache, redis_client):
        redis_client.get.return_value = '["a.read", "b.update"]'

        assert await cache.get(7) == {"a.read", "b.update"}
        redis_client.get.assert_awaited_once_with("test:employee:7:permissions")

    @pytest.mark.asyncio
    async def test_get_miss(self, cache):
        assert await cache.get(7) is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_raises_cache_error(self, cache, redis_client):
        redis_client.get.return_value = "{not json"

        with pytest.raises(CacheError):
            await cache.get(7)

    @pytest.mark.asyncio
    async def test_read_failure_raises_cache_error(self, cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("down")

        with pytest.raises(CacheError) as exc:
            await cache.get(7)

        assert not isinstance(exc.value, CacheInvalidationError)

    @pytest.mark.asyncio
    async def test_invalidate_many_bumps_versions_and_deletes_keys(self, cache, redis_client):
        pipe = redis_client.pipeline.return_value

        await cache.invalidate_many([1, 2])

        assert [c.args for c in pipe.incr.call_args_list] == [
            ("test:employee:1:permissions:version",),
            ("test:employee:2:permissions:version",),
        ]
        pipe.expire.assert_any_call("test:employee:2:permissions:version", 604800)
        pipe.delete.assert_called_once_with(
            "test:employee:1:permissions", "test:employee:2:permissions"
        )
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalidate_many_empty_is_noop(self, cache, redis_client):
        await cache.invalidate_many([])

        redis_client.pipeline.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalidation_failure_raises_invalidation_error(self, cache, redis_client):
        redis_client.pipeline.return_value.execute.side_effect = RedisConnectionError("down")

        with pytest.raises(CacheInvalidationError) as exc:
            await cache.invalidate(3)

        assert exc.value.details == {"employee_ids": [3]}

    @pytest.mark.asyncio
    async def test_clear_scans_prefix(self, cache, redis_client):
        async def scan_iter(match, count):
            assert match == "test:employee:*:permissions"
            for key in ("test:employee:1:permissions", "test:employee:2:permissions"):
                yield key

        redis_client.scan_iter = MagicMock(side_effect=scan_iter)

        await cache.clear()

        redis_client.delete.assert_awaited_once_with(
            "test:employee:1:permissions", "test:employee:2:permissions"
        )

    @pytest.mark.asyncio
    async def test_close(self, cache, redis_client):
        await cache.close()

        redis_client.aclose.assert_awaited_once()
