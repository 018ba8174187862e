"""Redis permission cache adapter.

Each employee's effective permission set is stored as a JSON array under
``{prefix}employee:{id}:permissions``. Its invalidation version lives next
to it under ``...:permissions:version``: invalidation increments the
version and deletes the entry in one ``MULTI`` pipeline, and a versioned
write compares and sets inside a Lua script, so a set computed before an
invalidation in any process is never written back after it.
"""

import json
import logging
from typing import FrozenSet, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ....config.constants import CacheKeys, CacheTTL
from ....core.exceptions import CacheError, CacheInvalidationError

logger = logging.getLogger(__name__)

# KEYS[1] entry, KEYS[2] version; ARGV[1] expected version, ARGV[2] payload, ARGV[3] ttl
_SET_IF_VERSION = """
local current = redis.call('GET', KEYS[2]) or '0'
if current ~= ARGV[1] then
    return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', ARGV[3])
return 1
"""


class RedisPermissionCache:
    """Redis implementation of PermissionCache protocol."""

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "ad_rbac:",
        version_ttl: int = CacheTTL.PERMISSIONS_VERSION,
    ):
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.version_ttl = version_ttl

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "ad_rbac:") -> "RedisPermissionCache":
        """Create a cache backed by a new client for ``url``."""
        client = redis.from_url(url, decode_responses=True)
        return cls(client, key_prefix=key_prefix)

    def _key(self, employee_id: int) -> str:
        return self.key_prefix + CacheKeys.EMPLOYEE_PERMISSIONS.format(employee_id=employee_id)

    def _version_key(self, employee_id: int) -> str:
        return self.key_prefix + CacheKeys.EMPLOYEE_PERMISSIONS_VERSION.format(employee_id=employee_id)

    async def get(self, employee_id: int) -> Optional[FrozenSet[str]]:
        try:
            raw = await self.redis_client.get(self._key(employee_id))
        except RedisError as e:
            raise CacheError(f"Failed to read permissions for employee {employee_id}: {e}")
        if raw is None:
            return None
        try:
            return frozenset(json.loads(raw))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Corrupt cache entry for employee {employee_id}: {e}")

    async def version(self, employee_id: int) -> int:
        try:
            raw = await self.redis_client.get(self._version_key(employee_id))
        except RedisError as e:
            raise CacheError(f"Failed to read cache version for employee {employee_id}: {e}")
        try:
            return int(raw) if raw is not None else 0
        except (TypeError, ValueError) as e:
            raise CacheError(f"Corrupt cache version for employee {employee_id}: {e}")

    async def set(
        self, employee_id: int, slugs: Iterable[str], ttl: int, version: Optional[int] = None
    ) -> bool:
        payload = json.dumps(sorted(slugs))
        try:
            if version is None:
                await self.redis_client.setex(self._key(employee_id), ttl, payload)
                return True
            written = await self.redis_client.eval(
                _SET_IF_VERSION,
                2,
                self._key(employee_id),
                self._version_key(employee_id),
                str(version),
                payload,
                ttl,
            )
        except RedisError as e:
            raise CacheError(f"Failed to write permissions for employee {employee_id}: {e}")
        return bool(written)

    async def invalidate(self, employee_id: int) -> None:
        await self.invalidate_many([employee_id])

    async def invalidate_many(self, employee_ids: Iterable[int]) -> None:
        ids = list(employee_ids)
        if not ids:
            return
        try:
            pipe = self.redis_client.pipeline()
            for employee_id in ids:
                pipe.incr(self._version_key(employee_id))
                pipe.expire(self._version_key(employee_id), self.version_ttl)
            pipe.delete(*(self._key(i) for i in ids))
            await pipe.execute()
        except RedisError as e:
            raise CacheInvalidationError(
                f"Failed to invalidate permissions for {len(ids)} employees: {e}",
                details={"employee_ids": ids},
            )

    async def clear(self) -> None:
        """Delete every entry; versions are kept so in-flight writes still fail."""
        pattern = self.key_prefix + CacheKeys.EMPLOYEE_PERMISSIONS_PATTERN
        try:
            batch = []
            async for key in self.redis_client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    await self.redis_client.delete(*batch)
                    batch.clear()
            if batch:
                await self.redis_client.delete(*batch)
        except RedisError as e:
            raise CacheInvalidationError(f"Failed to clear permission cache: {e}")

    async def close(self) -> None:
        try:
            await self.redis_client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis client: {e}")
