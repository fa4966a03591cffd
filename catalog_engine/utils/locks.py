# catalog_engine/utils/locks.py
from __future__ import annotations
from typing import Callable, Optional, Protocol, Set
from redis.asyncio import Redis
import uuid

# delete only if we still own the key
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class JobLock(Protocol):
    async def acquire(self) -> bool: ...

    async def release(self) -> None: ...


class RedisLock:
    """
    Simple, single-instance lock using SET NX EX.
    Prevents two workers from running the same batch job key at once.
    """
    def __init__(self, redis: Redis, key: str, ttl: int = 600):
        self.redis = redis
        self.key = f"lock:{key}"
        self.ttl = ttl
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        ok = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        if ok:
            self._token = token
            return True
        return False

    async def release(self) -> None:
        if self._token is None:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None


class LocalLocks:
    """In-process lock registry used when Redis is not configured (single worker)."""
    def __init__(self):
        self.held: Set[str] = set()

    def __call__(self, key: str) -> "LocalLock":
        return LocalLock(self, key)


class LocalLock:
    def __init__(self, registry: LocalLocks, key: str):
        self.registry = registry
        self.key = f"lock:{key}"
        self._owned = False

    async def acquire(self) -> bool:
        if self.key in self.registry.held:
            return False
        self.registry.held.add(self.key)
        self._owned = True
        return True

    async def release(self) -> None:
        if self._owned:
            self.registry.held.discard(self.key)
            self._owned = False


def lock_factory(redis: Optional[Redis], ttl: int = 600) -> Callable[[str], JobLock]:
    """RedisLock per key when a client is available, otherwise in-process locks."""
    if redis is not None:
        return lambda key: RedisLock(redis, key, ttl=ttl)
    return LocalLocks()
