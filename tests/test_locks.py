"""Tests for the batch job locks (Redis-backed and in-process)."""
from unittest.mock import AsyncMock

import pytest

from catalog_engine.utils.locks import LocalLocks, RedisLock, lock_factory


@pytest.fixture
def redis():
    r = AsyncMock()
    r.set = AsyncMock(return_value=True)
    r.eval = AsyncMock(return_value=1)
    return r


class TestRedisLock:
    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_ex(self, redis):
        lock = RedisLock(redis, "batch:similarities", ttl=30)
        assert await lock.acquire()
        key, token = redis.set.await_args.args
        assert key == "lock:batch:similarities"
        assert redis.set.await_args.kwargs == {"nx": True, "ex": 30}

        await lock.release()
        script, n, released_key, released_token = redis.eval.await_args.args
        assert (n, released_key, released_token) == (1, key, token)

    @pytest.mark.asyncio
    async def test_held_elsewhere(self, redis):
        redis.set.return_value = None
        lock = RedisLock(redis, "batch:prune")
        assert not await lock.acquire()
        await lock.release()
        redis.eval.assert_not_awaited()


class TestLockFactory:
    def test_local_without_redis(self):
        assert isinstance(lock_factory(None), LocalLocks)

    def test_redis_when_available(self, redis):
        assert isinstance(lock_factory(redis, ttl=5)("x"), RedisLock)

    @pytest.mark.asyncio
    async def test_local_locks_are_exclusive_per_key(self):
        locks = LocalLocks()
        a, b, other = locks("job"), locks("job"), locks("other")
        assert await a.acquire()
        assert not await b.acquire()
        assert await other.acquire()
        await b.release()  # not the owner: no effect
        assert not await locks("job").acquire()
        await a.release()
        assert await locks("job").acquire()
