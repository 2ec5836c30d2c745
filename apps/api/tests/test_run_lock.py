import pytest
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import create_async_engine

from config import TranscriptWorkerConfig
from services.run_lock import (
    NoopRunLock,
    PostgresAdvisoryRunLock,
    RedisLeaseRunLock,
    get_run_lock,
)
from services.transcript_types import RunLockUnavailableError


class _FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.values = {}
        self.ttls = {}

    async def set(self, key, value, nx=False, ex=None):
        if self.fail:
            raise redis.ConnectionError("connection refused")
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def eval(self, script, numkeys, key, token):
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0


@pytest.mark.asyncio
async def test_redis_lease_is_exclusive_until_released():
    client = _FakeRedis()
    first = RedisLeaseRunLock(client, ttl_seconds=600)
    second = RedisLeaseRunLock(client, ttl_seconds=600)

    assert await first.acquire() is True
    assert await second.acquire() is False
    assert client.ttls["locks:transcript_worker"] == 600

    await first.release()

    assert await second.acquire() is True


@pytest.mark.asyncio
async def test_redis_release_does_not_drop_another_holders_lease():
    client = _FakeRedis()
    stale = RedisLeaseRunLock(client)
    assert await stale.acquire() is True
    # Lease expired and another instance took over.
    client.values["locks:transcript_worker"] = "someone-else"

    await stale.release()

    assert client.values["locks:transcript_worker"] == "someone-else"


@pytest.mark.asyncio
async def test_redis_unreachable_raises_lock_unavailable():
    lock = RedisLeaseRunLock(_FakeRedis(fail=True))

    with pytest.raises(RunLockUnavailableError):
        await lock.acquire()


@pytest.mark.asyncio
async def test_advisory_lock_requires_postgres(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lock.db'}")
    try:
        with pytest.raises(RunLockUnavailableError):
            await PostgresAdvisoryRunLock(engine).acquire()
    finally:
        await engine.dispose()


def test_factory_respects_lock_settings():
    assert isinstance(get_run_lock(TranscriptWorkerConfig(use_advisory_lock=False)), NoopRunLock)
    assert isinstance(get_run_lock(TranscriptWorkerConfig(lock_backend="redis")), RedisLeaseRunLock)
