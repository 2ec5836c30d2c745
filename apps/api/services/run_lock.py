"""Cross-instance mutual exclusion for batch runs."""

from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from config import TranscriptWorkerConfig, settings
from services.transcript_types import RunLockUnavailableError

logger = logging.getLogger(__name__)

TRANSCRIPT_WORKER_LOCK_KEY = "transcript_worker"

# Compare-and-delete so an expired lease never releases someone else's lock.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RunLock(ABC):
    key: str

    @abstractmethod
    async def acquire(self) -> bool:
        """Return False when another instance holds the lock; raise RunLockUnavailableError if unreachable."""
        raise NotImplementedError

    @abstractmethod
    async def release(self) -> None:
        raise NotImplementedError


class NoopRunLock(RunLock):
    """Used when advisory locking is disabled; every acquire succeeds."""

    def __init__(self, key: str = TRANSCRIPT_WORKER_LOCK_KEY) -> None:
        self.key = key

    async def acquire(self) -> bool:
        return True

    async def release(self) -> None:
        return None


class PostgresAdvisoryRunLock(RunLock):
    """Session-level advisory lock; a crashed holder frees it when its connection drops."""

    def __init__(self, engine: AsyncEngine, key: str = TRANSCRIPT_WORKER_LOCK_KEY) -> None:
        self.engine = engine
        self.key = key
        self._connection: Optional[AsyncConnection] = None

    async def acquire(self) -> bool:
        if self.engine.dialect.name != "postgresql":
            raise RunLockUnavailableError(
                f"Advisory locks need PostgreSQL, got {self.engine.dialect.name!r}"
            )
        try:
            connection = await self.engine.connect()
        except (SQLAlchemyError, OSError) as exc:
            raise RunLockUnavailableError(f"Could not reach lock database: {exc}") from exc
        try:
            result = await connection.execute(
                text("SELECT pg_try_advisory_lock(hashtext(:key))"),
                {"key": self.key},
            )
            acquired = bool(result.scalar())
        except SQLAlchemyError as exc:
            await connection.close()
            raise RunLockUnavailableError(f"Advisory lock query failed: {exc}") from exc
        if not acquired:
            await connection.close()
            return False
        self._connection = connection
        return True

    async def release(self) -> None:
        connection = self._connection
        if connection is None:
            return
        self._connection = None
        try:
            await connection.execute(
                text("SELECT pg_advisory_unlock(hashtext(:key))"),
                {"key": self.key},
            )
        except SQLAlchemyError as exc:
            logger.warning("Advisory unlock for %s failed; closing connection releases it: %s", self.key, exc)
        finally:
            await connection.close()


class RedisLeaseRunLock(RunLock):
    """SET NX lease with a TTL; expiry bounds how long a crashed holder blocks later runs."""

    def __init__(self, client: Any, key: str = TRANSCRIPT_WORKER_LOCK_KEY, ttl_seconds: int = 3600) -> None:
        self.client = client
        self.key = f"locks:{key}"
        self.ttl_seconds = ttl_seconds
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = secrets.token_hex(16)
        try:
            acquired = await self.client.set(self.key, token, nx=True, ex=self.ttl_seconds)
        except (redis.RedisError, OSError) as exc:
            raise RunLockUnavailableError(f"Could not reach Redis for lock {self.key}: {exc}") from exc
        if not acquired:
            return False
        self._token = token
        return True

    async def release(self) -> None:
        token = self._token
        if token is None:
            return
        self._token = None
        try:
            await self.client.eval(_RELEASE_SCRIPT, 1, self.key, token)
        except (redis.RedisError, OSError) as exc:
            logger.warning("Redis lease release for %s failed; it expires in %ss: %s", self.key, self.ttl_seconds, exc)


def get_run_lock(config: TranscriptWorkerConfig, *, engine: Optional[AsyncEngine] = None) -> RunLock:
    if not config.use_advisory_lock:
        return NoopRunLock()
    if config.lock_backend == "redis":
        return RedisLeaseRunLock(
            redis.from_url(settings.REDIS_URL),
            ttl_seconds=config.lock_ttl_seconds,
        )
    if engine is None:
        from database import engine as default_engine

        engine = default_engine
    return PostgresAdvisoryRunLock(engine)
