"""Per-user analysis locks.

Only one analysis may run per user at a time; a second trigger while the
first is still writing raises ``AnalysisInProgressError``.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Settings, settings
from .errors import AnalysisInProgressError
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token.
_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class AnalysisLock(Protocol):
    def hold(self, owner_id: str) -> AbstractAsyncContextManager[None]: ...


class NullAnalysisLock:
    """No locking at all."""

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncIterator[None]:
        yield


class RedisAnalysisLock:
    """SET NX EX lock keyed by owner, released only by the holder."""

    def __init__(self, redis: Redis | None = None, *, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or settings.analysis_lock_ttl

    @staticmethod
    def key_for(owner_id: str) -> str:
        return f"analysis-lock:{owner_id}"

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncIterator[None]:
        redis = self._redis or get_redis_client()
        key = self.key_for(owner_id)
        token = secrets.token_hex(16)

        unlocked = False
        acquired = None
        try:
            acquired = await redis.set(key, token, nx=True, ex=self._ttl)
        except RedisError as exc:
            logger.warning("Redis unavailable, running analysis for %s unlocked: %s", owner_id, exc)
            unlocked = True

        if unlocked:
            yield
            return
        # SET NX answers None when the key already exists.
        if not acquired:
            raise AnalysisInProgressError(owner_id)

        try:
            yield
        finally:
            try:
                await redis.eval(_RELEASE_LUA, 1, key, token)
            except RedisError as exc:
                logger.warning("Failed to release analysis lock %s: %s", key, exc)


def build_analysis_lock(config: Settings | None = None) -> AnalysisLock:
    cfg = config or settings
    if not cfg.analysis_lock_enabled:
        return NullAnalysisLock()
    return RedisAnalysisLock(ttl_seconds=cfg.analysis_lock_ttl)
