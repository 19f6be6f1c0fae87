import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import OWNER_ID, FakeCompletionService, make_project
from graveyard.config import Settings
from graveyard.errors import AnalysisInProgressError
from graveyard.locks import NullAnalysisLock, RedisAnalysisLock, build_analysis_lock
from graveyard.orchestrate import AnalysisOrchestrator


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the lock: SET NX EX and the release script."""

    def __init__(self, *, fail: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail

    async def set(self, key, value, nx=False, ex=None):
        if self.fail:
            raise RedisConnectionError("redis is down")
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def eval(self, script, numkeys, key, token):
        if self.data.get(key) == token:
            del self.data[key]
            return 1
        return 0


@pytest.mark.asyncio
async def test_lock_is_held_and_released() -> None:
    redis = FakeRedis()
    lock = RedisAnalysisLock(redis, ttl_seconds=30)
    key = RedisAnalysisLock.key_for(OWNER_ID)

    async with lock.hold(OWNER_ID):
        assert key in redis.data
        assert redis.ttls[key] == 30

    assert key not in redis.data


@pytest.mark.asyncio
async def test_second_holder_is_refused() -> None:
    redis = FakeRedis()
    lock = RedisAnalysisLock(redis)

    async with lock.hold(OWNER_ID):
        with pytest.raises(AnalysisInProgressError) as exc_info:
            async with lock.hold(OWNER_ID):
                pass
        assert exc_info.value.owner_id == OWNER_ID
        # The refused attempt must not release the holder's key.
        assert RedisAnalysisLock.key_for(OWNER_ID) in redis.data


@pytest.mark.asyncio
async def test_lock_is_released_when_body_fails() -> None:
    redis = FakeRedis()
    lock = RedisAnalysisLock(redis)

    with pytest.raises(RuntimeError):
        async with lock.hold(OWNER_ID):
            raise RuntimeError("analysis blew up")

    assert redis.data == {}


@pytest.mark.asyncio
async def test_redis_outage_runs_unlocked() -> None:
    ran = False
    async with RedisAnalysisLock(FakeRedis(fail=True)).hold(OWNER_ID):
        ran = True
    assert ran


@pytest.mark.asyncio
async def test_orchestrator_refuses_concurrent_analysis(store, test_settings: Settings) -> None:
    store.add_projects(make_project(), make_project())
    redis = FakeRedis()
    redis.data[RedisAnalysisLock.key_for(OWNER_ID)] = "someone-else"
    completion = FakeCompletionService()
    orchestrator = AnalysisOrchestrator(
        store, completion, lock=RedisAnalysisLock(redis), config=test_settings
    )

    with pytest.raises(AnalysisInProgressError):
        await orchestrator.run_full_analysis(OWNER_ID)

    assert store.writes == 0
    assert redis.data[RedisAnalysisLock.key_for(OWNER_ID)] == "someone-else"


def test_build_analysis_lock_respects_config(test_settings: Settings) -> None:
    assert isinstance(build_analysis_lock(test_settings), NullAnalysisLock)
    enabled = test_settings.model_copy(update={"analysis_lock_enabled": True})
    assert isinstance(build_analysis_lock(enabled), RedisAnalysisLock)
