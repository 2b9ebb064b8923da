"""テスト共通フィクスチャ"""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from k1s0_idempotency_coordinator import InMemoryKeyStore, RedisKeyStore


class FakeClock:
    """手動で進めるテスト用時計。"""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> InMemoryKeyStore:
    return InMemoryKeyStore(clock=clock)


@pytest.fixture
def redis_store(clock: FakeClock) -> RedisKeyStore:
    return RedisKeyStore(fakeredis.FakeAsyncRedis(), clock=clock, poll_interval=0.01)


@pytest.fixture(params=["memory", "redis"])
def store(request: pytest.FixtureRequest, memory_store, redis_store):
    """両バックエンドで同じ契約を検証する。"""
    return memory_store if request.param == "memory" else redis_store
