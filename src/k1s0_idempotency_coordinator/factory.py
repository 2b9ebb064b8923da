"""設定からストア・コーディネーター・リーパーを組み立てる"""

from __future__ import annotations

from collections.abc import Mapping

from redis.asyncio import Redis

from .config import IdempotencyConfig
from .coordinator import RequestCoordinator
from .memory import InMemoryKeyStore
from .reaper import ExpiryReaper
from .redis_store import RedisKeyStore
from .store import KeyStore


def build_store(config: IdempotencyConfig, redis: Redis | None = None) -> KeyStore:
    """設定された backend のキーストアを生成する。

    redis を渡した場合はそのクライアントを使い、close() では閉じない。
    """
    section = config.store
    if section.backend == "memory":
        return InMemoryKeyStore(max_entries=section.max_entries)
    if redis is not None:
        return RedisKeyStore(redis, key_prefix=section.redis.key_prefix)
    return RedisKeyStore(
        Redis(
            host=section.redis.host,
            port=section.redis.port,
            db=section.redis.db,
            password=section.redis.password or None,
        ),
        key_prefix=section.redis.key_prefix,
        owns_client=True,
    )


def build_coordinator(
    config: IdempotencyConfig,
    store: KeyStore,
    permanent_errors: Mapping[str, tuple[type[BaseException], ...]] | None = None,
) -> RequestCoordinator:
    """設定の operations セクションのポリシーを登録したコーディネーターを生成する。"""
    permanent_errors = permanent_errors or {}
    coordinator = RequestCoordinator(store, config.default_policy(), fail_open=config.fail_open)
    for operation_id in {*config.operations, *permanent_errors}:
        coordinator.register_policy(
            operation_id,
            config.policy_for(operation_id, permanent_errors.get(operation_id, ())),
        )
    return coordinator


def build_reaper(config: IdempotencyConfig, store: KeyStore) -> ExpiryReaper:
    return ExpiryReaper(
        store,
        interval_seconds=config.reaper_interval_seconds,
        max_in_flight_seconds=config.max_in_flight_seconds,
    )
