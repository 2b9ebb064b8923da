"""RedisKeyStore 実装"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from .exceptions import (
    IdempotencyError,
    IdempotencyErrorCodes,
    InvalidHandleError,
    StorageUnavailableError,
)
from .models import (
    Began,
    BeginResult,
    Existing,
    IdempotencyKey,
    OutcomeRecord,
    OutcomeStatus,
    RecordHandle,
    to_timedelta,
    utcnow,
)
from .store import KeyStore


class RedisKeyStore(KeyStore):
    """redis.asyncio をバックエンドとするキーストア。

    SET NX で新規キーを挿入し、既存レコードの置き換えや完了は WATCH/MULTI の
    楽観的トランザクションで行う。複数プロセス間で重複排除を共有できる。
    完了済みレコードには Redis 側の有効期限も設定するが、期限判定は読み出し時の
    expires_at を正とする。
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "idempotency:",
        clock: Callable[[], datetime] = utcnow,
        poll_interval: float = 0.05,
        owns_client: bool = False,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._clock = clock
        self._poll_interval = poll_interval
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisKeyStore:
        return cls(Redis.from_url(url), owns_client=True, **kwargs)

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()

    async def try_begin_or_get(
        self,
        key: IdempotencyKey,
        ttl: timedelta | float,
        payload_hash: str | None = None,
    ) -> BeginResult:
        ttl = to_timedelta(ttl)
        now = self._clock()
        token = uuid.uuid4().hex
        record = OutcomeRecord(
            key=key,
            payload_hash=payload_hash,
            created_at=now,
            expires_at=now + ttl,
            owner_token=token,
        )
        raw = _dumps(record)
        redis_key = self._redis_key(key)
        began = Began(RecordHandle(key=key, token=token))
        try:
            while True:
                if await self._redis.set(redis_key, raw, nx=True):
                    return began
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(redis_key)
                    current = await pipe.get(redis_key)
                    if current is None:
                        # 削除と競合したので SET NX からやり直す
                        continue
                    existing = _loads(current)
                    if not existing.is_expired(now):
                        return Existing(existing)
                    pipe.multi()
                    pipe.set(redis_key, raw)
                    try:
                        await pipe.execute()
                    except WatchError:
                        continue
                    return began
        except RedisError as e:
            raise StorageUnavailableError(f"Failed to begin idempotent request: {key}", cause=e) from e

    async def complete(
        self,
        handle: RecordHandle,
        status: OutcomeStatus,
        payload: Any,
    ) -> OutcomeRecord:
        if not status.is_terminal:
            raise ValueError("status must be COMPLETED or FAILED")
        redis_key = self._redis_key(handle.key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(redis_key)
                record = self._owned_pending(handle, await pipe.get(redis_key))
                now = self._clock()
                retention = record.expires_at - record.created_at if record.expires_at else None
                record.status = status
                if status is OutcomeStatus.COMPLETED:
                    record.result = payload
                else:
                    record.error_info = payload
                record.completed_at = now
                if retention is not None:
                    record.expires_at = now + retention
                record.owner_token = None
                raw = _dumps(record)
                pipe.multi()
                if retention is not None:
                    pipe.set(redis_key, raw, px=_millis(retention))
                else:
                    pipe.set(redis_key, raw)
                try:
                    await pipe.execute()
                except WatchError:
                    raise InvalidHandleError(handle.key, "record modified concurrently") from None
                return record
        except RedisError as e:
            raise StorageUnavailableError(
                f"Failed to complete idempotent request: {handle.key}", cause=e
            ) from e

    async def abandon(self, handle: RecordHandle) -> None:
        redis_key = self._redis_key(handle.key)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(redis_key)
                self._owned_pending(handle, await pipe.get(redis_key))
                pipe.multi()
                pipe.delete(redis_key)
                try:
                    await pipe.execute()
                except WatchError:
                    raise InvalidHandleError(handle.key, "record modified concurrently") from None
        except RedisError as e:
            raise StorageUnavailableError(
                f"Failed to abandon idempotent request: {handle.key}", cause=e
            ) from e

    async def evict_expired(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        removed = 0
        try:
            async for redis_key in self._redis.scan_iter(match=f"{self._prefix}*"):
                async with self._redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(redis_key)
                    raw = await pipe.get(redis_key)
                    if raw is None or not _loads(raw).is_expired(now):
                        continue
                    pipe.multi()
                    pipe.delete(redis_key)
                    try:
                        await pipe.execute()
                    except WatchError:
                        # 再作成されたキーは対象外
                        continue
                    removed += 1
        except RedisError as e:
            raise StorageUnavailableError("Failed to evict expired records", cause=e) from e
        return removed

    async def get(self, key: IdempotencyKey) -> OutcomeRecord | None:
        try:
            raw = await self._redis.get(self._redis_key(key))
        except RedisError as e:
            raise StorageUnavailableError(f"Failed to read idempotent record: {key}", cause=e) from e
        if raw is None:
            return None
        record = _loads(raw)
        if record.is_expired(self._clock()):
            return None
        return record

    async def find_stuck(
        self,
        now: datetime,
        max_in_flight: timedelta,
    ) -> list[OutcomeRecord]:
        stuck: list[OutcomeRecord] = []
        try:
            async for redis_key in self._redis.scan_iter(match=f"{self._prefix}*"):
                raw = await self._redis.get(redis_key)
                if raw is None:
                    continue
                record = _loads(raw)
                if record.is_stuck(now, max_in_flight):
                    stuck.append(record)
        except RedisError as e:
            raise StorageUnavailableError("Failed to scan in-flight records", cause=e) from e
        return stuck

    async def wait_for_resolution(
        self,
        key: IdempotencyKey,
        timeout: float,
        poll_interval: float | None = None,
    ) -> OutcomeRecord | None:
        return await super().wait_for_resolution(
            key, timeout, poll_interval or self._poll_interval
        )

    def _redis_key(self, key: IdempotencyKey) -> str:
        return f"{self._prefix}{key.encode()}"

    @staticmethod
    def _owned_pending(handle: RecordHandle, raw: bytes | str | None) -> OutcomeRecord:
        if raw is None:
            raise InvalidHandleError(handle.key, "record not found")
        record = _loads(raw)
        if record.status.is_terminal:
            raise InvalidHandleError(handle.key, "record already completed")
        if record.owner_token != handle.token:
            raise InvalidHandleError(handle.key, "token mismatch")
        return record


def _dumps(record: OutcomeRecord) -> str:
    try:
        return json.dumps(record.to_dict(), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise IdempotencyError(
            code=IdempotencyErrorCodes.SERIALIZATION,
            message=f"Outcome is not JSON serializable: {record.key}",
            cause=e,
        ) from e


def _loads(raw: bytes | str) -> OutcomeRecord:
    try:
        return OutcomeRecord.from_dict(json.loads(raw))
    except (KeyError, TypeError, ValueError) as e:
        raise IdempotencyError(
            code=IdempotencyErrorCodes.SERIALIZATION,
            message="Stored value is not a valid outcome record",
            cause=e,
        ) from e


def _millis(delta: timedelta) -> int:
    return max(1, int(delta.total_seconds() * 1000))
