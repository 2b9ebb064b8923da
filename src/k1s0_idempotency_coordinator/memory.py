"""InMemoryKeyStore 実装"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from .exceptions import InvalidHandleError, StorageUnavailableError
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


class InMemoryKeyStore(KeyStore):
    """インメモリキーストア。

    重複排除の保証は単一プロセス内に限られる。複数インスタンス構成では
    RedisKeyStore を使うこと。
    """

    def __init__(
        self,
        max_entries: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._records: dict[IdempotencyKey, OutcomeRecord] = {}
        self._waiters: dict[IdempotencyKey, asyncio.Event] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def try_begin_or_get(
        self,
        key: IdempotencyKey,
        ttl: timedelta | float,
        payload_hash: str | None = None,
    ) -> BeginResult:
        ttl = to_timedelta(ttl)
        async with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is not None and record.is_expired(now):
                del self._records[key]
                record = None
            if record is not None:
                return Existing(replace(record))

            self._ensure_capacity(now)
            token = uuid.uuid4().hex
            self._records[key] = OutcomeRecord(
                key=key,
                payload_hash=payload_hash,
                created_at=now,
                expires_at=now + ttl,
                owner_token=token,
            )
            self._waiters[key] = asyncio.Event()
            return Began(RecordHandle(key=key, token=token))

    async def complete(
        self,
        handle: RecordHandle,
        status: OutcomeStatus,
        payload: Any,
    ) -> OutcomeRecord:
        if not status.is_terminal:
            raise ValueError("status must be COMPLETED or FAILED")
        async with self._lock:
            record = self._owned_pending(handle)
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
            self._notify(handle.key)
            return replace(record)

    async def abandon(self, handle: RecordHandle) -> None:
        async with self._lock:
            self._owned_pending(handle)
            del self._records[handle.key]
            self._notify(handle.key)

    async def evict_expired(self, now: datetime | None = None) -> int:
        async with self._lock:
            now = now or self._clock()
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
            return len(expired)

    async def get(self, key: IdempotencyKey) -> OutcomeRecord | None:
        record = self._records.get(key)
        if record is None or record.is_expired(self._clock()):
            return None
        return replace(record)

    async def find_stuck(
        self,
        now: datetime,
        max_in_flight: timedelta,
    ) -> list[OutcomeRecord]:
        return [replace(r) for r in self._records.values() if r.is_stuck(now, max_in_flight)]

    async def wait_for_resolution(
        self,
        key: IdempotencyKey,
        timeout: float,
        poll_interval: float = 0.05,
    ) -> OutcomeRecord | None:
        async with self._lock:
            record = self._records.get(key)
            if record is None or record.status.is_terminal:
                return await self.get(key)
            event = self._waiters.setdefault(key, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return await self.get(key)

    def _owned_pending(self, handle: RecordHandle) -> OutcomeRecord:
        record = self._records.get(handle.key)
        if record is None:
            raise InvalidHandleError(handle.key, "record not found")
        if record.status.is_terminal:
            raise InvalidHandleError(handle.key, "record already completed")
        if record.owner_token != handle.token:
            raise InvalidHandleError(handle.key, "token mismatch")
        return record

    def _notify(self, key: IdempotencyKey) -> None:
        event = self._waiters.pop(key, None)
        if event is not None:
            event.set()

    def _ensure_capacity(self, now: datetime) -> None:
        if self._max_entries is None or len(self._records) < self._max_entries:
            return
        for key in [k for k, r in self._records.items() if r.is_expired(now)]:
            del self._records[key]
        if len(self._records) < self._max_entries:
            return
        # 期限内のレコードは追い出さない
        raise StorageUnavailableError(
            f"in-memory key store is full (max_entries={self._max_entries})"
        )
