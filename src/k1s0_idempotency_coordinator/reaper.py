"""ExpiryReaper: asyncio Task ベースの期限切れレコード掃除"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from .metrics import evictions_total, stuck_in_flight_total
from .models import IdempotencyKey, utcnow
from .store import KeyStore

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """1 回の掃除の結果。"""

    evicted: int = 0
    stuck: list[IdempotencyKey] = field(default_factory=list)


class ExpiryReaper:
    """KeyStore.evict_expired を一定間隔で呼び出すバックグラウンド処理。

    メモリ回収のための最適化であり、期限判定の正しさは読み出し時のチェックが担う。
    max_in_flight を超えた PENDING レコードは削除せず、エラーログで通知する。
    """

    def __init__(
        self,
        store: KeyStore,
        interval_seconds: float = 60.0,
        max_in_flight_seconds: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = interval_seconds
        self._max_in_flight = timedelta(seconds=max_in_flight_seconds)
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """掃除タスクを開始する。"""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """掃除タスクを停止する。"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def sweep_once(self) -> SweepResult:
        """期限切れレコードを削除し、滞留している PENDING レコードを検出する。"""
        now = self._clock()
        result = SweepResult(evicted=await self._store.evict_expired(now))
        if result.evicted:
            evictions_total.add(result.evicted)
            logger.info("expired idempotency records evicted", count=result.evicted)

        for record in await self._store.find_stuck(now, self._max_in_flight):
            result.stuck.append(record.key)
            stuck_in_flight_total.add(1, {"operation_id": record.key.operation_id})
            logger.error(
                "idempotency record stuck in flight",
                scoped_key=str(record.key),
                created_at=record.created_at.isoformat(),
                max_in_flight_seconds=self._max_in_flight.total_seconds(),
            )
        return result

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("expiry sweep failed", error=str(e))
            await asyncio.sleep(self._interval)
