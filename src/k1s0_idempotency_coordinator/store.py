"""KeyStore 抽象基底クラス"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from .models import BeginResult, IdempotencyKey, OutcomeRecord, OutcomeStatus, RecordHandle


class KeyStore(ABC):
    """冪等キーから実行結果レコードへの対応を保持するストア。

    try_begin_or_get の存在確認と挿入は単一のアトミック操作でなければならない。
    """

    @abstractmethod
    async def try_begin_or_get(
        self,
        key: IdempotencyKey,
        ttl: timedelta | float,
        payload_hash: str | None = None,
    ) -> BeginResult:
        """キーが未登録なら PENDING レコードを挿入して Began、登録済みなら Existing を返す。

        期限切れの完了済みレコードは未登録として扱う。
        """
        ...

    @abstractmethod
    async def complete(
        self,
        handle: RecordHandle,
        status: OutcomeStatus,
        payload: Any,
    ) -> OutcomeRecord:
        """PENDING レコードを完了状態に遷移させる。

        Raises:
            InvalidHandleError: レコードが存在しないか既に完了している場合
        """
        ...

    @abstractmethod
    async def abandon(self, handle: RecordHandle) -> None:
        """PENDING レコードを削除し、同一キーでの再実行を許可する。"""
        ...

    @abstractmethod
    async def evict_expired(self, now: datetime | None = None) -> int:
        """期限切れの完了済みレコードを削除し、削除件数を返す。PENDING は削除しない。"""
        ...

    @abstractmethod
    async def get(self, key: IdempotencyKey) -> OutcomeRecord | None:
        """キーに対応するレコードを取得する。期限切れなら None。"""
        ...

    @abstractmethod
    async def find_stuck(
        self,
        now: datetime,
        max_in_flight: timedelta,
    ) -> list[OutcomeRecord]:
        """max_in_flight を超えて PENDING のままのレコードを返す。"""
        ...

    async def wait_for_resolution(
        self,
        key: IdempotencyKey,
        timeout: float,
        poll_interval: float = 0.05,
    ) -> OutcomeRecord | None:
        """レコードが PENDING でなくなるか timeout 秒が経過するまで待機する。

        戻り値は待機後のレコード（タイムアウト時は PENDING のまま、削除済みなら None）。
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            record = await self.get(key)
            if record is None or record.status.is_terminal:
                return record
            remaining = deadline - loop.time()
            if remaining <= 0:
                return record
            await asyncio.sleep(min(poll_interval, remaining))

    async def close(self) -> None:
        """ストアが保持するリソースを解放する。"""
