"""RequestCoordinator: 冪等キー単位の単一実行制御"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from .exceptions import ConcurrentInFlightError, KeyReuseMismatchError, StorageUnavailableError
from .metrics import conflicts_total, executions_total, replays_total
from .models import (
    Began,
    IdempotencyKey,
    OutcomeRecord,
    OutcomeStatus,
    RecordHandle,
    to_timedelta,
    utcnow,
)
from .policy import InFlightPolicy, OperationPolicy
from .store import KeyStore

logger = structlog.get_logger(__name__)

Operation = Callable[[], Any]


class RequestCoordinator:
    """同一冪等キーに対する操作の副作用を TTL 内で高々 1 回に制限する。

    最初の呼び出しだけが operation を実行し、重複した呼び出しは記録済みの
    OutcomeRecord を受け取る。
    """

    def __init__(
        self,
        store: KeyStore,
        default_policy: OperationPolicy | None = None,
        policies: Mapping[str, OperationPolicy] | None = None,
        *,
        fail_open: bool = False,
    ) -> None:
        self._store = store
        self._default_policy = default_policy or OperationPolicy()
        self._policies: dict[str, OperationPolicy] = dict(policies or {})
        self._fail_open = fail_open

    def register_policy(self, operation_id: str, policy: OperationPolicy) -> None:
        """操作種別ごとのポリシーを登録する。"""
        self._policies[operation_id] = policy

    def policy_for(self, operation_id: str) -> OperationPolicy:
        return self._policies.get(operation_id, self._default_policy)

    async def execute(
        self,
        operation_id: str,
        key: str,
        operation: Operation,
        *,
        ttl: timedelta | float | None = None,
        payload_hash: str | None = None,
    ) -> OutcomeRecord:
        """冪等キーの下で operation を実行し、その結果レコードを返す。

        Args:
            operation_id: 操作種別
            key: 呼び出し元が指定する冪等キー
            operation: 引数なしの callable（コルーチン関数も可）
            ttl: 完了後の結果保持期間。省略時はポリシーの ttl
            payload_hash: リクエストペイロードのハッシュ

        Returns:
            COMPLETED または FAILED（永続エラー）の OutcomeRecord

        Raises:
            ConcurrentInFlightError: 同一キーの実行が進行中の場合
            KeyReuseMismatchError: 同一キーが異なるペイロードで使われた場合
            StorageUnavailableError: ストアに到達できず fail-closed の場合
            Exception: リトライ可能なエラーは operation の例外をそのまま送出する
        """
        policy = self.policy_for(operation_id)
        scoped = IdempotencyKey(operation_id=operation_id, key=key)
        retention = to_timedelta(ttl) if ttl is not None else policy.ttl
        log = logger.bind(scoped_key=str(scoped), operation_id=operation_id)
        loop = asyncio.get_running_loop()
        deadline: float | None = None

        while True:
            try:
                begun = await self._store.try_begin_or_get(scoped, retention, payload_hash)
            except StorageUnavailableError as e:
                if not self._fail_open:
                    raise
                log.warning("idempotency store unavailable, executing without guarantee", error=str(e))
                return await self._execute_unguarded(scoped, operation, payload_hash)

            if isinstance(begun, Began):
                return await self._run_owner(begun.handle, operation, policy, payload_hash, log)

            record = begun.record
            self._check_payload(record, payload_hash, log)
            if record.status.is_terminal:
                replays_total.add(1, {"operation_id": operation_id})
                log.info("idempotent replay served", status=record.status.value)
                return record

            if policy.in_flight is InFlightPolicy.REJECT:
                conflicts_total.add(1, {"operation_id": operation_id, "reason": "in_flight"})
                log.info("duplicate rejected while in flight")
                raise ConcurrentInFlightError(scoped)

            if deadline is None:
                deadline = loop.time() + policy.wait_timeout
            remaining = deadline - loop.time()
            if remaining <= 0:
                conflicts_total.add(1, {"operation_id": operation_id, "reason": "wait_timeout"})
                log.info("duplicate wait timed out", wait_timeout=policy.wait_timeout)
                raise ConcurrentInFlightError(scoped, waited=policy.wait_timeout)
            log.debug("waiting for in-flight execution", remaining=remaining)
            # 解決後は再判定する。破棄された場合はこの呼び出しが実行権を得る
            await self._store.wait_for_resolution(scoped, remaining)

    async def _run_owner(
        self,
        handle: RecordHandle,
        operation: Operation,
        policy: OperationPolicy,
        payload_hash: str | None,
        log: structlog.stdlib.BoundLogger,
    ) -> OutcomeRecord:
        executions_total.add(1, {"operation_id": handle.key.operation_id})
        log.debug("executing operation")
        try:
            result = await _invoke(operation)
        except asyncio.CancelledError:
            log.warning("operation owner cancelled, record left pending")
            raise
        except Exception as e:
            if policy.is_permanent(e):
                log.info("permanent failure recorded", error=str(e))
                return await self._record(
                    handle, OutcomeStatus.FAILED, _error_info(e), payload_hash, log
                )
            log.info("retryable failure, releasing key", error=str(e))
            try:
                await self._store.abandon(handle)
            except StorageUnavailableError as se:
                log.error("failed to release key after retryable failure", error=str(se))
            raise
        log.info("operation completed")
        return await self._record(handle, OutcomeStatus.COMPLETED, result, payload_hash, log)

    async def _record(
        self,
        handle: RecordHandle,
        status: OutcomeStatus,
        payload: Any,
        payload_hash: str | None,
        log: structlog.stdlib.BoundLogger,
    ) -> OutcomeRecord:
        try:
            return await self._store.complete(handle, status, payload)
        except StorageUnavailableError as e:
            # 実行済みなので例外にはせず、記録できなかった結果をそのまま返す
            log.error("operation applied but outcome not recorded", error=str(e))
            return _unrecorded(handle.key, status, payload, payload_hash)

    async def _execute_unguarded(
        self,
        key: IdempotencyKey,
        operation: Operation,
        payload_hash: str | None,
    ) -> OutcomeRecord:
        executions_total.add(1, {"operation_id": key.operation_id})
        result = await _invoke(operation)
        return _unrecorded(key, OutcomeStatus.COMPLETED, result, payload_hash)

    @staticmethod
    def _check_payload(
        record: OutcomeRecord,
        payload_hash: str | None,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        if payload_hash is None or record.payload_hash is None:
            return
        if payload_hash != record.payload_hash:
            conflicts_total.add(1, {"operation_id": record.key.operation_id, "reason": "mismatch"})
            log.warning("idempotency key reused with a different payload")
            raise KeyReuseMismatchError(record.key, expected=record.payload_hash, actual=payload_hash)


async def _invoke(operation: Operation) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


def _error_info(error: Exception) -> dict[str, Any]:
    return {"type": type(error).__name__, "message": str(error)}


def _unrecorded(
    key: IdempotencyKey,
    status: OutcomeStatus,
    payload: Any,
    payload_hash: str | None,
) -> OutcomeRecord:
    now = utcnow()
    return OutcomeRecord(
        key=key,
        status=status,
        result=payload if status is OutcomeStatus.COMPLETED else None,
        error_info=payload if status is OutcomeStatus.FAILED else None,
        payload_hash=payload_hash,
        created_at=now,
        completed_at=now,
    )
