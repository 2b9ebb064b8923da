"""設定型定義（pydantic BaseModel）"""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field

from .policy import InFlightPolicy, OperationPolicy


class RedisSection(BaseModel):
    """Redis 接続設定。"""

    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: str = ""
    db: int = Field(default=0, ge=0)
    key_prefix: str = "idempotency:"


class StoreSection(BaseModel):
    """キーストア設定。"""

    backend: Literal["memory", "redis"] = "memory"
    max_entries: int | None = Field(default=10000, ge=1)
    redis: RedisSection = Field(default_factory=RedisSection)


class OperationSection(BaseModel):
    """操作種別ごとの上書き設定。未指定の項目は全体設定を使う。"""

    ttl_seconds: float | None = Field(default=None, gt=0)
    in_flight: Literal["wait", "reject"] | None = None
    wait_timeout_seconds: float | None = Field(default=None, ge=0)


class IdempotencyConfig(BaseModel):
    """冪等処理の設定全体。"""

    default_ttl_seconds: float = Field(default=86400, gt=0)
    fail_open: bool = False
    in_flight: Literal["wait", "reject"] = "reject"
    wait_timeout_seconds: float = Field(default=5.0, ge=0)
    max_in_flight_seconds: float = Field(default=300, gt=0)
    reaper_interval_seconds: float = Field(default=60, gt=0)
    store: StoreSection = Field(default_factory=StoreSection)
    operations: dict[str, OperationSection] = Field(default_factory=dict)

    def default_policy(self) -> OperationPolicy:
        return OperationPolicy(
            ttl=timedelta(seconds=self.default_ttl_seconds),
            in_flight=InFlightPolicy(self.in_flight),
            wait_timeout=self.wait_timeout_seconds,
        )

    def policy_for(
        self,
        operation_id: str,
        permanent_errors: tuple[type[BaseException], ...] = (),
    ) -> OperationPolicy:
        """operation_id 用のポリシーを返す。

        永続エラーとして扱う例外型は YAML では指定できないため引数で渡す。
        """
        section = self.operations.get(operation_id, OperationSection())
        ttl = section.ttl_seconds if section.ttl_seconds is not None else self.default_ttl_seconds
        wait_timeout = (
            section.wait_timeout_seconds
            if section.wait_timeout_seconds is not None
            else self.wait_timeout_seconds
        )
        return OperationPolicy(
            ttl=timedelta(seconds=ttl),
            permanent_errors=permanent_errors,
            in_flight=InFlightPolicy(section.in_flight or self.in_flight),
            wait_timeout=wait_timeout,
        )
