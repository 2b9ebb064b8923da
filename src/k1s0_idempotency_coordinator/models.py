"""idempotency coordinator データモデル"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timedelta(ttl: timedelta | float) -> timedelta:
    """秒数または timedelta を正の timedelta に正規化する。"""
    if not isinstance(ttl, timedelta):
        ttl = timedelta(seconds=ttl)
    if ttl <= timedelta(0):
        raise ValueError("ttl must be positive")
    return ttl


class OutcomeStatus(Enum):
    """実行結果の状態。"""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OutcomeStatus.PENDING


@dataclass(frozen=True)
class IdempotencyKey:
    """操作種別でスコープされた冪等キー。

    同じキー文字列でも operation_id が異なれば別キーとして扱う。
    """

    operation_id: str
    key: str

    def __post_init__(self) -> None:
        if not self.operation_id:
            raise ValueError("operation_id cannot be empty")
        if ":" in self.operation_id:
            raise ValueError("operation_id cannot contain ':'")
        if not self.key:
            raise ValueError("key cannot be empty")

    def encode(self) -> str:
        """ストレージ用のキー文字列を返す。"""
        return f"{self.operation_id}:{self.key}"

    @classmethod
    def decode(cls, value: str) -> IdempotencyKey:
        operation_id, _, key = value.partition(":")
        return cls(operation_id=operation_id, key=key)

    def __str__(self) -> str:
        return self.encode()


@dataclass
class OutcomeRecord:
    """1 回の実行結果を表すレコード。

    COMPLETED では result、FAILED では error_info のみを持つ。
    PENDING ではどちらも持たない。
    """

    key: IdempotencyKey
    status: OutcomeStatus = OutcomeStatus.PENDING
    result: Any = None
    error_info: dict[str, Any] | None = None
    payload_hash: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    completed_at: datetime | None = None
    owner_token: str | None = field(default=None, repr=False, compare=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        """保持期限を過ぎた完了済みレコードか確認する。

        PENDING は TTL を過ぎても期限切れとしない。
        """
        if not self.status.is_terminal or self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_stuck(self, now: datetime, max_in_flight: timedelta) -> bool:
        return self.status is OutcomeStatus.PENDING and self.created_at + max_in_flight <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.key.operation_id,
            "key": self.key.key,
            "status": self.status.value,
            "result": self.result,
            "error_info": self.error_info,
            "payload_hash": self.payload_hash,
            "created_at": self.created_at.isoformat(),
            "expires_at": _isoformat(self.expires_at),
            "completed_at": _isoformat(self.completed_at),
            "owner_token": self.owner_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutcomeRecord:
        return cls(
            key=IdempotencyKey(operation_id=data["operation_id"], key=data["key"]),
            status=OutcomeStatus(data["status"]),
            result=data.get("result"),
            error_info=data.get("error_info"),
            payload_hash=data.get("payload_hash"),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=_parse_datetime(data.get("expires_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            owner_token=data.get("owner_token"),
        )


@dataclass(frozen=True)
class RecordHandle:
    """PENDING レコードを完了させる排他的な権利。"""

    key: IdempotencyKey
    token: str


@dataclass(frozen=True)
class Began:
    """新しい PENDING レコードを作成し、実行権を得たことを表す。"""

    handle: RecordHandle


@dataclass(frozen=True)
class Existing:
    """既存レコードが見つかったことを表す。"""

    record: OutcomeRecord


BeginResult = Union[Began, Existing]


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None
