"""データモデルのユニットテスト"""

from datetime import datetime, timedelta, timezone

import pytest
from k1s0_idempotency_coordinator import IdempotencyKey, OutcomeRecord, OutcomeStatus
from k1s0_idempotency_coordinator.models import to_timedelta

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_key_encode_scopes_by_operation() -> None:
    """operation_id ごとに異なるストレージキーになること。"""
    a = IdempotencyKey("create-order", "k-1")
    b = IdempotencyKey("refund-order", "k-1")
    assert a.encode() == "create-order:k-1"
    assert a.encode() != b.encode()
    assert a != b


def test_key_decode_keeps_colons_in_key() -> None:
    """キー側のコロンは保持されること。"""
    key = IdempotencyKey.decode("create-order:tenant:42")
    assert key.operation_id == "create-order"
    assert key.key == "tenant:42"


@pytest.mark.parametrize(
    ("operation_id", "key", "message"),
    [
        ("", "k", "operation_id cannot be empty"),
        ("a:b", "k", "cannot contain"),
        ("op", "", "key cannot be empty"),
    ],
)
def test_key_validation(operation_id: str, key: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        IdempotencyKey(operation_id, key)


def test_pending_record_never_expires() -> None:
    """PENDING は TTL を過ぎても期限切れ扱いにならないこと。"""
    record = OutcomeRecord(
        key=IdempotencyKey("op", "k"),
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=1),
    )
    assert record.is_expired(NOW + timedelta(hours=1)) is False


def test_terminal_record_expires() -> None:
    record = OutcomeRecord(
        key=IdempotencyKey("op", "k"),
        status=OutcomeStatus.COMPLETED,
        result={"ok": True},
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=10),
    )
    assert record.is_expired(NOW + timedelta(seconds=9)) is False
    assert record.is_expired(NOW + timedelta(seconds=10)) is True


def test_is_stuck() -> None:
    record = OutcomeRecord(key=IdempotencyKey("op", "k"), created_at=NOW)
    assert record.is_stuck(NOW + timedelta(minutes=4), timedelta(minutes=5)) is False
    assert record.is_stuck(NOW + timedelta(minutes=5), timedelta(minutes=5)) is True


def test_record_dict_conversion() -> None:
    """to_dict / from_dict で内容が保たれること。"""
    record = OutcomeRecord(
        key=IdempotencyKey("create-order", "order-42"),
        status=OutcomeStatus.COMPLETED,
        result={"orderId": 42},
        payload_hash="abc",
        created_at=NOW,
        expires_at=NOW + timedelta(hours=1),
        completed_at=NOW,
    )
    restored = OutcomeRecord.from_dict(record.to_dict())
    assert restored == record
    assert restored.expires_at == NOW + timedelta(hours=1)


def test_owner_token_not_compared() -> None:
    a = OutcomeRecord(key=IdempotencyKey("op", "k"), created_at=NOW, owner_token="x")
    b = OutcomeRecord(key=IdempotencyKey("op", "k"), created_at=NOW, owner_token="y")
    assert a == b


def test_to_timedelta() -> None:
    assert to_timedelta(30) == timedelta(seconds=30)
    assert to_timedelta(timedelta(minutes=1)) == timedelta(minutes=1)
    with pytest.raises(ValueError, match="ttl must be positive"):
        to_timedelta(0)


def test_status_values() -> None:
    assert OutcomeStatus.PENDING.value == "pending"
    assert OutcomeStatus.COMPLETED.value == "completed"
    assert OutcomeStatus.FAILED.value == "failed"
    assert OutcomeStatus.PENDING.is_terminal is False
    assert OutcomeStatus.FAILED.is_terminal is True
