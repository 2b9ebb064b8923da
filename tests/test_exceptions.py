"""IdempotencyError 系のユニットテスト"""

from k1s0_idempotency_coordinator import (
    ConcurrentInFlightError,
    IdempotencyError,
    IdempotencyErrorCodes,
    IdempotencyKey,
    InvalidHandleError,
    KeyReuseMismatchError,
    StorageUnavailableError,
)

KEY = IdempotencyKey("create-order", "order-42")


def test_error_str() -> None:
    """str 表現が 'CODE: message' 形式であること。"""
    err = IdempotencyError(code="READ_FILE_ERROR", message="read failed")
    assert str(err) == "READ_FILE_ERROR: read failed"


def test_error_with_cause() -> None:
    cause = OSError("disk")
    err = StorageUnavailableError("store down", cause=cause)
    assert err.__cause__ is cause
    assert err.code == IdempotencyErrorCodes.STORAGE_UNAVAILABLE


def test_http_status_mapping() -> None:
    assert StorageUnavailableError("x").http_status == 503
    assert ConcurrentInFlightError(KEY).http_status == 409
    assert KeyReuseMismatchError(KEY, "a", "b").http_status == 422
    assert InvalidHandleError(KEY, "token mismatch").http_status == 500


def test_error_codes() -> None:
    assert ConcurrentInFlightError(KEY).code == "CONCURRENT_IN_FLIGHT"
    assert KeyReuseMismatchError(KEY, "a", "b").code == "KEY_REUSE_MISMATCH"
    assert InvalidHandleError(KEY, "x").code == "INVALID_HANDLE"


def test_errors_carry_key() -> None:
    err = KeyReuseMismatchError(KEY, expected="a", actual="b")
    assert err.key == KEY
    assert err.expected == "a"
    assert "create-order:order-42" in str(err)
