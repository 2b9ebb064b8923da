"""idempotency coordinator ライブラリの例外型定義"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import IdempotencyKey


class IdempotencyError(Exception):
    """idempotency coordinator ライブラリのエラー基底クラス。

    http_status はトランスポート層がレスポンスへ変換する際の推奨ステータス。
    """

    http_status: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class IdempotencyErrorCodes:
    """IdempotencyError のエラーコード定数。"""

    STORAGE_UNAVAILABLE: str = "STORAGE_UNAVAILABLE"
    CONCURRENT_IN_FLIGHT: str = "CONCURRENT_IN_FLIGHT"
    KEY_REUSE_MISMATCH: str = "KEY_REUSE_MISMATCH"
    INVALID_HANDLE: str = "INVALID_HANDLE"
    SERIALIZATION: str = "SERIALIZATION_ERROR"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"


class StorageUnavailableError(IdempotencyError):
    """バックエンドストアに到達できない場合のエラー。"""

    http_status = 503

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(IdempotencyErrorCodes.STORAGE_UNAVAILABLE, message, cause)


class ConcurrentInFlightError(IdempotencyError):
    """同一キーのリクエストが実行中の場合のエラー。"""

    http_status = 409

    def __init__(self, key: IdempotencyKey, waited: float | None = None) -> None:
        self.key = key
        self.waited = waited
        if waited is None:
            message = f"同一キーのリクエストが処理中です: {key}"
        else:
            message = f"同一キーのリクエストが {waited:.1f} 秒以内に完了しませんでした: {key}"
        super().__init__(IdempotencyErrorCodes.CONCURRENT_IN_FLIGHT, message)


class KeyReuseMismatchError(IdempotencyError):
    """同一キーが異なるペイロードで再利用された場合のエラー。"""

    http_status = 422

    def __init__(self, key: IdempotencyKey, expected: str, actual: str) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            IdempotencyErrorCodes.KEY_REUSE_MISMATCH,
            f"キーが異なるペイロードで再利用されました: {key}",
        )


class InvalidHandleError(IdempotencyError):
    """ハンドルが指すレコードが存在しないか既に完了している場合のエラー。"""

    def __init__(self, key: IdempotencyKey, reason: str) -> None:
        self.key = key
        super().__init__(
            IdempotencyErrorCodes.INVALID_HANDLE,
            f"無効なハンドルです ({reason}): {key}",
        )
