"""リクエストペイロードのハッシュ計算"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def compute_payload_hash(payload: Any) -> str:
    """ペイロードの SHA-256 ハッシュ（16 進文字列）を返す。

    bytes / str はそのまま、それ以外はキー順を固定した JSON に正規化してから計算する。
    """
    if isinstance(payload, bytes):
        data = payload
    elif isinstance(payload, str):
        data = payload.encode("utf-8")
    else:
        data = json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        ).encode("utf-8")
    return hashlib.sha256(data).hexdigest()
