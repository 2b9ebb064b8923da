"""操作種別ごとの冪等ポリシー"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from .models import to_timedelta


class InFlightPolicy(Enum):
    """実行中レコードに対する重複リクエストの扱い。"""

    WAIT = "wait"
    REJECT = "reject"


@dataclass(frozen=True)
class OperationPolicy:
    """操作種別ごとの冪等ポリシー。

    permanent_errors に該当しない例外はすべてリトライ可能として扱う。
    """

    ttl: timedelta = timedelta(hours=24)
    permanent_errors: tuple[type[BaseException], ...] = field(default=())
    in_flight: InFlightPolicy = InFlightPolicy.REJECT
    wait_timeout: float = 5.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "ttl", to_timedelta(self.ttl))
        if self.wait_timeout < 0:
            raise ValueError("wait_timeout must not be negative")

    def is_permanent(self, error: BaseException) -> bool:
        return isinstance(error, self.permanent_errors)
