"""k1s0 idempotency coordinator library."""

from .config import IdempotencyConfig, OperationSection, RedisSection, StoreSection
from .coordinator import RequestCoordinator
from .exceptions import (
    ConcurrentInFlightError,
    IdempotencyError,
    IdempotencyErrorCodes,
    InvalidHandleError,
    KeyReuseMismatchError,
    StorageUnavailableError,
)
from .factory import build_coordinator, build_reaper, build_store
from .hashing import compute_payload_hash
from .loader import load
from .logger import new_logger
from .memory import InMemoryKeyStore
from .models import (
    Began,
    Existing,
    IdempotencyKey,
    OutcomeRecord,
    OutcomeStatus,
    RecordHandle,
)
from .policy import InFlightPolicy, OperationPolicy
from .reaper import ExpiryReaper, SweepResult
from .redis_store import RedisKeyStore
from .store import KeyStore

__all__ = [
    "Began",
    "ConcurrentInFlightError",
    "Existing",
    "ExpiryReaper",
    "IdempotencyConfig",
    "IdempotencyError",
    "IdempotencyErrorCodes",
    "IdempotencyKey",
    "InFlightPolicy",
    "InMemoryKeyStore",
    "InvalidHandleError",
    "KeyReuseMismatchError",
    "KeyStore",
    "OperationPolicy",
    "OperationSection",
    "OutcomeRecord",
    "OutcomeStatus",
    "RecordHandle",
    "RedisKeyStore",
    "RedisSection",
    "RequestCoordinator",
    "StorageUnavailableError",
    "StoreSection",
    "SweepResult",
    "build_coordinator",
    "build_reaper",
    "build_store",
    "compute_payload_hash",
    "load",
    "new_logger",
]
