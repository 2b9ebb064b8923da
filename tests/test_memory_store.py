"""InMemoryKeyStore 固有のユニットテスト"""

import asyncio

import pytest
from k1s0_idempotency_coordinator import (
    Began,
    IdempotencyKey,
    InMemoryKeyStore,
    OutcomeStatus,
    StorageUnavailableError,
)


def key(name: str) -> IdempotencyKey:
    return IdempotencyKey("create-order", name)


def test_invalid_max_entries() -> None:
    with pytest.raises(ValueError, match="max_entries must be positive"):
        InMemoryKeyStore(max_entries=0)


async def test_capacity_full_of_unexpired_terminal_raises(clock) -> None:
    """期限内の完了済みレコードで満杯なら追い出さずに StorageUnavailableError。"""
    store = InMemoryKeyStore(max_entries=2, clock=clock)
    first = await store.try_begin_or_get(key("a"), 3600)
    await store.complete(first.handle, OutcomeStatus.COMPLETED, "a")
    clock.advance(seconds=1)
    second = await store.try_begin_or_get(key("b"), 3600)
    await store.complete(second.handle, OutcomeStatus.COMPLETED, "b")

    with pytest.raises(StorageUnavailableError):
        await store.try_begin_or_get(key("c"), 3600)
    assert len(store) == 2
    assert (await store.get(key("a"))).result == "a"
    assert (await store.get(key("b"))).result == "b"


async def test_capacity_prefers_expired(clock) -> None:
    store = InMemoryKeyStore(max_entries=2, clock=clock)
    short = await store.try_begin_or_get(key("short"), 10)
    await store.complete(short.handle, OutcomeStatus.COMPLETED, "s")
    clock.advance(seconds=1)
    long = await store.try_begin_or_get(key("long"), 3600)
    await store.complete(long.handle, OutcomeStatus.COMPLETED, "l")
    clock.advance(seconds=20)

    assert isinstance(await store.try_begin_or_get(key("new"), 3600), Began)
    assert await store.get(key("long")) is not None


async def test_capacity_full_of_pending_raises(clock) -> None:
    """PENDING だけで満杯なら StorageUnavailableError。"""
    store = InMemoryKeyStore(max_entries=1, clock=clock)
    await store.try_begin_or_get(key("a"), 3600)
    with pytest.raises(StorageUnavailableError):
        await store.try_begin_or_get(key("b"), 3600)


async def test_returned_record_is_a_copy(memory_store) -> None:
    """取得したレコードを変更してもストアの内容は変わらないこと。"""
    begun = await memory_store.try_begin_or_get(key("a"), 3600)
    await memory_store.complete(begun.handle, OutcomeStatus.COMPLETED, "v")
    record = await memory_store.get(key("a"))
    record.status = OutcomeStatus.FAILED
    assert (await memory_store.get(key("a"))).status == OutcomeStatus.COMPLETED


async def test_abandon_wakes_waiters(memory_store) -> None:
    begun = await memory_store.try_begin_or_get(key("a"), 3600)
    waiter = asyncio.create_task(memory_store.wait_for_resolution(key("a"), timeout=5.0))
    await asyncio.sleep(0)
    await memory_store.abandon(begun.handle)
    assert await asyncio.wait_for(waiter, timeout=1.0) is None
