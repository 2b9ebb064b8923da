"""ペイロードハッシュのユニットテスト"""

from k1s0_idempotency_coordinator import compute_payload_hash


def test_hash_ignores_key_order() -> None:
    assert compute_payload_hash({"a": 1, "b": 2}) == compute_payload_hash({"b": 2, "a": 1})


def test_hash_differs_for_different_payloads() -> None:
    assert compute_payload_hash({"orderId": 42}) != compute_payload_hash({"orderId": 99})


def test_bytes_and_str_hashed_directly() -> None:
    assert compute_payload_hash(b"abc") == compute_payload_hash("abc")
    assert compute_payload_hash("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
