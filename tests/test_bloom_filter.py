# -*- coding: utf-8 -*-
"""
Test Bloom filter: tham số, không âm tính giả, FPR, snapshot, đa luồng.
"""

import math
import struct
import threading

import pytest

from availability.bloom.bloom_filter import BloomFilter
from availability.bloom.bloom_params import BloomParams
from availability.errors import InvalidParameter, SnapshotError

HEADER = struct.Struct(">4sBQIQdQ")


def test_params_for_one_million_are_exact():
    params = BloomParams.for_capacity(1_000_000, 0.001)
    assert params.m_bits == 14_377_588
    assert params.k_hash == 10

    expected_m = math.ceil(-1_000_000 * math.log(0.001) / (math.log(2) ** 2))
    assert params.m_bits == expected_m
    assert params.k_hash == math.ceil((expected_m / 1_000_000) * math.log(2))


def test_filter_uses_derived_params():
    bf = BloomFilter(1000, 0.01)
    params = BloomParams.for_capacity(1000, 0.01)
    assert bf.m_bits() == params.m_bits
    assert bf.k_hash() == params.k_hash


@pytest.mark.parametrize(
    "n, p",
    [(0, 0.01), (-10, 0.01), (100, 0.0), (100, 1.0), (100, 1.5), (100, -0.1), (1.5, 0.01)],
)
def test_invalid_parameters_rejected(n, p):
    with pytest.raises(InvalidParameter):
        BloomParams.for_capacity(n, p)
    with pytest.raises(ValueError):
        BloomFilter(n, p)


def test_empty_filter_contains_nothing():
    bf = BloomFilter(100, 0.01)
    assert not bf.might_contain("alice")
    assert "bob" not in bf
    assert len(bf) == 0


def test_no_false_negatives():
    bf = BloomFilter(2000, 0.01)
    keys = [f"user_{i}" for i in range(2000)]
    for key in keys:
        bf.add(key)
    assert all(bf.might_contain(k) for k in keys)

    # Thêm tiếp không làm mất khóa cũ
    bf.add_batch(f"extra_{i}" for i in range(500))
    assert all(bf.might_contain(k) for k in keys)


def test_keys_are_case_insensitive():
    bf = BloomFilter(100, 0.01)
    bf.add("Alice_01")
    assert bf.might_contain("alice_01")
    assert bf.might_contain("ALICE_01")


def test_add_is_idempotent_on_bits():
    bf = BloomFilter(500, 0.01)
    bf.add("alice")
    once = bf.serialize()[HEADER.size:]
    bits_once = bf.stats().bits_set

    bf.add("alice")
    twice = bf.serialize()[HEADER.size:]
    assert once == twice
    assert bf.stats().bits_set == bits_once


def test_inserted_count_tracks_add_attempts():
    bf = BloomFilter(100, 0.01)
    for _ in range(3):
        bf.add("alice")
    bf.add_batch(["alice", "bob"])

    assert bf.get_inserted_count() == 5
    assert len(bf) == 5
    assert bf.stats().fill_ratio == pytest.approx(5 / 100)


def test_empirical_fpr_close_to_target():
    n, p = 5000, 0.01
    bf = BloomFilter(n, p)
    bf.add_batch(f"member_{i}" for i in range(n))

    probes = [f"probe_{i}" for i in range(20_000)]
    false_positives = sum(1 for key in probes if bf.might_contain(key))
    empirical_fpr = false_positives / len(probes)

    assert empirical_fpr < 3 * p, f"FPR quá cao: {empirical_fpr:.4%}"


def test_stats_snapshot():
    bf = BloomFilter(1000, 0.01)
    fresh = bf.stats()
    assert fresh.inserted_count == 0
    assert fresh.fill_ratio == 0.0
    assert fresh.estimated_false_positive_rate == 0.0
    assert fresh.bits_set == 0

    bf.add_batch(f"user_{i}" for i in range(250))
    stats = bf.stats()
    k = stats.hash_function_count
    assert stats.bit_array_size == bf.m_bits()
    assert stats.expected_element_count == 1000
    assert stats.configured_false_positive_rate == 0.01
    assert stats.fill_ratio == pytest.approx(0.25)
    assert stats.estimated_false_positive_rate == pytest.approx((1 - math.exp(-k * 0.25)) ** k)
    assert 0 < stats.bits_set <= 250 * k
    assert stats.memory_bytes == (bf.m_bits() + 7) // 8
    assert stats.to_dict()["inserted_count"] == 250


def test_standard_fpr_estimate():
    bf = BloomFilter(1000, 0.01)
    bf.add_batch(f"user_{i}" for i in range(1000))
    m, k = bf.m_bits(), bf.k_hash()
    assert bf.estimate_fpr() == pytest.approx((1 - math.exp(-k * 1000 / m)) ** k)
    assert bf.estimate_fpr() < 0.02


def test_serialize_reconstruct_roundtrip():
    bf = BloomFilter(1000, 0.01)
    bf.add_batch(f"user_{i}" for i in range(300))
    bf.add("user_0")

    blob = bf.serialize()
    restored = BloomFilter.reconstruct(blob)

    assert restored.m_bits() == bf.m_bits()
    assert restored.k_hash() == bf.k_hash()
    assert restored.expected_items() == 1000
    assert restored.false_positive_rate() == 0.01
    assert restored.get_inserted_count() == 301
    assert restored.serialize() == blob
    assert all(restored.might_contain(f"user_{i}") for i in range(300))
    probes = [f"probe_{i}" for i in range(2000)]
    assert [restored.might_contain(k) for k in probes] == [bf.might_contain(k) for k in probes]


def test_dump_and_load(tmp_path):
    bf = BloomFilter(100, 0.01)
    bf.add("alice")
    path = tmp_path / "bloom.snapshot"
    bf.dump(str(path))

    loaded = BloomFilter.load(str(path))
    assert loaded.might_contain("alice")
    assert loaded.serialize() == bf.serialize()


def _tamper(blob: bytes, **changes) -> bytes:
    fields = dict(zip(("magic", "version", "m", "k", "n", "p", "inserted"), HEADER.unpack_from(blob, 0)))
    fields.update(changes)
    return HEADER.pack(*fields.values()) + blob[HEADER.size:]


def test_reconstruct_rejects_corrupt_snapshots():
    bf = BloomFilter(100, 0.01)
    bf.add("alice")
    blob = bf.serialize()

    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(blob[:10])
    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(blob[:-1])
    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(_tamper(blob, magic=b"XXXX"))
    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(_tamper(blob, version=99))
    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(_tamper(blob, k=bf.k_hash() + 1))
    with pytest.raises(SnapshotError):
        BloomFilter.reconstruct(_tamper(blob, p=2.0))
    # SnapshotError cũng là InvalidParameter
    with pytest.raises(InvalidParameter):
        BloomFilter.reconstruct(b"")


def test_concurrent_adds_lose_nothing():
    bf = BloomFilter(4000, 0.01)
    barrier = threading.Barrier(8)

    def worker(tid: int) -> None:
        barrier.wait()
        for i in range(500):
            bf.add(f"t{tid}_user_{i}")

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert bf.get_inserted_count() == 4000
    assert all(bf.might_contain(f"t{t}_user_{i}") for t in range(8) for i in range(500))
