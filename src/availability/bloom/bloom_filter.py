"""Triển khai Bloom filter cho kiểm tra username "chắc chắn chưa có" cực nhanh."""
from __future__ import annotations

import math
import struct
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable

import mmh3
from bitarray import bitarray

from availability.bloom.bloom_params import BloomParams
from availability.errors import InvalidParameter, SnapshotError

# magic, version, m, k, n, p, inserted_count
_SNAPSHOT_HEADER = struct.Struct(">4sBQIQdQ")
_SNAPSHOT_MAGIC = b"BLMF"
_SNAPSHOT_VERSION = 1

_SEED_1 = 0
_SEED_2 = 42


@dataclass(frozen=True)
class FilterStats:
    """Ảnh chụp chẩn đoán của Bloom filter (không ảnh hưởng tính đúng)."""

    bit_array_size: int
    hash_function_count: int
    expected_element_count: int
    configured_false_positive_rate: float
    inserted_count: int
    fill_ratio: float
    estimated_false_positive_rate: float
    bits_set: int
    memory_bytes: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BloomFilter:
    """
    Bloom filter cho username:
    - m, k suy ra từ (n, p) theo công thức chuẩn, cố định sau khi khởi tạo
    - Double hashing từ 2 lần mmh3.hash128 (seed khác nhau) trên khóa chữ thường
    - Bit chỉ chuyển 0 -> 1; muốn "xóa" phải dựng lại toàn bộ filter
    - Ghi bit có lock, đọc không cần lock
    """

    def __init__(self, expected_items: int, false_positive_rate: float) -> None:
        params = BloomParams.for_capacity(expected_items, false_positive_rate)
        self._n = expected_items
        self._p = false_positive_rate
        self._m = params.m_bits
        self._k = params.k_hash
        self._bits = bitarray(self._m, endian="big")
        self._bits.setall(0)
        self._inserted = 0
        self._lock = threading.Lock()

    def add(self, key: str) -> None:
        """Thêm một username (đặt k bit tương ứng). Thêm lại cùng khóa không đổi mảng bit."""
        positions = self._positions(key)
        with self._lock:
            for pos in positions:
                self._bits[pos] = 1
            self._inserted += 1

    def add_batch(self, keys: Iterable[str]) -> int:
        """Thêm nhiều username một lượt (dùng khi warm-up từ store), trả về số khóa đã thêm."""
        all_positions = [self._positions(key) for key in keys]
        with self._lock:
            for positions in all_positions:
                for pos in positions:
                    self._bits[pos] = 1
            self._inserted += len(all_positions)
        return len(all_positions)

    def might_contain(self, key: str) -> bool:
        """False: chắc chắn chưa có; True: có thể đã có (cần hỏi nguồn chính xác)."""
        # Không lock: bit không bao giờ bị xóa nên reader chỉ có thể thấy thêm dương tính giả.
        bits = self._bits
        for pos in self._positions(key):
            if not bits[pos]:
                return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.might_contain(key)

    def __len__(self) -> int:
        return self._inserted

    def estimate_fpr(self) -> float:
        """Ước lượng xác suất dương tính giả dựa trên công thức Bloom chuẩn (1 - e^(-k n/m))^k."""
        exponent = -self._k * self._inserted / float(self._m)
        return (1.0 - math.exp(exponent)) ** self._k

    def stats(self) -> FilterStats:
        """Ảnh chụp chẩn đoán; estimated_false_positive_rate = (1 - e^(-k * fill_ratio))^k."""
        with self._lock:
            inserted = self._inserted
            bits_set = self._bits.count(1)
        fill_ratio = inserted / float(self._n)
        return FilterStats(
            bit_array_size=self._m,
            hash_function_count=self._k,
            expected_element_count=self._n,
            configured_false_positive_rate=self._p,
            inserted_count=inserted,
            fill_ratio=fill_ratio,
            estimated_false_positive_rate=(1.0 - math.exp(-self._k * fill_ratio)) ** self._k,
            bits_set=bits_set,
            memory_bytes=(self._m + 7) // 8,
        )

    def get_inserted_count(self) -> int:
        """Số lần gọi add (tính cả khóa trùng)."""
        return self._inserted

    def m_bits(self) -> int:
        """Lấy tổng số bit của Bloom filter."""
        return self._m

    def k_hash(self) -> int:
        """Lấy số hàm băm đang dùng."""
        return self._k

    def expected_items(self) -> int:
        return self._n

    def false_positive_rate(self) -> float:
        return self._p

    # Snapshot
    def serialize(self) -> bytes:
        """Đóng gói m, k, n, p, inserted_count và mảng bit thành blob nhị phân."""
        with self._lock:
            header = _SNAPSHOT_HEADER.pack(
                _SNAPSHOT_MAGIC, _SNAPSHOT_VERSION, self._m, self._k, self._n, self._p, self._inserted
            )
            return header + self._bits.tobytes()

    @classmethod
    def reconstruct(cls, blob: bytes) -> "BloomFilter":
        """Dựng lại filter giống hệt từ blob của serialize(), không cần quét store."""
        if len(blob) < _SNAPSHOT_HEADER.size:
            raise SnapshotError("snapshot is shorter than its header")
        magic, version, m_bits, k_hash, n, p, inserted = _SNAPSHOT_HEADER.unpack_from(blob, 0)
        if magic != _SNAPSHOT_MAGIC:
            raise SnapshotError(f"bad snapshot magic: {magic!r}")
        if version != _SNAPSHOT_VERSION:
            raise SnapshotError(f"unsupported snapshot version: {version}")

        payload = blob[_SNAPSHOT_HEADER.size:]
        if len(payload) != (m_bits + 7) // 8:
            raise SnapshotError(
                f"snapshot payload has {len(payload)} bytes, expected {(m_bits + 7) // 8}"
            )

        try:
            bloom = cls(n, p)
        except InvalidParameter as exc:
            raise SnapshotError(f"snapshot carries invalid parameters: n={n} p={p}") from exc
        if bloom._m != m_bits or bloom._k != k_hash:
            raise SnapshotError(
                f"snapshot m/k ({m_bits}/{k_hash}) do not match n/p ({bloom._m}/{bloom._k})"
            )

        bits = bitarray(endian="big")
        bits.frombytes(bytes(payload))
        del bits[m_bits:]
        bloom._bits = bits
        bloom._inserted = inserted
        return bloom

    def dump(self, path: str) -> None:
        """Ghi snapshot ra file."""
        with open(path, "wb") as f:
            f.write(self.serialize())

    @classmethod
    def load(cls, path: str) -> "BloomFilter":
        """Đọc snapshot từ file."""
        with open(path, "rb") as f:
            return cls.reconstruct(f.read())

    def __repr__(self) -> str:
        return (
            f"BloomFilter(m={self._m:,} bits, k={self._k}, "
            f"inserted={self._inserted:,}, "
            f"current_fpr≈{self.estimate_fpr():.4%}, target_fpr={self._p:.2%})"
        )

    # Hàm nội bộ
    def _positions(self, key: str) -> list[int]:
        """Sinh k vị trí bit bằng double hashing (mmh3 128-bit) trên khóa chữ thường."""
        data = key.lower().encode("utf-8")
        h1 = mmh3.hash128(data, seed=_SEED_1)
        h2 = mmh3.hash128(data, seed=_SEED_2)
        return [(h1 + i * h2) % self._m for i in range(self._k)]
