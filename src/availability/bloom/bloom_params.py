"""Tiện ích tham số Bloom filter."""
from __future__ import annotations

import math
from dataclasses import dataclass

from availability.errors import InvalidParameter


@dataclass(frozen=True)
class BloomParams:
    m_bits: int
    k_hash: int

    @staticmethod
    def for_capacity(expected_items: int, target_fpr: float) -> "BloomParams":
        """Tính m (bit) và k (số hash) tối ưu cho sức chứa và FPR mong muốn."""
        if isinstance(expected_items, bool) or not isinstance(expected_items, int):
            raise InvalidParameter("expected_items must be an integer")
        if expected_items <= 0:
            raise InvalidParameter("expected_items must be positive")
        if not (0 < target_fpr < 1):
            raise InvalidParameter("target_fpr must be in (0,1)")

        # m = ceil(-n ln(p) / (ln2)^2), k = ceil((m/n) ln2)
        m_bits = int(math.ceil(-expected_items * math.log(target_fpr) / (math.log(2) ** 2)))
        k_hash = int(math.ceil((m_bits / expected_items) * math.log(2)))
        return BloomParams(m_bits=m_bits, k_hash=k_hash)
