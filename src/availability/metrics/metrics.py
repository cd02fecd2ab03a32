"""Bộ đếm metrics gọn cho quan sát hệ thống, an toàn khi nhiều luồng cùng ghi."""
from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict

import numpy as np

from availability.errors import InvalidParameter

PERCENTILES = (50, 95, 99)


@dataclass
class Metrics:
    total_requests: int = 0
    filter_short_circuits: int = 0
    cache_hits: int = 0
    cache_errors: int = 0
    store_fallbacks: int = 0
    store_errors: int = 0
    registrations: int = 0
    conflicts: int = 0
    invalid_formats: int = 0
    max_latency_samples: int = 10_000
    _latencies_us: Deque[int] = field(init=False, repr=False)
    _lock: threading.Lock = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_latency_samples <= 0:
            raise InvalidParameter("max_latency_samples must be positive")
        self._latencies_us = deque(maxlen=self.max_latency_samples)
        self._lock = threading.Lock()

    def record_request(self) -> None:
        with self._lock:
            self.total_requests += 1

    def record_filter_short_circuit(self) -> None:
        with self._lock:
            self.filter_short_circuits += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_cache_error(self) -> None:
        with self._lock:
            self.cache_errors += 1

    def record_store_fallback(self) -> None:
        with self._lock:
            self.store_fallbacks += 1

    def record_store_error(self) -> None:
        with self._lock:
            self.store_errors += 1

    def record_registration(self) -> None:
        with self._lock:
            self.registrations += 1

    def record_conflict(self) -> None:
        with self._lock:
            self.conflicts += 1

    def record_invalid_format(self) -> None:
        with self._lock:
            self.invalid_formats += 1

    def record_lookup_latency(self, micros: int) -> None:
        with self._lock:
            self._latencies_us.append(micros)

    def average_lookup_latency_us(self) -> float:
        with self._lock:
            if not self._latencies_us:
                return 0.0
            return sum(self._latencies_us) / float(len(self._latencies_us))

    def latency_percentiles(self) -> Dict[str, float]:
        """p50/p95/p99 (micro giây) theo nearest-rank trên các mẫu gần nhất."""
        with self._lock:
            samples = np.fromiter(self._latencies_us, dtype=np.int64, count=len(self._latencies_us))
        if samples.size == 0:
            return {f"p{q}": 0.0 for q in PERCENTILES}
        values = np.percentile(samples, PERCENTILES, method="inverted_cdf")
        return {f"p{q}": float(v) for q, v in zip(PERCENTILES, values)}

    def counters(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "filter_short_circuits": self.filter_short_circuits,
                "cache_hits": self.cache_hits,
                "cache_errors": self.cache_errors,
                "store_fallbacks": self.store_fallbacks,
                "store_errors": self.store_errors,
                "registrations": self.registrations,
                "conflicts": self.conflicts,
                "invalid_formats": self.invalid_formats,
            }

    def reset(self) -> None:
        """Đặt lại toàn bộ bộ đếm và mẫu latency (chỉ gọi khi operator yêu cầu)."""
        with self._lock:
            self.total_requests = 0
            self.filter_short_circuits = 0
            self.cache_hits = 0
            self.cache_errors = 0
            self.store_fallbacks = 0
            self.store_errors = 0
            self.registrations = 0
            self.conflicts = 0
            self.invalid_formats = 0
            self._latencies_us.clear()
