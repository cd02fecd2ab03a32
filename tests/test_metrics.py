# -*- coding: utf-8 -*-
"""
Test bộ đếm metrics.
"""

import threading

import pytest

from availability.errors import InvalidParameter
from availability.metrics.metrics import Metrics


def test_counters_and_reset():
    m = Metrics()
    m.record_request()
    m.record_request()
    m.record_filter_short_circuit()
    m.record_cache_hit()
    m.record_cache_error()
    m.record_store_fallback()
    m.record_store_error()
    m.record_registration()
    m.record_conflict()
    m.record_invalid_format()

    counters = m.counters()
    assert counters["total_requests"] == 2
    assert all(v == 1 for k, v in counters.items() if k != "total_requests")

    m.record_lookup_latency(10)
    m.reset()
    assert all(v == 0 for v in m.counters().values())
    assert m.average_lookup_latency_us() == 0.0


def test_percentiles_nearest_rank():
    m = Metrics()
    for micros in range(100, 0, -1):
        m.record_lookup_latency(micros)

    assert m.latency_percentiles() == {"p50": 50.0, "p95": 95.0, "p99": 99.0}
    assert m.average_lookup_latency_us() == pytest.approx(50.5)


def test_percentiles_empty():
    assert Metrics().latency_percentiles() == {"p50": 0.0, "p95": 0.0, "p99": 0.0}


def test_latency_samples_are_bounded():
    m = Metrics(max_latency_samples=3)
    for micros in (1, 2, 3, 4, 5):
        m.record_lookup_latency(micros)

    assert m.latency_percentiles()["p50"] == 4.0
    assert m.average_lookup_latency_us() == pytest.approx(4.0)


def test_invalid_sample_limit():
    with pytest.raises(InvalidParameter):
        Metrics(max_latency_samples=0)


def test_concurrent_increments():
    m = Metrics()

    def worker() -> None:
        for _ in range(1000):
            m.record_request()
            m.record_lookup_latency(1)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert m.total_requests == 8000
