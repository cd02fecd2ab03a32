# benchmark/run_benchmark.py
"""
Benchmark Bloom filter + LookupCoordinator cho kiểm tra username

- Sinh username ngẫu nhiên (đúng ngữ pháp), chia tập đã đăng ký / chưa đăng ký
- Với mỗi FPR mục tiêu: đo FPR thực nghiệm, throughput insert/query, memory (psutil RSS)
- Đo tỉ lệ short-circuit của coordinator (không chạm cache/store) trên lưu lượng hỗn hợp
- Multiple runs với avg ± std (numpy), xuất CSV (pandas), in bảng (tabulate), vẽ biểu đồ (matplotlib)
"""

import logging
import os
import random
import string
import time
from typing import Dict, List, Set

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import psutil
from tabulate import tabulate

from availability.bloom.bloom_filter import BloomFilter
from availability.collaborators.memory import InMemoryCache, InMemoryStore
from availability.config import AvailabilityConfig
from availability.manager.lookup_coordinator import LookupCoordinator, Source

logger = logging.getLogger("availability.benchmark")

ALPHABET = string.ascii_lowercase + string.digits + "_"
TARGET_FPRS = (0.1, 0.01, 0.001, 0.0001)


def generate_username(rng: random.Random) -> str:
    """Sinh username ngẫu nhiên dài 6-16 ký tự."""
    return "".join(rng.choices(ALPHABET, k=rng.randint(6, 16)))


def generate_dataset(rng: random.Random, registered: int, probes: int) -> tuple[Set[str], List[str]]:
    """Tạo tập username đã đăng ký và tập truy vấn chắc chắn chưa đăng ký."""
    taken: Set[str] = set()
    while len(taken) < registered:
        taken.add(generate_username(rng))

    fresh: List[str] = []
    while len(fresh) < probes:
        name = generate_username(rng)
        if name not in taken:
            fresh.append(name)
    return taken, fresh


def benchmark_filter(taken: Set[str], fresh: List[str], target_fpr: float) -> Dict[str, float]:
    """Đo FPR thực nghiệm và throughput của Bloom filter thuần."""
    bf = BloomFilter(expected_items=len(taken), false_positive_rate=target_fpr)

    start_insert = time.perf_counter()
    bf.add_batch(taken)
    insert_duration = time.perf_counter() - start_insert

    start_query = time.perf_counter()
    false_positives = sum(1 for name in fresh if bf.might_contain(name))
    query_duration = time.perf_counter() - start_query

    return {
        "target_fpr": target_fpr,
        "empirical_fpr": false_positives / len(fresh),
        "estimated_fpr": bf.estimate_fpr(),
        "m_bits": bf.m_bits(),
        "k_hash": bf.k_hash(),
        "insert_qps": len(taken) / max(1e-9, insert_duration),
        "query_qps": len(fresh) / max(1e-9, query_duration),
        "memory_kb": psutil.Process().memory_info().rss / 1024,
    }


def benchmark_coordinator(
    taken: Set[str], fresh: List[str], target_fpr: float, rng: random.Random, total_queries: int
) -> Dict[str, float]:
    """Đo tỉ lệ short-circuit và latency p99 của coordinator trên lưu lượng 10% đã đăng ký."""
    config = AvailabilityConfig(expected_element_count=len(taken), target_false_positive_rate=target_fpr)
    coordinator = LookupCoordinator.from_config(config, InMemoryCache(), InMemoryStore(taken))
    coordinator.warm_up()

    taken_list = sorted(taken)
    queries = [rng.choice(taken_list) if rng.random() < 0.1 else rng.choice(fresh) for _ in range(total_queries)]

    start = time.perf_counter()
    sources = [coordinator.check_availability(q).source for q in queries]
    duration = time.perf_counter() - start

    snapshot = coordinator.snapshot_metrics()
    return {
        "short_circuit_rate": float(np.mean([s is Source.FILTER for s in sources])),
        "store_fallback_rate": snapshot.store_fallbacks / max(1, snapshot.total_requests),
        "coordinator_qps": len(queries) / max(1e-9, duration),
        "p99_latency_us": snapshot.latency_percentiles["p99"],
    }


def run_full_benchmark(
    registered: int = 100_000,
    probes: int = 200_000,
    total_queries: int = 100_000,
    num_runs: int = 3,
    seed: int = 7,
) -> pd.DataFrame:
    """Chạy benchmark đầy đủ với nhiều lần lặp, trả về DataFrame tổng hợp avg/std."""
    rows: List[Dict[str, float]] = []
    for run in range(1, num_runs + 1):
        logger.info("RUN %d/%d", run, num_runs)
        rng = random.Random(seed + run)
        taken, fresh = generate_dataset(rng, registered, probes)
        for target_fpr in TARGET_FPRS:
            row = benchmark_filter(taken, fresh, target_fpr)
            row.update(benchmark_coordinator(taken, fresh, target_fpr, rng, total_queries))
            row["run"] = run
            rows.append(row)

    raw = pd.DataFrame(rows)
    metrics = [c for c in raw.columns if c not in ("run", "target_fpr")]
    summary = raw.groupby("target_fpr")[metrics].agg(["mean", "std"])
    summary.columns = [f"{name}_{stat}" for name, stat in summary.columns]
    summary = summary.reset_index().sort_values("target_fpr", ascending=False)

    os.makedirs("results", exist_ok=True)
    raw.to_csv("results/benchmark_raw.csv", index=False)
    summary.to_csv("results/benchmark_summary.csv", index=False)

    print_results(summary, num_runs)
    plot_results(summary)
    return summary


def print_results(summary: pd.DataFrame, num_runs: int) -> None:
    """In bảng kết quả."""
    table = []
    for _, s in summary.iterrows():
        table.append([
            f"{s['target_fpr']:.4%}",
            f"{s['empirical_fpr_mean']:.4%} ± {s['empirical_fpr_std']:.4%}",
            f"{int(s['m_bits_mean']):,} / {int(s['k_hash_mean'])}",
            f"{s['query_qps_mean']:,.0f} ± {s['query_qps_std']:,.0f} qps",
            f"{s['short_circuit_rate_mean']:.2%}",
            f"{s['p99_latency_us_mean']:.1f} µs",
        ])

    print(f"\n=== KẾT QUẢ BENCHMARK (Avg ± Std over {num_runs} runs) ===")
    print(tabulate(
        table,
        headers=["Target FPR", "Empirical FPR", "m / k", "Query throughput", "Short-circuit", "p99"],
        tablefmt="github",
    ))


def plot_results(summary: pd.DataFrame) -> None:
    """Vẽ FPR thực nghiệm vs mục tiêu, throughput và tỉ lệ short-circuit với error bars."""
    labels = [f"{p:g}" for p in summary["target_fpr"]]

    fig, (ax1, ax2, ax3) = plt.subplots(1, 3, figsize=(18, 6))

    # FPR
    ax1.bar(labels, summary["empirical_fpr_mean"] * 100, yerr=summary["empirical_fpr_std"] * 100,
            capsize=5, color="orange", alpha=0.8, label="empirical")
    ax1.plot(labels, summary["target_fpr"] * 100, "k--o", label="target")
    ax1.set_yscale("log")
    ax1.set_ylabel("False Positive Rate (%)")
    ax1.set_title("False Positive Rate")
    ax1.legend()

    # Throughput
    ax2.bar(labels, summary["query_qps_mean"] / 1000, yerr=summary["query_qps_std"] / 1000,
            capsize=5, color="green", alpha=0.8)
    ax2.set_ylabel("Throughput (K queries/s)")
    ax2.set_title("Filter Query Throughput")

    # Short-circuit
    ax3.bar(labels, summary["short_circuit_rate_mean"] * 100, yerr=summary["short_circuit_rate_std"] * 100,
            capsize=5, color="steelblue", alpha=0.8)
    ax3.set_ylabel("Answered by filter (%)")
    ax3.set_title("Coordinator Short-circuit Rate")

    for ax in (ax1, ax2, ax3):
        ax.set_xlabel("Target FPR")

    plt.suptitle("Bloom filter username availability benchmark")
    plt.tight_layout()

    os.makedirs("plots", exist_ok=True)
    plot_path = "plots/benchmark_fpr_sweep.png"
    plt.savefig(plot_path, dpi=200)
    plt.close(fig)
    print(f"\nBiểu đồ đã lưu tại: {plot_path}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    run_full_benchmark()
