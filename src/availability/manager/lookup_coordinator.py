"""Bộ điều phối tra cứu nhiều tầng: Bloom filter -> cache -> store, và đăng ký username."""
from __future__ import annotations

import math
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional

import psutil

from availability.bloom.bloom_filter import BloomFilter
from availability.collaborators.contracts import Cache, InsertResult, Store
from availability.config import AvailabilityConfig
from availability.errors import InternalError, InvalidFormat, StoreError
from availability.events import EventSink, LookupEvent, NullEventSink
from availability.metrics.metrics import Metrics
from availability.types.key_types import Username, validate_key


class Source(Enum):
    FILTER = "filter"
    CACHE = "cache"
    STORE = "store"
    FORCED_STORE = "forced_store"


class RegistrationOutcome(Enum):
    CREATED = auto()
    CONFLICT = auto()
    INVALID_FORMAT = auto()
    INTERNAL_ERROR = auto()


@dataclass(frozen=True)
class AvailabilityResult:
    key: str
    available: bool
    source: Source
    latency_us: int


@dataclass(frozen=True)
class MetricsSnapshot:
    total_requests: int
    filter_short_circuits: int
    cache_hits: int
    cache_errors: int
    store_fallbacks: int
    store_errors: int
    registrations: int
    conflicts: int
    fill_ratio: float
    estimated_false_positive_rate: float
    bit_array_size: int
    hash_function_count: int
    inserted_count: int
    latency_percentiles: Dict[str, float]
    memory_rss_kb: float
    warm: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        total = self.total_requests
        data["filter_hit_rate"] = self.filter_short_circuits / total if total else 0.0
        data["store_fallback_rate"] = self.store_fallbacks / total if total else 0.0
        return data


class LookupCoordinator:
    """
    Điều phối kiểm tra username qua các tầng rẻ -> đắt:
    - Bloom "chắc chắn chưa có" -> trả available ngay, không chạm cache/store
    - Bloom "có thể có" -> hỏi cache, miss/lỗi thì hỏi store và ghi lại cache
    - Đăng ký: store quyết định (unique), thành công mới cập nhật Bloom + cache
    - Khi chưa warm-up (cold) thì bỏ qua Bloom để tránh trả lời sai "available"
    """

    def __init__(
        self,
        bloom: BloomFilter,
        cache: Cache,
        store: Store,
        config: Optional[AvailabilityConfig] = None,
        metrics: Optional[Metrics] = None,
        events: Optional[EventSink] = None,
    ) -> None:
        self.config = config or AvailabilityConfig()
        self.cache = cache
        self.store = store
        self.metrics = metrics or Metrics(max_latency_samples=self.config.latency_sample_limit)
        self.events = events or NullEventSink()
        self._bloom = bloom
        self._warm = False
        self._rebuild_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: Optional[List[str]] = None
        self.bloom_rebuilds = 0

    @classmethod
    def from_config(
        cls,
        config: AvailabilityConfig,
        cache: Cache,
        store: Store,
        events: Optional[EventSink] = None,
    ) -> "LookupCoordinator":
        """Tạo Bloom filter và metrics theo cấu hình rồi dựng coordinator (trạng thái cold)."""
        bloom = BloomFilter(config.expected_element_count, config.target_false_positive_rate)
        metrics = Metrics(max_latency_samples=config.latency_sample_limit)
        return cls(bloom, cache, store, config=config, metrics=metrics, events=events)

    @property
    def bloom(self) -> BloomFilter:
        return self._bloom

    @property
    def is_warm(self) -> bool:
        return self._warm

    # Khởi động / phục hồi
    def warm_up(self) -> int:
        """Nạp toàn bộ username từ store vào Bloom theo lô; trả về số khóa đã nạp."""
        start = time.perf_counter_ns()
        count = self._load_from_store(self._bloom)
        self._warm = True
        self._emit(
            "warm_up_completed",
            loaded=count,
            duration_ms=(time.perf_counter_ns() - start) // 1_000_000,
            m_bits=self._bloom.m_bits(),
            k_hash=self._bloom.k_hash(),
        )
        return count

    def snapshot_filter(self) -> bytes:
        return self._bloom.serialize()

    def restore_filter(self, blob: bytes) -> None:
        """Thay Bloom hiện tại bằng bản dựng lại từ snapshot và đánh dấu warm."""
        restored = BloomFilter.reconstruct(blob)
        with self._pending_lock:
            self._bloom = restored
        self._warm = True
        self._emit(
            "filter_restored",
            inserted=restored.get_inserted_count(),
            m_bits=restored.m_bits(),
            k_hash=restored.k_hash(),
        )

    def rebuild(self, expected_element_count: Optional[int] = None) -> BloomFilter:
        """Tái tạo Bloom từ store; username đăng ký trong lúc tái tạo được nạp bù trước khi hoán đổi."""
        with self._rebuild_lock:
            n = self.config.expected_element_count if expected_element_count is None else expected_element_count
            new_bloom = BloomFilter(n, self.config.target_false_positive_rate)
            prev_m = self._bloom.m_bits()
            prev_k = self._bloom.k_hash()

            with self._pending_lock:
                self._pending = []
            try:
                loaded = self._load_from_store(new_bloom)
                with self._pending_lock:
                    replayed = self._pending
                    new_bloom.add_batch(replayed)
                    self._bloom = new_bloom
            finally:
                with self._pending_lock:
                    self._pending = None
            self._warm = True
            self.bloom_rebuilds += 1

        self._emit(
            "filter_rebuilt",
            loaded=loaded,
            replayed=len(replayed),
            prev_m_bits=prev_m,
            prev_k_hash=prev_k,
            m_bits=new_bloom.m_bits(),
            k_hash=new_bloom.k_hash(),
            expected=n,
        )
        return new_bloom

    def maybe_rebuild(self) -> bool:
        """Tái tạo Bloom khi vượt sức chứa hoặc FPR ước lượng vượt ngưỡng cấu hình."""
        stats = self._bloom.stats()
        over_capacity = stats.fill_ratio > 1.0
        limit = self.config.rebuild_fpr_limit
        over_fpr = limit is not None and self._bloom.estimate_fpr() > limit
        if not (over_capacity or over_fpr):
            return False

        base = max(stats.expected_element_count, stats.inserted_count)
        new_n = int(math.ceil(base * self.config.growth_factor))
        self.rebuild(expected_element_count=new_n)
        return True

    # Tra cứu
    def check_availability(self, key: str, force_bypass_filter: bool = False) -> AvailabilityResult:
        """Kiểm tra username còn trống; ném InvalidFormat khi sai định dạng, InternalError khi store lỗi."""
        start = time.perf_counter_ns()
        username = validate_key(key)
        self.metrics.record_request()

        if not force_bypass_filter and self._warm:
            if not self._bloom.might_contain(username):
                self.metrics.record_filter_short_circuit()
                self._emit("filter_short_circuit", username)
                return self._finish(username, True, Source.FILTER, start)

        cached = self._cache_get(username)
        if cached is not None:
            self.metrics.record_cache_hit()
            self._emit("cache_hit", username, taken=cached)
            return self._finish(username, not cached, Source.CACHE, start)

        self.metrics.record_store_fallback()
        try:
            taken = self.store.exists(username)
        except StoreError as exc:
            self.metrics.record_store_error()
            self._emit("store_error", username, operation="exists", error=str(exc))
            raise InternalError(f"store lookup failed for {username!r}") from exc

        self._cache_set(username, taken)
        source = Source.FORCED_STORE if force_bypass_filter else Source.STORE
        self._emit("store_lookup", username, taken=taken, source=source.value)
        return self._finish(username, not taken, source, start)

    # Đăng ký
    def register_key(self, key: str) -> RegistrationOutcome:
        """Đăng ký username; store (ràng buộc unique) là nguồn quyết định xung đột duy nhất."""
        try:
            username = validate_key(key)
        except InvalidFormat:
            self.metrics.record_invalid_format()
            self._emit("invalid_format", None, raw=repr(key))
            return RegistrationOutcome.INVALID_FORMAT

        try:
            result = self.store.insert_unique(username)
        except StoreError as exc:
            self._emit("store_error", username, operation="insert_unique", error=str(exc))
            result = InsertResult.TRANSIENT_ERROR

        if result is InsertResult.CREATED:
            # Bloom chỉ tăng, không hoàn tác kể cả khi ghi cache thất bại.
            self._add_to_bloom(username)
            self._cache_set(username, True)
            self.metrics.record_registration()
            self._emit("registration_created", username)
            return RegistrationOutcome.CREATED

        if result is InsertResult.ALREADY_EXISTS:
            self.metrics.record_conflict()
            self._emit("registration_conflict", username)
            return RegistrationOutcome.CONFLICT

        self.metrics.record_store_error()
        self._emit("registration_failed", username)
        return RegistrationOutcome.INTERNAL_ERROR

    # Metrics
    def snapshot_metrics(self) -> MetricsSnapshot:
        counters = self.metrics.counters()
        stats = self._bloom.stats()
        return MetricsSnapshot(
            total_requests=counters["total_requests"],
            filter_short_circuits=counters["filter_short_circuits"],
            cache_hits=counters["cache_hits"],
            cache_errors=counters["cache_errors"],
            store_fallbacks=counters["store_fallbacks"],
            store_errors=counters["store_errors"],
            registrations=counters["registrations"],
            conflicts=counters["conflicts"],
            fill_ratio=stats.fill_ratio,
            estimated_false_positive_rate=stats.estimated_false_positive_rate,
            bit_array_size=stats.bit_array_size,
            hash_function_count=stats.hash_function_count,
            inserted_count=stats.inserted_count,
            latency_percentiles=self.metrics.latency_percentiles(),
            memory_rss_kb=psutil.Process().memory_info().rss / 1024,
            warm=self._warm,
        )

    def reset_metrics(self) -> None:
        self.metrics.reset()

    # Hàm nội bộ
    def _load_from_store(self, bloom: BloomFilter) -> int:
        """Đọc lười store.stream_all_keys() và nạp vào Bloom theo lô warm_up_batch_size."""
        batch_size = self.config.warm_up_batch_size
        batch: List[str] = []
        count = 0
        for key in self.store.stream_all_keys():
            batch.append(key)
            if len(batch) >= batch_size:
                count += bloom.add_batch(batch)
                batch = []
        if batch:
            count += bloom.add_batch(batch)
        return count

    def _add_to_bloom(self, username: Username) -> None:
        with self._pending_lock:
            bloom = self._bloom
            if self._pending is not None:
                self._pending.append(username)
        bloom.add(username)

    def _cache_get(self, username: Username) -> Optional[bool]:
        try:
            return self.cache.get(username)
        except Exception as exc:  # cache chỉ là bộ tăng tốc, lỗi = miss
            self.metrics.record_cache_error()
            self._emit("cache_error", username, operation="get", error=repr(exc))
            return None

    def _cache_set(self, username: Username, taken: bool) -> None:
        # "Đã có" không bao giờ đảo ngược; "còn trống" có thể cũ ngay khi vừa đọc xong.
        ttl = self.config.cache_ttl_seconds if taken else self.config.negative_cache_ttl_seconds
        if ttl <= 0:
            return
        try:
            self.cache.set(username, taken, ttl)
        except Exception as exc:
            self.metrics.record_cache_error()
            self._emit("cache_error", username, operation="set", error=repr(exc))

    def _finish(self, username: Username, available: bool, source: Source, start_ns: int) -> AvailabilityResult:
        micros = self._micros_since(start_ns)
        self.metrics.record_lookup_latency(micros)
        return AvailabilityResult(key=username, available=available, source=source, latency_us=micros)

    def _emit(self, name: str, key: Optional[str] = None, **fields: Any) -> None:
        self.events.emit(LookupEvent(name=name, key=key, fields=fields))

    @staticmethod
    def _micros_since(start_ns: int) -> int:
        """Tính thời gian đã trôi qua (micro giây) từ thời điểm start_ns."""
        end = time.perf_counter_ns()
        return int((end - start_ns) / 1000)
