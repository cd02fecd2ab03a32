"""
Cấu hình dịch vụ kiểm tra username.
Mọi tùy chọn được liệt kê tường minh và kiểm tra ngay khi khởi tạo.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from availability.errors import InvalidParameter

ENV_VARS = {
    "expected_element_count": ("BLOOM_FILTER_SIZE", int),
    "target_false_positive_rate": ("BLOOM_FILTER_FPR", float),
    "cache_ttl_seconds": ("CACHE_TTL_SECONDS", int),
    "negative_cache_ttl_seconds": ("NEGATIVE_CACHE_TTL_SECONDS", int),
    "warm_up_batch_size": ("WARM_UP_BATCH_SIZE", int),
    "latency_sample_limit": ("LATENCY_SAMPLE_LIMIT", int),
    "rebuild_fpr_limit": ("BLOOM_REBUILD_FPR_LIMIT", float),
    "growth_factor": ("BLOOM_GROWTH_FACTOR", float),
}


def _require_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidParameter(f"{name} must be a positive integer, got {value!r}")


def _require_open_unit(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not (0 < value < 1):
        raise InvalidParameter(f"{name} must be in (0,1), got {value!r}")


@dataclass(frozen=True)
class AvailabilityConfig:
    """Cấu hình Bloom filter, cache và warm-up."""

    # Bloom filter
    expected_element_count: int = 1_000_000
    target_false_positive_rate: float = 0.001

    # Cache write-through
    cache_ttl_seconds: int = 3600  # 1 giờ
    # TTL cho kết quả "còn trống"; 0 = không cache
    negative_cache_ttl_seconds: int = 0

    # Warm-up / metrics
    warm_up_batch_size: int = 1000
    latency_sample_limit: int = 10_000

    # Rebuild: None = chỉ rebuild khi vượt sức chứa
    rebuild_fpr_limit: Optional[float] = None
    growth_factor: float = 2.0

    def __post_init__(self) -> None:
        _require_positive_int("expected_element_count", self.expected_element_count)
        _require_open_unit("target_false_positive_rate", self.target_false_positive_rate)
        _require_positive_int("cache_ttl_seconds", self.cache_ttl_seconds)
        if isinstance(self.negative_cache_ttl_seconds, bool) or not isinstance(self.negative_cache_ttl_seconds, int) \
                or self.negative_cache_ttl_seconds < 0:
            raise InvalidParameter(
                f"negative_cache_ttl_seconds must be a non-negative integer, got {self.negative_cache_ttl_seconds!r}"
            )
        _require_positive_int("warm_up_batch_size", self.warm_up_batch_size)
        _require_positive_int("latency_sample_limit", self.latency_sample_limit)
        if self.rebuild_fpr_limit is not None:
            _require_open_unit("rebuild_fpr_limit", self.rebuild_fpr_limit)
        if isinstance(self.growth_factor, bool) or not isinstance(self.growth_factor, (int, float)) \
                or self.growth_factor <= 1:
            raise InvalidParameter(f"growth_factor must be > 1, got {self.growth_factor!r}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AvailabilityConfig":
        """Đọc cấu hình từ biến môi trường; biến không đặt thì dùng mặc định."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field_name, (var, parse) in ENV_VARS.items():
            raw = env.get(var)
            if raw is None or raw.strip() == "":
                continue
            values[field_name] = _parse(var, raw.strip(), parse)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse(var: str, raw: str, parse: Callable[[str], Any]) -> Any:
    try:
        return parse(raw)
    except ValueError as exc:
        raise InvalidParameter(f"{var}={raw!r} is not a valid {parse.__name__}") from exc
