"""Các lỗi dùng chung cho dịch vụ kiểm tra username."""
from __future__ import annotations


class AvailabilityError(Exception):
    """Lỗi gốc của gói availability."""


class InvalidParameter(AvailabilityError, ValueError):
    """Tham số khởi tạo filter/cấu hình không hợp lệ (lỗi khi khởi động)."""


class SnapshotError(InvalidParameter):
    """Snapshot Bloom filter bị hỏng hoặc không đúng định dạng."""


class InvalidFormat(AvailabilityError, ValueError):
    """Username không khớp ngữ pháp cho phép."""

    def __init__(self, key: object) -> None:
        super().__init__(f"invalid username format: {key!r}")
        self.key = key


class StoreError(AvailabilityError):
    """Lỗi tạm thời từ store (mất kết nối, khóa bảng, timeout...)."""


class InternalError(AvailabilityError):
    """Store lỗi trong lúc kiểm tra; trả về cho caller, không che giấu."""
