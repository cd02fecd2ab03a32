"""Hợp đồng của các collaborator bên ngoài: Cache và Store."""
from __future__ import annotations

from enum import Enum, auto
from typing import Iterator, Optional, Protocol


class InsertResult(Enum):
    CREATED = auto()
    ALREADY_EXISTS = auto()
    TRANSIENT_ERROR = auto()


class Cache(Protocol):
    """Cache tăng tốc best-effort: lỗi được coi như miss."""

    def get(self, key: str) -> Optional[bool]:
        """Cờ tồn tại của username, hoặc None khi miss."""
        ...

    def set(self, key: str, taken: bool, ttl: int) -> None:
        ...


class Store(Protocol):
    """Nguồn dữ liệu chính xác duy nhất; ràng buộc unique của store quyết định xung đột."""

    def exists(self, key: str) -> bool:
        ...

    def insert_unique(self, key: str) -> InsertResult:
        ...

    def stream_all_keys(self) -> Iterator[str]:
        """Duyệt lười toàn bộ username (hữu hạn, gọi lại để chạy lại từ đầu)."""
        ...
