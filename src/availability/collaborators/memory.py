"""Cache và store trong bộ nhớ, dùng cho demo, benchmark và kiểm thử."""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Iterable, Iterator, Optional, Tuple

from availability.collaborators.contracts import InsertResult


class InMemoryCache:
    """
    Cache LRU có TTL cho cờ tồn tại username.
    Mục hết hạn được coi như miss và bị xóa khi đọc.
    """

    def __init__(self, capacity: int = 100_000, clock: Callable[[], float] = time.monotonic) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[bool, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bool]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            taken, expires_at = item
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            # Cập nhật thứ tự truy cập (mới dùng gần nhất)
            self._entries.move_to_end(key)
            return taken

    def set(self, key: str, taken: bool, ttl: int) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = (taken, self._clock() + ttl)
            # Vượt sức chứa thì bỏ mục cũ nhất
            if len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class InMemoryStore:
    """Store trong bộ nhớ; insert_unique nguyên tử nhờ lock."""

    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._keys: set[str] = set(keys)
        self._lock = threading.Lock()

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def insert_unique(self, key: str) -> InsertResult:
        with self._lock:
            if key in self._keys:
                return InsertResult.ALREADY_EXISTS
            self._keys.add(key)
            return InsertResult.CREATED

    def stream_all_keys(self) -> Iterator[str]:
        """Trả về iterator trên snapshot đã sắp xếp để tránh xung đột khi lock."""
        with self._lock:
            snapshot = sorted(self._keys)
        return iter(snapshot)

    def seed(self, keys: Iterable[str]) -> int:
        """Nạp sẵn username, trả về số khóa mới."""
        with self._lock:
            before = len(self._keys)
            self._keys.update(keys)
            return len(self._keys) - before

    def remove(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                self._keys.remove(key)
                return True
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
