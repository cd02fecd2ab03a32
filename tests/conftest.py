# -*- coding: utf-8 -*-
"""
Fixture và collaborator giả dùng chung cho các test.
"""

from typing import Callable, Iterator, List, Optional

import pytest

from availability.collaborators.contracts import InsertResult
from availability.collaborators.memory import InMemoryCache, InMemoryStore
from availability.config import AvailabilityConfig
from availability.errors import StoreError
from availability.events import LookupEvent
from availability.manager.lookup_coordinator import LookupCoordinator


class CountingCache(InMemoryCache):
    """Cache đếm số lần get/set."""

    def __init__(self) -> None:
        super().__init__()
        self.get_calls = 0
        self.set_calls: List[tuple] = []

    def get(self, key: str) -> Optional[bool]:
        self.get_calls += 1
        return super().get(key)

    def set(self, key: str, taken: bool, ttl: int) -> None:
        self.set_calls.append((key, taken, ttl))
        super().set(key, taken, ttl)


class FailingCache:
    """Cache luôn lỗi (mất kết nối)."""

    def get(self, key: str) -> Optional[bool]:
        raise ConnectionError("cache down")

    def set(self, key: str, taken: bool, ttl: int) -> None:
        raise ConnectionError("cache down")


class CountingStore(InMemoryStore):
    """Store đếm số lần gọi, có hook chạy sau exists và giữa lúc stream (mô phỏng ghi đồng thời)."""

    def __init__(self, keys=()) -> None:
        super().__init__(keys)
        self.exists_calls = 0
        self.insert_calls = 0
        self.stream_calls = 0
        self.on_stream: Optional[Callable[[], None]] = None
        self.after_exists: Optional[Callable[[str], None]] = None

    def exists(self, key: str) -> bool:
        self.exists_calls += 1
        found = super().exists(key)
        if self.after_exists is not None:
            self.after_exists(key)
        return found

    def insert_unique(self, key: str) -> InsertResult:
        self.insert_calls += 1
        return super().insert_unique(key)

    def stream_all_keys(self) -> Iterator[str]:
        self.stream_calls += 1
        snapshot = list(super().stream_all_keys())
        for idx, key in enumerate(snapshot):
            if idx == 0 and self.on_stream is not None:
                self.on_stream()
            yield key


class FailingStore(InMemoryStore):
    """Store có khóa nhưng mọi truy vấn exists/insert đều lỗi tạm thời."""

    def __init__(self, keys=(), raise_on_insert: bool = False) -> None:
        super().__init__(keys)
        self.raise_on_insert = raise_on_insert

    def exists(self, key: str) -> bool:
        raise StoreError("connection reset")

    def insert_unique(self, key: str) -> InsertResult:
        if self.raise_on_insert:
            raise StoreError("connection reset")
        return InsertResult.TRANSIENT_ERROR


class BrokenStreamStore(InMemoryStore):
    def stream_all_keys(self) -> Iterator[str]:
        raise StoreError("cursor killed")


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: List[LookupEvent] = []

    def emit(self, event: LookupEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.name for e in self.events]


@pytest.fixture
def config() -> AvailabilityConfig:
    return AvailabilityConfig(
        expected_element_count=1000,
        target_false_positive_rate=0.01,
        cache_ttl_seconds=60,
        warm_up_batch_size=3,
    )


@pytest.fixture
def cache() -> CountingCache:
    return CountingCache()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore(["alice", "bob", "carol_99"])


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def coordinator(config, cache, store, events) -> LookupCoordinator:
    """Coordinator đã warm-up từ store."""
    coord = LookupCoordinator.from_config(config, cache, store, events=events)
    coord.warm_up()
    return coord
