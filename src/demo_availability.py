"""CLI demo: kiểm tra username qua Bloom filter -> cache -> SQLite store.

- Khởi động: phục hồi Bloom từ snapshot nếu có, nếu không thì warm-up từ store.
- Menu console: kiểm tra, đăng ký, nạp username từ CSV, xem metrics, lưu snapshot.
"""

from __future__ import annotations

import csv
import logging
import os
from typing import List

from tabulate import tabulate

from availability.collaborators.memory import InMemoryCache
from availability.collaborators.sqlite_store import SQLiteStore
from availability.config import AvailabilityConfig
from availability.errors import InternalError, InvalidFormat, SnapshotError
from availability.events import LoggingEventSink
from availability.manager.lookup_coordinator import LookupCoordinator
from availability.types.key_types import is_valid_key, normalize_key

DB_PATH = os.environ.get("USERNAME_DB_PATH", "usernames.db")
SNAPSHOT_PATH = os.environ.get("BLOOM_SNAPSHOT_PATH", "bloom_filter.snapshot")

logger = logging.getLogger("availability.demo")


def load_usernames(csv_path: str, column: str = "username") -> List[str]:
    """Đọc cột username từ CSV, trả về danh sách hợp lệ (đã chuẩn hóa, khử trùng lặp, giữ thứ tự)."""
    keys: List[str] = []
    seen: set[str] = set()
    with open(csv_path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            raw = (row.get(column) or "").strip()
            if not is_valid_key(raw):
                continue
            key = normalize_key(raw)
            if key in seen:
                continue
            seen.add(key)
            keys.append(key)
    return keys


def build_coordinator(config: AvailabilityConfig) -> LookupCoordinator:
    """Dựng coordinator; ưu tiên snapshot, hỏng/không có thì warm-up từ store."""
    store = SQLiteStore(DB_PATH)
    cache = InMemoryCache()
    coordinator = LookupCoordinator.from_config(config, cache, store, events=LoggingEventSink())

    if os.path.exists(SNAPSHOT_PATH):
        try:
            with open(SNAPSHOT_PATH, "rb") as f:
                coordinator.restore_filter(f.read())
            return coordinator
        except SnapshotError as exc:
            logger.warning("Snapshot hỏng (%s), warm-up lại từ store", exc)

    coordinator.warm_up()
    return coordinator


def print_metrics(coordinator: LookupCoordinator) -> None:
    data = coordinator.snapshot_metrics().to_dict()
    percentiles = data.pop("latency_percentiles")
    rows = [[name, value] for name, value in data.items()]
    rows.extend([f"latency_{name}_us", value] for name, value in percentiles.items())
    print(tabulate(rows, headers=["Metric", "Value"], tablefmt="github"))


def seed_from_csv(coordinator: LookupCoordinator) -> None:
    path = input("Nhập đường dẫn CSV: ").strip()
    column = input("Tên cột username [username]: ").strip() or "username"
    if not os.path.exists(path):
        print(f"Không tìm thấy file: {path}")
        return
    keys = load_usernames(path, column)
    store = coordinator.store
    if not isinstance(store, SQLiteStore):
        print("Store hiện tại không hỗ trợ nạp hàng loạt.")
        return
    created = store.register_batch(keys)
    print(f"Đã nạp {created}/{len(keys)} username mới vào store, đang tái tạo Bloom...")
    coordinator.rebuild(coordinator.bloom.expected_items())
    if coordinator.maybe_rebuild():
        print(f"Bloom vượt sức chứa, đã mở rộng: {coordinator.bloom!r}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    config = AvailabilityConfig.from_env()
    coordinator = build_coordinator(config)
    print("=== Demo kiểm tra username (Bloom + cache + SQLite) ===")

    while True:
        print("\nMenu:")
        print(" 1. Kiểm tra username")
        print(" 2. Kiểm tra username (bỏ qua Bloom)")
        print(" 3. Đăng ký username")
        print(" 4. Nạp username từ CSV")
        print(" 5. Xem metrics")
        print(" 6. Lưu snapshot Bloom")
        print(" 7. Thoát")
        choice = input("Chọn [1-7]: ").strip()

        if choice in ("1", "2"):
            name = input("Username: ")
            try:
                result = coordinator.check_availability(name, force_bypass_filter=choice == "2")
            except InvalidFormat:
                print("Username không hợp lệ (chữ, số, gạch dưới, 3-20 ký tự).")
                continue
            except InternalError as exc:
                print(f"Lỗi store: {exc}")
                continue
            status = "còn trống" if result.available else "đã có người dùng"
            print(f"{result.key}: {status} (nguồn={result.source.value}, {result.latency_us} µs)")
        elif choice == "3":
            outcome = coordinator.register_key(input("Username: "))
            print(f"Kết quả: {outcome.name}")
        elif choice == "4":
            seed_from_csv(coordinator)
        elif choice == "5":
            print_metrics(coordinator)
        elif choice == "6":
            coordinator.bloom.dump(SNAPSHOT_PATH)
            print(f"Đã lưu snapshot tại {SNAPSHOT_PATH}")
        elif choice == "7":
            print("Thoát.")
            break
        else:
            print("Lựa chọn không hợp lệ.")


if __name__ == "__main__":
    main()
